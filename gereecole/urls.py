from django.contrib import admin
from django.urls import path, include


urlpatterns = [
    path('payments/', include('payments.urls')),
    path('django-admin/', admin.site.urls),
]
