from django.urls import path

from payments.adapters import ProviderKind
from payments.views import payment_webhook

urlpatterns = [
    path(f'webhooks/{kind.value}/', payment_webhook, {'provider': kind.value}, name=f'payments_webhook_{kind.value}')
    for kind in ProviderKind
]
