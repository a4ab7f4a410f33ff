from django.contrib import admin
from admin_site.models import SchoolModel, CycleModel


@admin.register(SchoolModel)
class SchoolAdmin(admin.ModelAdmin):
    list_display = ('name', 'school_id', 'subscription_plan', 'subscription_status', 'subscription_end_date',
                    'subscription_is_active')
    list_filter = ('subscription_plan', 'subscription_status')
    search_fields = ('name', 'school_id')

    @admin.display(boolean=True, description='Active')
    def subscription_is_active(self, obj):
        return obj.is_subscription_active


admin.site.register(CycleModel)
