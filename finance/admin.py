from django.contrib import admin
from finance.models import AccountingTransactionModel, StudentPaymentModel, FinanceStatModel, ProcessedEventModel


class ReadOnlyAdmin(admin.ModelAdmin):
    """Rows written by the payment pipeline only."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AccountingTransactionModel)
class AccountingTransactionAdmin(ReadOnlyAdmin):
    list_display = ('date', 'school', 'type', 'category', 'amount', 'provider', 'reference')
    list_filter = ('type', 'category', 'provider')
    search_fields = ('reference', 'description')


@admin.register(StudentPaymentModel)
class StudentPaymentAdmin(ReadOnlyAdmin):
    list_display = ('date', 'student', 'amount', 'method', 'provider', 'reference')
    list_filter = ('method', 'provider')
    search_fields = ('reference', 'student__student_id')


@admin.register(ProcessedEventModel)
class ProcessedEventAdmin(ReadOnlyAdmin):
    list_display = ('provider', 'provider_event_id', 'payment_type', 'processed_at')
    list_filter = ('provider', 'payment_type')
    search_fields = ('provider_event_id', 'reference')


admin.site.register(FinanceStatModel)
