import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from admin_site.models import SchoolModel
from student.models import StudentModel

# Configure a logger for this module
logger = logging.getLogger(__name__)


class AccountingTransactionModel(models.Model):
    """
    A row of the school's ledger. Rows are append-only: once saved they are
    never updated or deleted.
    """

    class TransactionType(models.TextChoices):
        REVENUE = 'Revenu', 'Revenu'
        EXPENSE = 'Dépense', 'Dépense'

    TUITION_CATEGORY = 'Scolarité'

    school = models.ForeignKey(SchoolModel, on_delete=models.PROTECT, related_name='accounting_transactions')
    student = models.ForeignKey(StudentModel, on_delete=models.PROTECT, null=True, blank=True,
                                related_name='accounting_transactions')
    date = models.DateField(default=timezone.localdate, db_index=True)
    description = models.CharField(max_length=255, blank=True, default='')
    category = models.CharField(max_length=100)
    type = models.CharField(max_length=10, choices=TransactionType.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2,
                                 validators=[MinValueValidator(Decimal("0.01"))])
    reference = models.CharField(max_length=100, blank=True, default='')
    provider = models.CharField(max_length=30, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-date", "-created_at")
        indexes = [
            models.Index(fields=["school", "date"], name="finance_acc_school__7d3a51_idx"),
            models.Index(fields=["category"], name="finance_acc_categor_2b8e90_idx"),
        ]
        verbose_name = _("Accounting Transaction")
        verbose_name_plural = _("Accounting Transactions")

    def __str__(self):
        return f"{self.type} {self.category} ({self.amount})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError(_("Ledger rows are append-only and cannot be modified."))
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(_("Ledger rows are append-only and cannot be deleted."))


class StudentPaymentModel(models.Model):
    """Payment history of a student. Written together with its ledger row."""

    class PaymentMethod(models.TextChoices):
        CARD = 'Carte Bancaire', 'Carte Bancaire'
        MOBILE = 'Paiement Mobile', 'Paiement Mobile'

    school = models.ForeignKey(SchoolModel, on_delete=models.PROTECT, related_name='student_payments')
    student = models.ForeignKey(StudentModel, on_delete=models.PROTECT, related_name='payments')
    date = models.DateField(default=timezone.localdate)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    description = models.CharField(max_length=255, blank=True, default='')
    method = models.CharField(max_length=30, choices=PaymentMethod.choices)
    payer_first_name = models.CharField(max_length=50, blank=True, default='')
    payer_last_name = models.CharField(max_length=50, blank=True, default='')
    reference = models.CharField(max_length=100, blank=True, default='')
    provider = models.CharField(max_length=30, blank=True, default='')
    accounting_transaction = models.OneToOneField(AccountingTransactionModel, on_delete=models.PROTECT,
                                                  related_name='student_payment')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-date', '-created_at']
        verbose_name = "Student Payment"

    def __str__(self):
        return f"Payment of {self.amount} for {self.student}"


class FinanceStatModel(models.Model):
    """Per-school rollup read by the dashboards. Only ever moved with F() expressions."""
    school = models.OneToOneField(SchoolModel, on_delete=models.CASCADE, related_name='finance_stat')
    total_amount_due = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    last_updated = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Finance stats of {self.school}"


class ProcessedEventModel(models.Model):
    """
    Proof that a provider notification has already been applied. Written in the
    same transaction as the mutation it guards.
    """
    provider = models.CharField(max_length=30)
    provider_event_id = models.CharField(max_length=255)
    reference = models.CharField(max_length=255, blank=True, default='')
    payment_type = models.CharField(max_length=20, blank=True, default='')
    processed_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['provider', 'provider_event_id'], name='unique_processed_provider_event'),
        ]
        verbose_name = "Processed Payment Event"

    def __str__(self):
        return f"{self.provider}:{self.provider_event_id}"
