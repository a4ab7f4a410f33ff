import logging
import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from admin_site.models import SchoolModel

logger = logging.getLogger(__name__)


class ParentModel(models.Model):
    """
    Represents a parent or guardian. Receives the tuition payment receipts.
    """
    school = models.ForeignKey(SchoolModel, on_delete=models.CASCADE, related_name='parents')
    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)
    email = models.EmailField(max_length=100, blank=True, null=True)
    mobile = models.CharField(max_length=20, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.first_name} {self.last_name}"


class StudentModel(models.Model):
    """
    Represents a student of a school and the state of their tuition account.
    """

    class TuitionStatus(models.TextChoices):
        PARTIAL = 'Partiel', 'Partiel'
        SETTLED = 'Soldé', 'Soldé'

    school = models.ForeignKey(SchoolModel, on_delete=models.PROTECT, related_name='students')
    student_id = models.CharField(max_length=100, blank=True,
                                  help_text="Opaque identifier echoed back by payment providers.")
    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)
    parents = models.ManyToManyField(ParentModel, related_name='wards', blank=True)
    is_active = models.BooleanField(default=True)

    # ✔️ Using DecimalField for all financial values.
    tuition_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'),
                                      validators=[MinValueValidator(Decimal('0'))])
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'),
                                          validators=[MinValueValidator(Decimal('0'))])
    amount_due = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'),
                                     validators=[MinValueValidator(Decimal('0'))])
    tuition_status = models.CharField(max_length=10, choices=TuitionStatus.choices,
                                      default=TuitionStatus.SETTLED)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['school', 'student_id'], name='unique_school_student_id'),
            models.CheckConstraint(condition=models.Q(amount_due__gte=0), name='student_amount_due_non_negative'),
        ]
        indexes = [
            models.Index(fields=['school', 'is_active'], name='student_stu_school__4f1c2e_idx'),
        ]

    def __str__(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def payer(self):
        """The first parent on file pays, as far as receipts are concerned."""
        return self.parents.order_by('pk').first()

    def save(self, *args, **kwargs):
        if not self.student_id:
            self.student_id = f"STU-{uuid.uuid4().hex[:8].upper()}"
        # Soldé if and only if nothing is due.
        self.tuition_status = (self.TuitionStatus.SETTLED if self.amount_due == 0
                               else self.TuitionStatus.PARTIAL)
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'amount_due' in update_fields and 'tuition_status' not in update_fields:
            kwargs['update_fields'] = list(update_fields) + ['tuition_status']
        super().save(*args, **kwargs)
