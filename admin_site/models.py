import logging
from decimal import Decimal

from django.apps import apps
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

# Configure a logger for this module
logger = logging.getLogger(__name__)


class SchoolModel(models.Model):
    """
    A tenant of the platform. The subscription lives directly on the school
    record so that a renewal is a single-row update.
    """

    class Plan(models.TextChoices):
        ESSENTIEL = 'Essentiel', 'Essentiel'
        PRO = 'Pro', 'Pro'
        PREMIUM = 'Premium', 'Premium'

    class SubscriptionStatus(models.TextChoices):
        ACTIVE = 'active', 'Active'
        TRIALING = 'trialing', 'Trialing'
        PAST_DUE = 'past_due', 'Past Due'
        CANCELED = 'canceled', 'Canceled'

    class Module(models.TextChoices):
        SANTE = 'sante', 'Santé'
        CANTINE = 'cantine', 'Cantine'
        TRANSPORT = 'transport', 'Transport'
        INTERNAT = 'internat', 'Internat'
        RH = 'rh', 'RH & Paie'
        IMMOBILIER = 'immobilier', 'Immobilier'
        ACTIVITES = 'activites', 'Activités'

    school_id = models.CharField(max_length=100, unique=True,
                                 help_text="Opaque identifier echoed back by payment providers.")
    name = models.CharField(max_length=250)
    director_email = models.EmailField(blank=True, null=True)
    storage_used_gb = models.DecimalField(max_digits=10, decimal_places=3, default=Decimal('0.000'),
                                          validators=[MinValueValidator(Decimal('0'))])

    subscription_plan = models.CharField(max_length=20, choices=Plan.choices, default=Plan.ESSENTIEL)
    subscription_status = models.CharField(max_length=20, choices=SubscriptionStatus.choices,
                                           default=SubscriptionStatus.TRIALING)
    subscription_start_date = models.DateTimeField(blank=True, null=True)
    subscription_end_date = models.DateTimeField(blank=True, null=True)
    active_modules = models.JSONField(default=list, blank=True,
                                      help_text="Module ids paid for on top of the plan. Ignored on Premium.")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = "School"
        verbose_name_plural = "Schools"

    def __str__(self):
        return self.name.upper()

    def has_module(self, module):
        if self.subscription_plan == self.Plan.PREMIUM:
            return True
        return module in (self.active_modules or [])

    @property
    def is_subscription_active(self):
        return (self.subscription_status == self.SubscriptionStatus.ACTIVE
                and self.subscription_end_date is not None
                and self.subscription_end_date > timezone.now())

    def number_of_students(self):
        StudentModel = apps.get_model('student', 'StudentModel')
        return StudentModel.objects.filter(school=self, is_active=True).count()


class CycleModel(models.Model):
    """A teaching cycle of a school (primaire, collège, lycée...). Counted for billing."""
    school = models.ForeignKey(SchoolModel, on_delete=models.CASCADE, related_name='cycles')
    name = models.CharField(max_length=100)
    created_at = models.DateTimeField(auto_now_add=True, blank=True, null=True)

    class Meta:
        constraints = [models.UniqueConstraint(fields=['school', 'name'], name='unique_school_cycle_name')]

    def __str__(self):
        return f"{self.name.upper()} ({self.school.school_id})"
