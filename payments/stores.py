"""
Django-backed collaborators of the reconciliation engine. The engine only
calls the methods defined here, so tests can hand it in-memory fakes.
"""
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from admin_site.models import SchoolModel
from admin_site.usage import DjangoUsageProvider
from finance.models import ProcessedEventModel, StudentPaymentModel
from finance.services import apply_tuition_payment
from student.models import StudentModel
from .adapters import ProviderKind
from .exceptions import DuplicateEventError

logger = logging.getLogger(__name__)


class DjangoSchoolStore:

    def get(self, school_id, lock=False):
        queryset = SchoolModel.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        return queryset.filter(school_id=school_id).first()

    def update(self, school_id, fields):
        """Partial update of the named fields only. Returns the number of rows touched."""
        fields = dict(fields, updated_at=timezone.now())
        return SchoolModel.objects.filter(school_id=school_id).update(**fields)


class DjangoStudentStore:

    def get(self, school_id, student_id):
        return StudentModel.objects.filter(school__school_id=school_id, student_id=student_id).first()

    def transactional_update(self, school_id, student_id, amount_paid, provider, now=None,
                             send_notifications=True):
        method = (StudentPaymentModel.PaymentMethod.CARD if provider == ProviderKind.STRIPE
                  else StudentPaymentModel.PaymentMethod.MOBILE)
        return apply_tuition_payment(school_id, student_id, amount_paid,
                                     provider_label=ProviderKind(provider).label, method=method, now=now,
                                     send_notifications=send_notifications)


class DjangoIdempotencyStore:

    def has_processed(self, provider, event_id):
        return ProcessedEventModel.objects.filter(provider=provider, provider_event_id=event_id).exists()

    def mark_processed(self, provider, event_id, reference='', payment_type='', now=None):
        """
        Inserts the marker of an event. The unique constraint on
        (provider, event id) turns a concurrent second delivery into a
        DuplicateEventError.
        """
        try:
            with transaction.atomic():
                return ProcessedEventModel.objects.create(
                    provider=provider,
                    provider_event_id=event_id,
                    reference=reference or '',
                    payment_type=payment_type or '',
                    processed_at=now or timezone.now(),
                )
        except IntegrityError:
            logger.info(f"Event {provider}:{event_id} was marked by a concurrent delivery.")
            raise DuplicateEventError(provider, event_id)


__all__ = ['DjangoSchoolStore', 'DjangoStudentStore', 'DjangoIdempotencyStore', 'DjangoUsageProvider']
