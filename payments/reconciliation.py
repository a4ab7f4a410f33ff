"""
Turns a provider notification into at most one state change: a subscription
renewal or a tuition payment. Every collaborator is injected so the engine can
run against the Django stores or against in-memory fakes.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import models, transaction
from django.utils import timezone

from admin_site.billing import check_amount_drift, expected_charge
from admin_site.subscription import extend_subscription
from .adapters import Outcome, normalize
from .config import PaymentsConfig
from .exceptions import AdapterError, DuplicateEventError, EntityNotFound, SchoolNotFound
from .reference import DecodeError, decode_reference

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('payments.security')


class ReconciliationStatus(models.TextChoices):
    APPLIED = 'applied', 'Applied'
    IGNORED = 'ignored', 'Ignored'
    DUPLICATE = 'duplicate', 'Duplicate'
    REJECTED = 'rejected', 'Rejected'
    UNDECODABLE = 'undecodable', 'Undecodable'
    AMOUNT_MISMATCH = 'amount_mismatch', 'Amount mismatch'
    NOT_FOUND = 'not_found', 'Not found'


@dataclass(frozen=True)
class ReconciliationResult:
    status: str
    provider: str
    event_id: Optional[str] = None
    detail: str = ''

    @property
    def http_status(self):
        # Every outcome but a refused payload is acknowledged.
        return 400 if self.status == ReconciliationStatus.REJECTED else 200


class ReconciliationEngine:

    def __init__(self, school_store, student_store, idempotency_store, usage_provider, config,
                 atomic=transaction.atomic, clock=timezone.now):
        self.school_store = school_store
        self.student_store = student_store
        self.idempotency_store = idempotency_store
        self.usage_provider = usage_provider
        self.config = config
        self.atomic = atomic
        self.clock = clock

    def process(self, kind, raw_body, headers=None):
        try:
            event = normalize(kind, raw_body, headers or {}, self.config)
        except AdapterError as e:
            logger.warning(f"Rejected webhook from {kind}: {e}")
            return ReconciliationResult(ReconciliationStatus.REJECTED, str(kind), detail=str(e))

        if event.outcome != Outcome.SUCCESS:
            logger.info(f"{event.provider_label} event {event.event_id} is {event.outcome} "
                        f"({event.status}), nothing to apply.")
            return self._result(ReconciliationStatus.IGNORED, event, event.outcome)

        if self.idempotency_store.has_processed(event.provider, event.event_id):
            logger.info(f"{event.provider_label} event {event.event_id} already processed.")
            return self._result(ReconciliationStatus.DUPLICATE, event)

        decoded = decode_reference(event.reference, self.config.for_provider(event.provider).delimiter)
        if isinstance(decoded, DecodeError):
            logger.warning(f"Undecodable reference on {event.provider_label} event {event.event_id}: {decoded}")
            return self._result(ReconciliationStatus.UNDECODABLE, event, str(decoded))

        mismatch = self.check_amount(event, decoded)
        if mismatch is not None and self.config.block_on_amount_mismatch:
            return self._result(ReconciliationStatus.AMOUNT_MISMATCH, event,
                                f"expected {mismatch.expected}, charged {mismatch.charged}")

        now = self.clock()
        try:
            with self.atomic():
                self.idempotency_store.mark_processed(event.provider, event.event_id, reference=event.reference,
                                                      payment_type=decoded.payment_type, now=now)
                if decoded.is_subscription:
                    self.apply_subscription(decoded, now)
                else:
                    self.apply_tuition(event, decoded, now)
        except DuplicateEventError:
            return self._result(ReconciliationStatus.DUPLICATE, event)
        except EntityNotFound as e:
            logger.error(f"{event.provider_label} event {event.event_id} not applied: {e}")
            return self._result(ReconciliationStatus.NOT_FOUND, event, str(e))

        logger.info(f"{event.provider_label} event {event.event_id} applied ({decoded.payment_type} "
                    f"for school {decoded.school_id}).")
        return self._result(ReconciliationStatus.APPLIED, event, decoded.payment_type)

    def check_amount(self, event, decoded):
        """
        Compares the charged amount with what the reference implies. Returns
        an AmountMismatch (logged as a security alert) or None.
        """
        if event.amount is None:
            return None

        if decoded.is_tuition:
            expected = decoded.expected_amount
        elif event.is_card:
            school = self.school_store.get(decoded.school_id)
            if school is None:
                return None
            usage = self.usage_provider.current_usage(decoded.school_id)
            try:
                expected = expected_charge(decoded.plan_name, usage, school.active_modules,
                                           decoded.duration_months)
            except ValueError as e:
                logger.warning(f"Cannot compute expected charge for school {decoded.school_id}: {e}")
                return None
        else:
            return None

        mismatch = check_amount_drift(expected, event.amount, self.config.amount_tolerance)
        if mismatch is not None:
            security_logger.warning(
                f"Amount mismatch on {event.provider_label} event {event.event_id} for school "
                f"{decoded.school_id}: expected {mismatch.expected} {self.config.reference_currency}, "
                f"charged {mismatch.charged} (difference {mismatch.difference})."
            )
        return mismatch

    def apply_subscription(self, decoded, now):
        extend_subscription(self.school_store, decoded.school_id, decoded.plan_name,
                            decoded.duration_months, now)
        if self.config.send_notifications:
            school = self.school_store.get(decoded.school_id)
            from finance.tasks import send_subscription_confirmation_task
            transaction.on_commit(lambda: send_subscription_confirmation_task.delay(school.pk), robust=True)

    def apply_tuition(self, event, decoded, now):
        if self.school_store.get(decoded.school_id) is None:
            raise SchoolNotFound(decoded.school_id)
        return self.student_store.transactional_update(decoded.school_id, decoded.student_id,
                                                       decoded.expected_amount, event.provider, now=now,
                                                       send_notifications=self.config.send_notifications)

    def _result(self, status, event, detail=''):
        return ReconciliationResult(status, event.provider, event.event_id, detail)


def build_default_engine():
    from .stores import DjangoIdempotencyStore, DjangoSchoolStore, DjangoStudentStore, DjangoUsageProvider
    return ReconciliationEngine(
        school_store=DjangoSchoolStore(),
        student_store=DjangoStudentStore(),
        idempotency_store=DjangoIdempotencyStore(),
        usage_provider=DjangoUsageProvider(),
        config=PaymentsConfig.from_settings(),
    )
