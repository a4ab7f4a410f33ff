import logging
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from payments.exceptions import StudentNotFound
from student.models import StudentModel
from student.tuition import compute_tuition_balance
from .models import AccountingTransactionModel, StudentPaymentModel, FinanceStatModel

logger = logging.getLogger(__name__)


def generate_payment_reference():
    """Generate a unique payment reference"""
    return f"PAY-{timezone.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6].upper()}"


def get_student_for_update(school_id, student_id):
    return (StudentModel.objects.select_for_update(of=('self',))
            .select_related('school')
            .filter(school__school_id=school_id, student_id=student_id)
            .first())


def apply_tuition_payment(school_id, student_id, amount_paid, provider_label, method, now=None,
                          send_notifications=None):
    """
    Applies an online tuition payment to a student's account. The balance
    update, the ledger row, the payment record and the school rollup counter
    are written in one transaction; this is the single source of truth for
    reducing a student's balance.
    The parent receipt is queued on commit when send_notifications is true;
    None falls back to PAYMENTS_SEND_NOTIFICATIONS.
    Returns the created StudentPaymentModel.
    """
    now = now or timezone.now()
    if send_notifications is None:
        send_notifications = settings.PAYMENTS_SEND_NOTIFICATIONS
    amount_paid = Decimal(amount_paid)

    with transaction.atomic():
        student = get_student_for_update(school_id, student_id)
        if student is None:
            logger.error(f"Student {student_id} of school {school_id} not found, payment not applied.")
            raise StudentNotFound(school_id, student_id)

        if amount_paid > student.amount_due:
            logger.warning(f"Overpayment for student {student_id}: paid {amount_paid}, "
                           f"due {student.amount_due}. Excess of {amount_paid - student.amount_due} is not credited.")

        new_amount_due, new_status = compute_tuition_balance(student.amount_due, amount_paid)
        student.amount_due = new_amount_due
        student.tuition_status = new_status
        student.save(update_fields=['amount_due', 'tuition_status', 'updated_at'])

        reference = generate_payment_reference()
        payment_date = timezone.localdate(now)

        # 1. Ledger row
        accounting_transaction = AccountingTransactionModel.objects.create(
            school=student.school,
            student=student,
            date=payment_date,
            description=f"Paiement scolarité via {provider_label}",
            category=AccountingTransactionModel.TUITION_CATEGORY,
            type=AccountingTransactionModel.TransactionType.REVENUE,
            amount=amount_paid,
            reference=reference,
            provider=provider_label,
        )

        # 2. Student payment history, pointing at the ledger row
        payer = student.payer
        payment = StudentPaymentModel.objects.create(
            school=student.school,
            student=student,
            date=payment_date,
            amount=amount_paid,
            description=f"Paiement en ligne via {provider_label}",
            method=method,
            payer_first_name=payer.first_name if payer else 'Parent',
            payer_last_name=payer.last_name if payer else '',
            reference=reference,
            provider=provider_label,
            accounting_transaction=accounting_transaction,
        )

        # 3. School-wide rollup
        stat, _ = FinanceStatModel.objects.get_or_create(school=student.school)
        FinanceStatModel.objects.filter(pk=stat.pk).update(
            total_amount_due=F('total_amount_due') - amount_paid,
            last_updated=now,
        )

        if send_notifications:
            from .tasks import send_tuition_receipt_task
            transaction.on_commit(lambda: send_tuition_receipt_task.delay(payment.pk), robust=True)

    logger.info(f"Tuition payment of {amount_paid} applied to student {student_id} of school {school_id}; "
                f"amount due is now {new_amount_due} ({new_status}).")
    return payment
