from decimal import Decimal

from .models import StudentModel


def compute_tuition_balance(amount_due, amount_paid):
    """
    Applies a payment to a balance. Overpayment is clamped: the balance never
    goes below zero and the excess is not carried forward.
    Returns (new_amount_due, new_status).
    """
    amount_due = Decimal(amount_due or 0)
    amount_paid = Decimal(amount_paid or 0)
    new_amount_due = max(Decimal('0'), amount_due - amount_paid)
    new_status = (StudentModel.TuitionStatus.SETTLED if new_amount_due == 0
                  else StudentModel.TuitionStatus.PARTIAL)
    return new_amount_due, new_status
