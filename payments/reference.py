"""
Correlation references round-tripped through payment providers.

A reference is a delimited string whose tokens are positional:

    tuition      <school_id> <student_id> <amount>     [<issued_at_ms>]
    subscription <school_id> <plan_name>  <n>m         [<issued_at_ms>]

The delimiter is ``_`` unless the provider's reference field forbids it, in
which case the call site passes its own (the card provider uses ``__``).
Decoding never raises: malformed input yields a ``DecodeError`` naming the
token that failed.
"""
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

from django.db import models

from admin_site.models import SchoolModel

logger = logging.getLogger(__name__)

DEFAULT_DELIMITER = '_'
MIN_TOKENS = 4
DEFAULT_DURATION_MONTHS = 1

_POSITIVE_INT = re.compile(r'^[0-9]+$')
_DURATION = re.compile(r'^([0-9]+)m$')


class PaymentType(models.TextChoices):
    SUBSCRIPTION = 'subscription', 'Subscription'
    TUITION = 'tuition', 'Tuition'


@dataclass(frozen=True)
class DecodedReference:
    payment_type: str
    school_id: str
    student_id: Optional[str] = None
    plan_name: Optional[str] = None
    duration_months: Optional[int] = None
    expected_amount: Optional[int] = None
    issued_at: Optional[int] = None

    @property
    def is_tuition(self):
        return self.payment_type == PaymentType.TUITION

    @property
    def is_subscription(self):
        return self.payment_type == PaymentType.SUBSCRIPTION


@dataclass(frozen=True)
class DecodeError:
    token: str
    value: Optional[str]
    reason: str

    def __str__(self):
        return f"invalid {self.token} token {self.value!r}: {self.reason}"


def _parse_positive_int(value):
    if value is None or not _POSITIVE_INT.match(value):
        return None
    number = int(value)
    return number if number > 0 else None


def parse_duration_token(token):
    """'3m' -> 3. Anything else falls back to one month."""
    match = _DURATION.match(token or '')
    months = int(match.group(1)) if match else 0
    if months <= 0:
        logger.warning(f"Malformed duration token {token!r}, falling back to {DEFAULT_DURATION_MONTHS} month.")
        return DEFAULT_DURATION_MONTHS
    return months


def decode_reference(value, delimiter=DEFAULT_DELIMITER):
    if not isinstance(value, str) or not value.strip():
        return DecodeError('reference', value, 'reference is empty')

    tokens = value.strip().split(delimiter)
    payment_type = tokens[0]
    if payment_type not in PaymentType.values:
        return DecodeError('type', payment_type, 'unknown payment type')
    if len(tokens) < MIN_TOKENS:
        return DecodeError('token_count', str(len(tokens)), f"{payment_type} needs at least {MIN_TOKENS} tokens")

    school_id = tokens[1]
    if not school_id:
        return DecodeError('school_id', school_id, 'school id is empty')

    issued_at = None
    if len(tokens) > MIN_TOKENS:
        issued_at = _parse_positive_int(tokens[MIN_TOKENS])
        if issued_at is None:
            return DecodeError('issued_at', tokens[MIN_TOKENS], 'not a positive integer')

    if payment_type == PaymentType.TUITION:
        student_id = tokens[2]
        if not student_id:
            return DecodeError('student_id', student_id, 'student id is empty')
        amount = _parse_positive_int(tokens[3])
        if amount is None:
            return DecodeError('amount', tokens[3], 'not a positive integer')
        return DecodedReference(payment_type=PaymentType.TUITION, school_id=school_id, student_id=student_id,
                                expected_amount=amount, issued_at=issued_at)

    plan_name = tokens[2]
    if plan_name not in SchoolModel.Plan.values:
        return DecodeError('plan', plan_name, 'unknown plan')
    return DecodedReference(payment_type=PaymentType.SUBSCRIPTION, school_id=school_id, plan_name=plan_name,
                            duration_months=parse_duration_token(tokens[3]), issued_at=issued_at)


def encode_reference(reference, delimiter=DEFAULT_DELIMITER):
    if reference.payment_type == PaymentType.TUITION:
        if not reference.expected_amount or reference.expected_amount <= 0:
            raise ValueError("A tuition reference needs a positive amount.")
        tokens = [PaymentType.TUITION.value, reference.school_id, reference.student_id,
                  str(reference.expected_amount)]
    elif reference.payment_type == PaymentType.SUBSCRIPTION:
        if not reference.duration_months or reference.duration_months <= 0:
            raise ValueError("A subscription reference needs a positive duration.")
        tokens = [PaymentType.SUBSCRIPTION.value, reference.school_id, reference.plan_name,
                  f"{reference.duration_months}m"]
    else:
        raise ValueError(f"Unknown payment type: {reference.payment_type}")

    if reference.issued_at is not None:
        tokens.append(str(reference.issued_at))

    for token in tokens:
        if not token:
            raise ValueError("Reference tokens cannot be empty.")
    encoded = delimiter.join(tokens)
    # Ids containing the delimiter would not split back into the same tokens.
    if encoded.split(delimiter) != tokens:
        raise ValueError(f"Reference tokens cannot contain the delimiter {delimiter!r}.")
    return encoded


def _now_millis():
    return int(time.time() * 1000)


def build_tuition_reference(school_id, student_id, amount, delimiter=DEFAULT_DELIMITER, issued_at=None):
    return encode_reference(
        DecodedReference(payment_type=PaymentType.TUITION, school_id=school_id, student_id=student_id,
                         expected_amount=int(amount), issued_at=issued_at or _now_millis()),
        delimiter,
    )


def build_subscription_reference(school_id, plan_name, duration_months, delimiter=DEFAULT_DELIMITER,
                                 issued_at=None):
    return encode_reference(
        DecodedReference(payment_type=PaymentType.SUBSCRIPTION, school_id=school_id, plan_name=plan_name,
                         duration_months=int(duration_months), issued_at=issued_at or _now_millis()),
        delimiter,
    )
