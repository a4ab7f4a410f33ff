"""
One adapter per payment provider. Each adapter turns a provider's webhook
payload into a PaymentEvent; nothing else in the pipeline knows about
provider field names.
"""
import json
import logging
from collections import namedtuple
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

import stripe
from django.db import models

from .exceptions import AdapterError, InvalidSignature, MalformedPayload, MissingField

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('payments.security')


class ProviderKind(models.TextChoices):
    STRIPE = 'stripe', 'Stripe'
    MTN = 'mtn', 'MTN MoMo'
    WAVE = 'wave', 'Wave'
    GENIUS = 'genius', 'Genius Pay'
    PAYDUNYA = 'paydunya', 'PayDunya'


class Outcome(models.TextChoices):
    SUCCESS = 'success', 'Success'
    FAILURE = 'failure', 'Failure'
    PENDING = 'pending', 'Pending'
    UNKNOWN = 'unknown', 'Unknown'


@dataclass(frozen=True)
class PaymentEvent:
    provider: str
    event_id: str
    outcome: str
    reference: Optional[str]
    amount: Optional[int]
    status: str = ''
    currency: str = 'XOF'
    provider_currency: str = ''
    raw_payload: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def provider_label(self):
        return ProviderKind(self.provider).label

    @property
    def is_card(self):
        return self.provider == ProviderKind.STRIPE


ProviderAdapter = namedtuple(
    'ProviderAdapter',
    ['validate', 'extract_outcome', 'extract_reference', 'extract_amount', 'extract_currency',
     'extract_event_id'],
)


def _dig(payload, *path):
    value = payload
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _require(provider, payload, *path):
    value = _dig(payload, *path)
    if value is None or value == '':
        raise MissingField(provider, '.'.join(path))
    return value


def _header(headers, name):
    if not headers:
        return None
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def to_minor_units(value):
    """Numeric or numeric-string amount to whole francs, half-up. None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return int(amount.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


# Stripe

def _stripe_validate(raw_body, payload, headers, provider_settings):
    signature = _header(headers, 'Stripe-Signature')
    if not signature:
        raise InvalidSignature(ProviderKind.STRIPE, "missing Stripe-Signature header")
    if not provider_settings.secret:
        raise InvalidSignature(ProviderKind.STRIPE, "no webhook secret configured")
    try:
        stripe.WebhookSignature.verify_header(raw_body, signature, provider_settings.secret)
    except stripe.SignatureVerificationError as e:
        raise InvalidSignature(ProviderKind.STRIPE, f"signature verification failed: {e}")
    _require(ProviderKind.STRIPE, payload, 'type')


def _stripe_outcome(payload):
    event_type = payload.get('type')
    payment_status = _dig(payload, 'data', 'object', 'payment_status')
    if event_type == 'checkout.session.completed':
        return Outcome.SUCCESS if payment_status == 'paid' else Outcome.PENDING
    if event_type in ('checkout.session.async_payment_failed', 'checkout.session.expired'):
        return Outcome.FAILURE
    return Outcome.UNKNOWN


def _stripe_reference(payload):
    return _dig(payload, 'data', 'object', 'client_reference_id')


def _stripe_amount(payload, config):
    minor = _dig(payload, 'data', 'object', 'amount_total')
    currency = (_dig(payload, 'data', 'object', 'currency') or '').lower()
    if minor is None or isinstance(minor, bool):
        return None
    # XOF is a zero-decimal currency on Stripe; everything else is charged in EUR cents.
    if currency == config.reference_currency.lower():
        return to_minor_units(minor)
    try:
        euros = Decimal(str(minor)) / Decimal(100)
    except InvalidOperation:
        return None
    return to_minor_units(euros * config.card_conversion_rate)


def _stripe_currency(payload):
    return _dig(payload, 'data', 'object', 'currency')


def _stripe_event_id(payload):
    return payload.get('id')


# MTN Mobile Money

def _mtn_validate(raw_body, payload, headers, provider_settings):
    _require(ProviderKind.MTN, payload, 'externalId')
    _require(ProviderKind.MTN, payload, 'status')


def _mtn_outcome(payload):
    return Outcome.SUCCESS if payload.get('status') == 'SUCCESSFUL' else Outcome.FAILURE


def _mtn_reference(payload):
    return payload.get('externalId')


def _mtn_amount(payload, config):
    return to_minor_units(payload.get('amount'))


def _mtn_currency(payload):
    return payload.get('currency')


def _mtn_event_id(payload):
    return payload.get('financialTransactionId') or f"{payload.get('externalId')}:{payload.get('status')}"


# Wave

def _wave_validate(raw_body, payload, headers, provider_settings):
    _require(ProviderKind.WAVE, payload, 'type')
    _require(ProviderKind.WAVE, payload, 'data', 'status')
    _require(ProviderKind.WAVE, payload, 'data', 'client_reference')


def _wave_outcome(payload):
    status = _dig(payload, 'data', 'status')
    if payload.get('type') == 'checkout.session.completed' and status == 'complete':
        return Outcome.SUCCESS
    if payload.get('type') == 'checkout.session.payment_failed' or status in ('failed', 'cancelled'):
        return Outcome.FAILURE
    return Outcome.UNKNOWN


def _wave_reference(payload):
    return _dig(payload, 'data', 'client_reference')


def _wave_amount(payload, config):
    return to_minor_units(_dig(payload, 'data', 'amount'))


def _wave_currency(payload):
    return _dig(payload, 'data', 'currency')


def _wave_event_id(payload):
    return payload.get('id') or _dig(payload, 'data', 'id')


# Genius Pay

def _genius_validate(raw_body, payload, headers, provider_settings):
    _require(ProviderKind.GENIUS, payload, 'order_id')
    _require(ProviderKind.GENIUS, payload, 'status')


def _genius_outcome(payload):
    status = payload.get('status')
    if status == 'SUCCESSFUL':
        return Outcome.SUCCESS
    if status == 'PENDING':
        return Outcome.PENDING
    if status in ('FAILED', 'CANCELLED'):
        return Outcome.FAILURE
    return Outcome.UNKNOWN


def _genius_reference(payload):
    return payload.get('order_id')


def _genius_amount(payload, config):
    return to_minor_units(payload.get('amount'))


def _genius_currency(payload):
    return payload.get('currency')


def _genius_event_id(payload):
    return payload.get('transaction_id')


# PayDunya

def _paydunya_validate(raw_body, payload, headers, provider_settings):
    _require(ProviderKind.PAYDUNYA, payload, 'data', 'status')
    _require(ProviderKind.PAYDUNYA, payload, 'data', 'custom_data', 'reference')


def _paydunya_outcome(payload):
    status = _dig(payload, 'data', 'status')
    if status == 'completed':
        return Outcome.SUCCESS
    if status == 'pending':
        return Outcome.PENDING
    if status in ('cancelled', 'failed'):
        return Outcome.FAILURE
    return Outcome.UNKNOWN


def _paydunya_reference(payload):
    return _dig(payload, 'data', 'custom_data', 'reference')


def _paydunya_amount(payload, config):
    return to_minor_units(_dig(payload, 'data', 'invoice', 'total_amount'))


def _paydunya_currency(payload):
    return _dig(payload, 'data', 'invoice', 'currency')


def _paydunya_event_id(payload):
    return _dig(payload, 'data', 'invoice', 'token') or _dig(payload, 'data', 'hash')


ADAPTERS = {
    ProviderKind.STRIPE: ProviderAdapter(_stripe_validate, _stripe_outcome, _stripe_reference,
                                         _stripe_amount, _stripe_currency, _stripe_event_id),
    ProviderKind.MTN: ProviderAdapter(_mtn_validate, _mtn_outcome, _mtn_reference,
                                      _mtn_amount, _mtn_currency, _mtn_event_id),
    ProviderKind.WAVE: ProviderAdapter(_wave_validate, _wave_outcome, _wave_reference,
                                       _wave_amount, _wave_currency, _wave_event_id),
    ProviderKind.GENIUS: ProviderAdapter(_genius_validate, _genius_outcome, _genius_reference,
                                         _genius_amount, _genius_currency, _genius_event_id),
    ProviderKind.PAYDUNYA: ProviderAdapter(_paydunya_validate, _paydunya_outcome, _paydunya_reference,
                                           _paydunya_amount, _paydunya_currency, _paydunya_event_id),
}


def _parse_body(kind, raw_body):
    if isinstance(raw_body, bytes):
        try:
            raw_body = raw_body.decode('utf-8')
        except UnicodeDecodeError:
            raise MalformedPayload(kind, "body is not valid UTF-8")
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        raise MalformedPayload(kind, "body is not valid JSON")
    if not isinstance(payload, dict):
        raise MalformedPayload(kind, "body is not a JSON object")
    return payload


def normalize(kind, raw_body, headers, config):
    """
    Validates and parses a raw webhook body into a PaymentEvent.
    Raises an AdapterError subclass when the payload cannot be trusted.
    """
    try:
        kind = ProviderKind(kind)
    except ValueError:
        raise AdapterError(kind, "unknown payment provider")
    adapter = ADAPTERS[kind]

    raw_text = raw_body.decode('utf-8', errors='replace') if isinstance(raw_body, bytes) else (raw_body or '')
    payload = _parse_body(kind, raw_body)
    try:
        adapter.validate(raw_text, payload, headers, config.for_provider(kind))
    except InvalidSignature as e:
        security_logger.warning(f"Rejected {kind.label} webhook: {e}")
        raise

    event_id = adapter.extract_event_id(payload)
    if not event_id:
        raise MissingField(kind, 'event id')

    reference = adapter.extract_reference(payload)
    # Amounts are normalized to the reference currency; the charged one is kept as sent.
    provider_currency = adapter.extract_currency(payload) or config.reference_currency
    event = PaymentEvent(
        provider=kind.value,
        event_id=str(event_id),
        outcome=adapter.extract_outcome(payload),
        reference=str(reference) if reference is not None else None,
        amount=adapter.extract_amount(payload, config),
        status=str(_dig(payload, 'data', 'status') or payload.get('status') or payload.get('type') or ''),
        currency=config.reference_currency,
        provider_currency=str(provider_currency).upper(),
        raw_payload=payload,
    )
    logger.debug(f"Normalized {kind.label} event {event.event_id}: {event.outcome}")
    return event
