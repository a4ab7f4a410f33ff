import contextlib
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase, SimpleTestCase, override_settings
from django.urls import reverse

from admin_site.models import SchoolModel
from finance.models import AccountingTransactionModel, ProcessedEventModel, StudentPaymentModel
from payments.adapters import Outcome, ProviderKind, normalize, to_minor_units
from payments.config import PaymentsConfig, ProviderSettings
from payments.exceptions import AdapterError, DuplicateEventError, InvalidSignature, MalformedPayload, MissingField
from payments.reconciliation import ReconciliationEngine, ReconciliationStatus, ReconciliationResult
from payments.reference import (
    DecodedReference, DecodeError, PaymentType, build_subscription_reference, build_tuition_reference,
    decode_reference, encode_reference,
)
from payments.stores import DjangoIdempotencyStore, DjangoSchoolStore, DjangoStudentStore, DjangoUsageProvider
from student.models import StudentModel

STRIPE_SECRET = 'whsec_test_secret'
NOW = datetime(2024, 5, 20, 10, 0, tzinfo=dt_timezone.utc)

CONFIG = PaymentsConfig(
    providers={'stripe': ProviderSettings(secret=STRIPE_SECRET, delimiter='__')},
    send_notifications=False,
)

TEST_PAYMENT_PROVIDERS = {
    'stripe': {'secret': STRIPE_SECRET, 'delimiter': '__'},
    'mtn': {'secret': '', 'delimiter': '_'},
    'wave': {'secret': '', 'delimiter': '_'},
    'genius': {'secret': '', 'delimiter': '_'},
    'paydunya': {'secret': '', 'delimiter': '_'},
}


def stripe_signature(payload, secret=STRIPE_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode('utf-8'), f"{timestamp}.{payload}".encode('utf-8'),
                         hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_body(reference, amount_total=22822, currency='eur', event_id='evt_1',
                event_type='checkout.session.completed', payment_status='paid'):
    return json.dumps({
        'id': event_id,
        'type': event_type,
        'data': {'object': {
            'id': 'cs_test_1',
            'client_reference_id': reference,
            'payment_status': payment_status,
            'amount_total': amount_total,
            'currency': currency,
        }},
    })


def wave_body(reference, amount='5000', event_id='EV_wave_1', status='complete',
              event_type='checkout.session.completed'):
    return json.dumps({
        'id': event_id,
        'type': event_type,
        'data': {'id': 'cos_1', 'status': status, 'client_reference': reference, 'amount': amount},
    })


def mtn_body(reference, status='SUCCESSFUL', amount='5000', transaction_id='1234567'):
    body = {'externalId': reference, 'status': status, 'amount': amount, 'currency': 'XOF'}
    if transaction_id:
        body['financialTransactionId'] = transaction_id
    return json.dumps(body)


def genius_body(reference, status='SUCCESSFUL', amount=5000, transaction_id='GP-1'):
    return json.dumps({'transaction_id': transaction_id, 'order_id': reference, 'status': status,
                       'amount': amount})


def paydunya_body(reference, status='completed', total_amount='5000', token='tok_1'):
    return json.dumps({'data': {
        'status': status,
        'hash': 'hash_1',
        'custom_data': {'reference': reference},
        'invoice': {'token': token, 'total_amount': total_amount},
    }})


class ReferenceCodecTests(SimpleTestCase):

    def test_decode_tuition_reference(self):
        self.assertEqual(
            decode_reference('tuition_schoolA_stu1_5000_1690000000000'),
            DecodedReference(payment_type=PaymentType.TUITION, school_id='schoolA', student_id='stu1',
                             expected_amount=5000, issued_at=1690000000000),
        )

    def test_decode_subscription_reference_without_timestamp(self):
        decoded = decode_reference('subscription_schoolA_Pro_3m')
        self.assertTrue(decoded.is_subscription)
        self.assertEqual(decoded.plan_name, 'Pro')
        self.assertEqual(decoded.duration_months, 3)
        self.assertIsNone(decoded.issued_at)

    def test_unparseable_duration_falls_back_to_one_month(self):
        with self.assertLogs('payments.reference', level='WARNING'):
            decoded = decode_reference('subscription_schoolA_Pro_3x_1690000000000')
        self.assertEqual(decoded.duration_months, 1)

    def test_zero_duration_falls_back_to_one_month(self):
        with self.assertLogs('payments.reference', level='WARNING'):
            self.assertEqual(decode_reference('subscription_schoolA_Pro_0m').duration_months, 1)

    def test_decode_errors_name_the_failing_token(self):
        cases = {
            '': 'reference',
            'refund_sch1_stu1_100': 'type',
            'tuition_sch1_stu1': 'token_count',
            'tuition__stu1_100': 'school_id',
            'tuition_sch1__100': 'student_id',
            'tuition_sch1_stu1_abc': 'amount',
            'tuition_sch1_stu1_0': 'amount',
            'tuition_sch1_stu1_-5': 'amount',
            'subscription_sch1_Gold_1m': 'plan',
            'tuition_sch1_stu1_100_yesterday': 'issued_at',
        }
        for value, token in cases.items():
            with self.subTest(value=value):
                error = decode_reference(value)
                self.assertIsInstance(error, DecodeError)
                self.assertEqual(error.token, token)

    def test_decode_never_raises_on_non_strings(self):
        self.assertIsInstance(decode_reference(None), DecodeError)
        self.assertIsInstance(decode_reference(1234), DecodeError)

    def test_double_underscore_delimiter_allows_underscores_in_ids(self):
        reference = DecodedReference(payment_type=PaymentType.TUITION, school_id='sch_1', student_id='stu_9',
                                     expected_amount=25000, issued_at=1690000000000)
        encoded = encode_reference(reference, delimiter='__')
        self.assertEqual(encoded, 'tuition__sch_1__stu_9__25000__1690000000000')
        self.assertEqual(decode_reference(encoded, delimiter='__'), reference)

    def test_encode_refuses_tokens_that_would_not_split_back(self):
        with self.assertRaises(ValueError):
            build_tuition_reference('sch_1', 'stu1', 5000)
        with self.assertRaises(ValueError):
            build_subscription_reference('sch1_', 'Pro', 1, delimiter='__')
        with self.assertRaises(ValueError):
            build_tuition_reference('', 'stu1', 5000)
        with self.assertRaises(ValueError):
            build_tuition_reference('sch1', 'stu1', 0)

    def test_built_references_carry_an_issue_timestamp(self):
        encoded = build_subscription_reference('sch1', 'Premium', 12)
        decoded = decode_reference(encoded)
        self.assertEqual(decoded.plan_name, 'Premium')
        self.assertEqual(decoded.duration_months, 12)
        self.assertGreater(decoded.issued_at, 1690000000000)


class ProviderAdapterTests(SimpleTestCase):

    def test_stripe_signed_event_is_converted_to_xof(self):
        body = stripe_body('subscription__sch1__Pro__3m', amount_total=22822)
        event = normalize('stripe', body.encode('utf-8'), {'Stripe-Signature': stripe_signature(body)}, CONFIG)

        self.assertEqual(event.provider, ProviderKind.STRIPE)
        self.assertEqual(event.outcome, Outcome.SUCCESS)
        self.assertEqual(event.event_id, 'evt_1')
        self.assertEqual(event.reference, 'subscription__sch1__Pro__3m')
        self.assertEqual(event.amount, 149703)

    def test_stripe_xof_amount_is_not_converted(self):
        body = stripe_body('tuition__sch1__stu1__5000', amount_total=5000, currency='xof')
        event = normalize('stripe', body, {'stripe-signature': stripe_signature(body)}, CONFIG)
        self.assertEqual(event.amount, 5000)

    def test_stripe_unpaid_session_is_pending(self):
        body = stripe_body('tuition__sch1__stu1__5000', payment_status='unpaid')
        event = normalize('stripe', body, {'Stripe-Signature': stripe_signature(body)}, CONFIG)
        self.assertEqual(event.outcome, Outcome.PENDING)

    def test_stripe_bad_signature_is_rejected(self):
        body = stripe_body('tuition__sch1__stu1__5000')
        with self.assertRaises(InvalidSignature), self.assertLogs('payments.security', level='WARNING'):
            normalize('stripe', body, {'Stripe-Signature': stripe_signature(body, secret='whsec_other')}, CONFIG)

    def test_stripe_missing_signature_is_rejected(self):
        with self.assertRaises(InvalidSignature), self.assertLogs('payments.security', level='WARNING'):
            normalize('stripe', stripe_body('tuition__sch1__stu1__5000'), {}, CONFIG)

    def test_stripe_without_configured_secret_is_rejected(self):
        body = stripe_body('tuition__sch1__stu1__5000')
        with self.assertRaises(InvalidSignature), self.assertLogs('payments.security', level='WARNING'):
            normalize('stripe', body, {'Stripe-Signature': stripe_signature(body)}, PaymentsConfig())

    def test_mtn_outcomes_and_event_id_fallback(self):
        event = normalize('mtn', mtn_body('tuition_sch1_stu1_5000'), {}, CONFIG)
        self.assertEqual(event.outcome, Outcome.SUCCESS)
        self.assertEqual(event.event_id, '1234567')
        self.assertEqual(event.amount, 5000)

        event = normalize('mtn', mtn_body('tuition_sch1_stu1_5000', status='FAILED', transaction_id=None), {},
                          CONFIG)
        self.assertEqual(event.outcome, Outcome.FAILURE)
        self.assertEqual(event.event_id, 'tuition_sch1_stu1_5000:FAILED')

    def test_mtn_requires_external_id(self):
        with self.assertRaises(MissingField):
            normalize('mtn', json.dumps({'status': 'SUCCESSFUL'}), {}, CONFIG)

    def test_wave_outcomes(self):
        self.assertEqual(normalize('wave', wave_body('r'), {}, CONFIG).outcome, Outcome.SUCCESS)
        failed = wave_body('r', status='failed', event_type='checkout.session.payment_failed')
        self.assertEqual(normalize('wave', failed, {}, CONFIG).outcome, Outcome.FAILURE)
        processing = wave_body('r', status='processing')
        self.assertEqual(normalize('wave', processing, {}, CONFIG).outcome, Outcome.UNKNOWN)

    def test_wave_event_id_falls_back_to_session_id(self):
        body = json.loads(wave_body('r'))
        del body['id']
        self.assertEqual(normalize('wave', json.dumps(body), {}, CONFIG).event_id, 'cos_1')

    def test_wave_requires_client_reference(self):
        body = json.loads(wave_body('r'))
        del body['data']['client_reference']
        with self.assertRaises(MissingField) as ctx:
            normalize('wave', json.dumps(body), {}, CONFIG)
        self.assertEqual(ctx.exception.field_name, 'data.client_reference')

    def test_genius_outcomes(self):
        expected = {'SUCCESSFUL': Outcome.SUCCESS, 'PENDING': Outcome.PENDING, 'FAILED': Outcome.FAILURE,
                    'CANCELLED': Outcome.FAILURE, 'REVERSED': Outcome.UNKNOWN}
        for status, outcome in expected.items():
            with self.subTest(status=status):
                self.assertEqual(normalize('genius', genius_body('r', status=status), {}, CONFIG).outcome, outcome)

    def test_paydunya_string_amount_and_token(self):
        event = normalize('paydunya', paydunya_body('tuition_sch1_stu1_5000', total_amount='5000.00'), {}, CONFIG)
        self.assertEqual(event.amount, 5000)
        self.assertEqual(event.event_id, 'tok_1')
        self.assertEqual(event.reference, 'tuition_sch1_stu1_5000')
        self.assertEqual(event.outcome, Outcome.SUCCESS)

    def test_paydunya_unparseable_amount_is_none(self):
        event = normalize('paydunya', paydunya_body('r', total_amount='cinq mille'), {}, CONFIG)
        self.assertIsNone(event.amount)

    def test_paydunya_event_id_falls_back_to_hash(self):
        event = normalize('paydunya', paydunya_body('r', token=None), {}, CONFIG)
        self.assertEqual(event.event_id, 'hash_1')

    def test_malformed_bodies_are_rejected(self):
        with self.assertRaises(MalformedPayload):
            normalize('wave', b'{not json', {}, CONFIG)
        with self.assertRaises(MalformedPayload):
            normalize('wave', b'[1, 2]', {}, CONFIG)

    def test_unknown_provider_is_rejected(self):
        with self.assertRaises(AdapterError):
            normalize('paypal', wave_body('r'), {}, CONFIG)

    def test_to_minor_units(self):
        self.assertEqual(to_minor_units('12.5'), 13)
        self.assertEqual(to_minor_units(12.4), 12)
        self.assertEqual(to_minor_units(' 5000 '), 5000)
        self.assertIsNone(to_minor_units('abc'))
        self.assertIsNone(to_minor_units(None))
        self.assertIsNone(to_minor_units(True))
        self.assertIsNone(to_minor_units('NaN'))

    def test_stripe_event_keeps_the_charged_currency_and_payload(self):
        body = stripe_body('tuition__sch1__stu1__5000', amount_total=22822)
        event = normalize('stripe', body, {'Stripe-Signature': stripe_signature(body)}, CONFIG)
        self.assertEqual(event.currency, 'XOF')
        self.assertEqual(event.provider_currency, 'EUR')
        self.assertEqual(event.raw_payload, json.loads(body))

    def test_mobile_money_events_carry_currency_and_payload(self):
        wave = json.loads(wave_body('r'))
        wave['data']['currency'] = 'XOF'
        paydunya = json.loads(paydunya_body('r'))
        paydunya['data']['invoice']['currency'] = 'xof'
        bodies = {
            'mtn': mtn_body('r'),
            'wave': json.dumps(wave),
            'genius': json.dumps(dict(json.loads(genius_body('r')), currency='XOF')),
            'paydunya': json.dumps(paydunya),
        }
        for provider, body in bodies.items():
            with self.subTest(provider=provider):
                event = normalize(provider, body, {}, CONFIG)
                self.assertEqual(event.currency, 'XOF')
                self.assertEqual(event.provider_currency, 'XOF')
                self.assertEqual(event.raw_payload, json.loads(body))

    def test_missing_provider_currency_defaults_to_the_reference_currency(self):
        event = normalize('genius', genius_body('r'), {}, CONFIG)
        self.assertEqual(event.provider_currency, 'XOF')
        self.assertEqual(event.raw_payload['order_id'], 'r')

    def test_stripe_async_success_is_not_a_completed_checkout(self):
        body = stripe_body('tuition__sch1__stu1__5000', event_type='checkout.session.async_payment_succeeded')
        event = normalize('stripe', body, {'Stripe-Signature': stripe_signature(body)}, CONFIG)
        self.assertEqual(event.outcome, Outcome.UNKNOWN)

    def test_genius_status_is_case_sensitive(self):
        event = normalize('genius', genius_body('r', status='successful'), {}, CONFIG)
        self.assertEqual(event.outcome, Outcome.UNKNOWN)


class ReconciliationEngineTests(TestCase):

    def setUp(self):
        self.school = SchoolModel.objects.create(school_id='schoolA', name='Institut Les Cèdres',
                                                 director_email='directeur@example.com')
        self.student = StudentModel.objects.create(school=self.school, student_id='stu1', first_name='Awa',
                                                   last_name='Diop', amount_due=Decimal('8000'))

    def build_engine(self, config=CONFIG, idempotency_store=None):
        return ReconciliationEngine(
            school_store=DjangoSchoolStore(),
            student_store=DjangoStudentStore(),
            idempotency_store=idempotency_store or DjangoIdempotencyStore(),
            usage_provider=DjangoUsageProvider(),
            config=config,
            clock=lambda: NOW,
        )

    def test_tuition_payment_is_applied(self):
        result = self.build_engine().process('wave', wave_body('tuition_schoolA_stu1_5000_1690000000000'))

        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        self.assertEqual(result.http_status, 200)
        self.student.refresh_from_db()
        self.assertEqual(self.student.amount_due, Decimal('3000'))
        self.assertEqual(self.student.tuition_status, StudentModel.TuitionStatus.PARTIAL)
        ledger = AccountingTransactionModel.objects.get()
        self.assertEqual(ledger.amount, Decimal('5000'))
        self.assertEqual(ledger.type, AccountingTransactionModel.TransactionType.REVENUE)
        self.assertEqual(ledger.provider, 'Wave')
        marker = ProcessedEventModel.objects.get()
        self.assertEqual((marker.provider, marker.provider_event_id), ('wave', 'EV_wave_1'))
        self.assertEqual(marker.payment_type, PaymentType.TUITION)

    def test_subscription_renewal_of_a_lapsed_school(self):
        self.school.subscription_end_date = NOW - timedelta(days=1)
        self.school.save()

        result = self.build_engine().process('wave', wave_body('subscription_schoolA_Pro_3m_1690000000000',
                                                               amount='149700'))

        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        self.school.refresh_from_db()
        self.assertEqual(self.school.subscription_status, SchoolModel.SubscriptionStatus.ACTIVE)
        self.assertEqual(self.school.subscription_plan, 'Pro')
        self.assertEqual(self.school.subscription_end_date, datetime(2024, 8, 20, 10, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(self.school.subscription_start_date, NOW)

    def test_second_delivery_changes_nothing(self):
        engine = self.build_engine()
        body = mtn_body('tuition_schoolA_stu1_5000_1690000000000')

        first = engine.process('mtn', body)
        second = engine.process('mtn', body)

        self.assertEqual(first.status, ReconciliationStatus.APPLIED)
        self.assertEqual(second.status, ReconciliationStatus.DUPLICATE)
        self.assertEqual(second.http_status, 200)
        self.student.refresh_from_db()
        self.assertEqual(self.student.amount_due, Decimal('3000'))
        self.assertEqual(AccountingTransactionModel.objects.count(), 1)
        self.assertEqual(StudentPaymentModel.objects.count(), 1)

    def test_concurrent_duplicate_is_caught_by_the_marker(self):
        class RacingIdempotencyStore(DjangoIdempotencyStore):
            def has_processed(self, provider, event_id):
                return False

        ProcessedEventModel.objects.create(provider='genius', provider_event_id='GP-1')
        result = self.build_engine(idempotency_store=RacingIdempotencyStore()).process(
            'genius', genius_body('tuition_schoolA_stu1_5000'))

        self.assertEqual(result.status, ReconciliationStatus.DUPLICATE)
        self.assertFalse(AccountingTransactionModel.objects.exists())
        self.student.refresh_from_db()
        self.assertEqual(self.student.amount_due, Decimal('8000'))

    def test_invalid_signature_touches_no_store(self):
        school_store, student_store, idempotency_store, usage_provider = mock.Mock(), mock.Mock(), mock.Mock(), \
            mock.Mock()
        engine = ReconciliationEngine(school_store, student_store, idempotency_store, usage_provider, CONFIG)
        body = stripe_body('tuition__schoolA__stu1__5000')

        with self.assertLogs('payments.security', level='WARNING'):
            result = engine.process('stripe', body, {'Stripe-Signature': stripe_signature(body, secret='wrong')})

        self.assertEqual(result.status, ReconciliationStatus.REJECTED)
        self.assertEqual(result.http_status, 400)
        for store in (school_store, student_store, idempotency_store, usage_provider):
            self.assertEqual(store.method_calls, [])
        self.assertFalse(ProcessedEventModel.objects.exists())

    def test_non_success_outcomes_are_ignored(self):
        engine = self.build_engine()
        failed = engine.process('mtn', mtn_body('tuition_schoolA_stu1_5000', status='FAILED'))
        pending = engine.process('paydunya', paydunya_body('tuition_schoolA_stu1_5000', status='pending'))

        self.assertEqual(failed.status, ReconciliationStatus.IGNORED)
        self.assertEqual(pending.status, ReconciliationStatus.IGNORED)
        self.assertFalse(ProcessedEventModel.objects.exists())

    def test_undecodable_reference_is_acknowledged(self):
        with self.assertLogs('payments.reconciliation', level='WARNING'):
            result = self.build_engine().process('wave', wave_body('commande-1234'))
        self.assertEqual(result.status, ReconciliationStatus.UNDECODABLE)
        self.assertEqual(result.http_status, 200)
        self.assertFalse(ProcessedEventModel.objects.exists())

    def test_unknown_student_rolls_back_the_marker(self):
        with self.assertLogs('payments.reconciliation', level='ERROR'):
            result = self.build_engine().process('wave', wave_body('tuition_schoolA_ghost_5000'))
        self.assertEqual(result.status, ReconciliationStatus.NOT_FOUND)
        self.assertFalse(ProcessedEventModel.objects.exists())
        self.assertFalse(AccountingTransactionModel.objects.exists())

    def test_unknown_school_is_not_found(self):
        subscription = self.build_engine().process('wave', wave_body('subscription_ghost_Pro_1m', event_id='a'))
        tuition = self.build_engine().process('wave', wave_body('tuition_ghost_stu1_5000', event_id='b'))
        self.assertEqual(subscription.status, ReconciliationStatus.NOT_FOUND)
        self.assertEqual(tuition.status, ReconciliationStatus.NOT_FOUND)
        self.assertFalse(ProcessedEventModel.objects.exists())

    def test_overpayment_settles_and_is_recorded_in_full(self):
        result = self.build_engine().process('genius', genius_body('tuition_schoolA_stu1_10000', amount=10000))
        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        self.student.refresh_from_db()
        self.assertEqual(self.student.amount_due, Decimal('0'))
        self.assertEqual(self.student.tuition_status, StudentModel.TuitionStatus.SETTLED)
        self.assertEqual(AccountingTransactionModel.objects.get().amount, Decimal('10000'))

    def test_card_subscription_with_matching_amount(self):
        body = stripe_body('subscription__schoolA__Pro__3m__1690000000000', amount_total=22822)
        result = self.build_engine().process('stripe', body, {'Stripe-Signature': stripe_signature(body)})

        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        self.school.refresh_from_db()
        self.assertEqual(self.school.subscription_plan, 'Pro')

    def test_card_amount_mismatch_is_advisory_by_default(self):
        body = stripe_body('subscription__schoolA__Premium__1m', amount_total=1000)
        with self.assertLogs('payments.security', level='WARNING') as logs:
            result = self.build_engine().process('stripe', body, {'Stripe-Signature': stripe_signature(body)})

        self.assertIn('Amount mismatch', logs.output[0])
        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        self.school.refresh_from_db()
        self.assertEqual(self.school.subscription_plan, 'Premium')

    def test_amount_mismatch_blocks_in_strict_mode(self):
        strict = PaymentsConfig(providers=CONFIG.providers, block_on_amount_mismatch=True, send_notifications=False)
        body = stripe_body('subscription__schoolA__Premium__1m', amount_total=1000)
        with self.assertLogs('payments.security', level='WARNING'):
            result = self.build_engine(config=strict).process('stripe', body,
                                                              {'Stripe-Signature': stripe_signature(body)})

        self.assertEqual(result.status, ReconciliationStatus.AMOUNT_MISMATCH)
        self.assertEqual(result.http_status, 200)
        self.school.refresh_from_db()
        self.assertEqual(self.school.subscription_plan, SchoolModel.Plan.ESSENTIEL)
        self.assertFalse(ProcessedEventModel.objects.exists())

    def test_tuition_amount_mismatch_still_applies_the_reference_amount(self):
        with self.assertLogs('payments.security', level='WARNING'):
            result = self.build_engine().process('wave', wave_body('tuition_schoolA_stu1_5000', amount='4000'))
        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        self.assertEqual(AccountingTransactionModel.objects.get().amount, Decimal('5000'))

    def test_subscription_confirmation_is_queued_after_commit(self):
        config = PaymentsConfig(providers=CONFIG.providers, send_notifications=True)
        with mock.patch('finance.tasks.send_subscription_confirmation_task.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                self.build_engine(config=config).process('wave', wave_body('subscription_schoolA_Pro_1m'))
        delay.assert_called_once_with(self.school.pk)

    @override_settings(PAYMENTS_SEND_NOTIFICATIONS=True)
    def test_engine_without_notifications_queues_no_receipt(self):
        with mock.patch('finance.tasks.send_tuition_receipt_task.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                result = self.build_engine().process('wave', wave_body('tuition_schoolA_stu1_5000'))
        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        delay.assert_not_called()

    @override_settings(PAYMENTS_SEND_NOTIFICATIONS=False)
    def test_engine_with_notifications_queues_the_receipt(self):
        config = PaymentsConfig(providers=CONFIG.providers, send_notifications=True)
        with mock.patch('finance.tasks.send_tuition_receipt_task.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                self.build_engine(config=config).process('wave', wave_body('tuition_schoolA_stu1_5000'))
        delay.assert_called_once_with(StudentPaymentModel.objects.get().pk)


class InMemorySchoolStore:

    def __init__(self, schools):
        self.schools = schools

    def get(self, school_id, lock=False):
        return self.schools.get(school_id)

    def update(self, school_id, fields):
        for name, value in fields.items():
            setattr(self.schools[school_id], name, value)
        return 1


class InMemoryIdempotencyStore:

    def __init__(self):
        self.keys = set()

    def has_processed(self, provider, event_id):
        return (provider, event_id) in self.keys

    def mark_processed(self, provider, event_id, **kwargs):
        if (provider, event_id) in self.keys:
            raise DuplicateEventError(provider, event_id)
        self.keys.add((provider, event_id))


class EngineWithFakeStoresTests(SimpleTestCase):

    def setUp(self):
        self.school = SimpleNamespace(pk=1, subscription_plan='Essentiel', subscription_status='trialing',
                                      subscription_start_date=None, subscription_end_date=None,
                                      active_modules=[])
        self.student_store = mock.Mock()
        self.engine = ReconciliationEngine(
            school_store=InMemorySchoolStore({'sch1': self.school}),
            student_store=self.student_store,
            idempotency_store=InMemoryIdempotencyStore(),
            usage_provider=mock.Mock(),
            config=CONFIG,
            atomic=contextlib.nullcontext,
            clock=lambda: NOW,
        )

    def test_subscription_without_a_database(self):
        result = self.engine.process('paydunya', paydunya_body('subscription_sch1_Premium_12m'))

        self.assertEqual(result, ReconciliationResult(ReconciliationStatus.APPLIED, 'paydunya', 'tok_1',
                                                      PaymentType.SUBSCRIPTION))
        self.assertEqual(self.school.subscription_plan, 'Premium')
        self.assertEqual(self.school.subscription_status, SchoolModel.SubscriptionStatus.ACTIVE)
        self.assertEqual(self.school.subscription_end_date, datetime(2025, 5, 20, 10, 0, tzinfo=dt_timezone.utc))

        again = self.engine.process('paydunya', paydunya_body('subscription_sch1_Premium_12m'))
        self.assertEqual(again.status, ReconciliationStatus.DUPLICATE)

    def test_tuition_is_delegated_to_the_student_store(self):
        result = self.engine.process('mtn', mtn_body('tuition_sch1_stu1_5000'))

        self.assertEqual(result.status, ReconciliationStatus.APPLIED)
        self.student_store.transactional_update.assert_called_once_with('sch1', 'stu1', 5000, 'mtn', now=NOW,
                                                                          send_notifications=False)


@override_settings(PAYMENT_PROVIDERS=TEST_PAYMENT_PROVIDERS, PAYMENTS_SEND_NOTIFICATIONS=False)
class PaymentWebhookViewTests(TestCase):

    def setUp(self):
        self.school = SchoolModel.objects.create(school_id='schoolA', name='Institut Les Cèdres')
        StudentModel.objects.create(school=self.school, student_id='stu1', first_name='Awa', last_name='Diop',
                                    amount_due=Decimal('8000'))

    def post(self, provider, body, **extra):
        return self.client.post(reverse(f'payments_webhook_{provider}'), data=body,
                                content_type='application/json', **extra)

    def test_every_provider_has_a_route(self):
        for kind in ProviderKind:
            self.assertEqual(reverse(f'payments_webhook_{kind.value}'), f'/payments/webhooks/{kind.value}/')

    def test_applied_payment_answers_200(self):
        response = self.post('wave', wave_body('tuition_schoolA_stu1_5000'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'applied', 'event_id': 'EV_wave_1'})

    def test_signed_stripe_event_answers_200(self):
        body = stripe_body('tuition__schoolA__stu1__5000', amount_total=5000, currency='xof')
        response = self.post('stripe', body, HTTP_STRIPE_SIGNATURE=stripe_signature(body))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'applied')

    def test_bad_signature_answers_400(self):
        body = stripe_body('tuition__schoolA__stu1__5000')
        with self.assertLogs('payments.security', level='WARNING'):
            response = self.post('stripe', body, HTTP_STRIPE_SIGNATURE='t=1,v1=deadbeef')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['status'], 'rejected')

    def test_malformed_body_answers_400(self):
        response = self.post('genius', '{oops')
        self.assertEqual(response.status_code, 400)

    def test_terminal_outcomes_answer_200(self):
        self.assertEqual(self.post('mtn', mtn_body('tuition_schoolA_stu1_5000', status='FAILED')).status_code, 200)
        self.assertEqual(self.post('wave', wave_body('nonsense', event_id='x')).status_code, 200)
        self.assertEqual(self.post('wave', wave_body('tuition_schoolA_ghost_100', event_id='y')).status_code, 200)

    def test_database_failure_answers_500(self):
        engine = mock.Mock()
        engine.process.side_effect = DatabaseError('connection lost')
        with mock.patch('payments.views.build_default_engine', return_value=engine), \
                self.assertLogs('payments.views', level='ERROR'):
            response = self.post('wave', wave_body('tuition_schoolA_stu1_5000'))
        self.assertEqual(response.status_code, 500)

    def test_get_is_not_allowed(self):
        self.assertEqual(self.client.get(reverse('payments_webhook_wave')).status_code, 405)
