from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.core import mail
from django.core.exceptions import ValidationError
from django.test import TestCase, override_settings
from django.utils import timezone

from admin_site.models import SchoolModel
from finance.models import AccountingTransactionModel, StudentPaymentModel, FinanceStatModel, ProcessedEventModel
from finance.services import apply_tuition_payment
from finance.tasks import send_tuition_receipt_task, send_subscription_confirmation_task, purge_processed_events_task
from payments.exceptions import StudentNotFound
from student.models import StudentModel, ParentModel


class ApplyTuitionPaymentTests(TestCase):

    def setUp(self):
        self.school = SchoolModel.objects.create(school_id='sch1', name='Cours Sainte Marie')
        self.student = StudentModel.objects.create(school=self.school, student_id='stu1', first_name='Awa',
                                                   last_name='Diop', tuition_fee=Decimal('150000'),
                                                   amount_due=Decimal('150000'))
        self.parent = ParentModel.objects.create(school=self.school, first_name='Fatou', last_name='Diop',
                                                 email='fatou@example.com')
        self.student.parents.add(self.parent)
        FinanceStatModel.objects.create(school=self.school, total_amount_due=Decimal('150000'))

    @override_settings(PAYMENTS_SEND_NOTIFICATIONS=False)
    def test_partial_payment_writes_every_record(self):
        payment = apply_tuition_payment('sch1', 'stu1', 50000, 'Wave', StudentPaymentModel.PaymentMethod.MOBILE)

        self.student.refresh_from_db()
        self.assertEqual(self.student.amount_due, Decimal('100000'))
        self.assertEqual(self.student.tuition_status, StudentModel.TuitionStatus.PARTIAL)

        ledger = AccountingTransactionModel.objects.get()
        self.assertEqual(ledger.amount, Decimal('50000'))
        self.assertEqual(ledger.type, AccountingTransactionModel.TransactionType.REVENUE)
        self.assertEqual(ledger.category, 'Scolarité')
        self.assertEqual(ledger.description, 'Paiement scolarité via Wave')
        self.assertEqual(ledger.student, self.student)

        self.assertEqual(payment.accounting_transaction, ledger)
        self.assertEqual(payment.reference, ledger.reference)
        self.assertEqual(payment.payer_first_name, 'Fatou')
        self.assertEqual(payment.method, StudentPaymentModel.PaymentMethod.MOBILE)
        self.assertEqual(payment.description, 'Paiement en ligne via Wave')

        self.assertEqual(FinanceStatModel.objects.get(school=self.school).total_amount_due, Decimal('100000'))

    @override_settings(PAYMENTS_SEND_NOTIFICATIONS=False)
    def test_overpayment_settles_the_account(self):
        with self.assertLogs('finance.services', level='WARNING'):
            apply_tuition_payment('sch1', 'stu1', 200000, 'Stripe', StudentPaymentModel.PaymentMethod.CARD)

        self.student.refresh_from_db()
        self.assertEqual(self.student.amount_due, Decimal('0'))
        self.assertEqual(self.student.tuition_status, StudentModel.TuitionStatus.SETTLED)
        self.assertEqual(AccountingTransactionModel.objects.get().amount, Decimal('200000'))

    @override_settings(PAYMENTS_SEND_NOTIFICATIONS=False)
    def test_stat_row_is_created_when_missing(self):
        FinanceStatModel.objects.all().delete()
        apply_tuition_payment('sch1', 'stu1', 1000, 'Wave', StudentPaymentModel.PaymentMethod.MOBILE)
        self.assertEqual(FinanceStatModel.objects.get(school=self.school).total_amount_due, Decimal('-1000'))

    def test_missing_student_writes_nothing(self):
        with self.assertRaises(StudentNotFound):
            apply_tuition_payment('sch1', 'ghost', 1000, 'Wave', StudentPaymentModel.PaymentMethod.MOBILE)
        self.assertFalse(AccountingTransactionModel.objects.exists())
        self.assertFalse(StudentPaymentModel.objects.exists())

    @override_settings(PAYMENTS_SEND_NOTIFICATIONS=True)
    def test_receipt_is_queued_after_commit(self):
        with mock.patch('finance.tasks.send_tuition_receipt_task.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                payment = apply_tuition_payment('sch1', 'stu1', 1000, 'Wave',
                                                StudentPaymentModel.PaymentMethod.MOBILE)
        delay.assert_called_once_with(payment.pk)


class LedgerAppendOnlyTests(TestCase):

    def setUp(self):
        school = SchoolModel.objects.create(school_id='sch1', name='Cours Sainte Marie')
        self.row = AccountingTransactionModel.objects.create(
            school=school, category='Scolarité', type=AccountingTransactionModel.TransactionType.REVENUE,
            amount=Decimal('5000'),
        )

    def test_saved_row_cannot_be_updated(self):
        self.row.amount = Decimal('1')
        with self.assertRaises(ValidationError):
            self.row.save()

    def test_saved_row_cannot_be_deleted(self):
        with self.assertRaises(ValidationError):
            self.row.delete()
        self.assertTrue(AccountingTransactionModel.objects.filter(pk=self.row.pk).exists())


@override_settings(PAYMENTS_SEND_NOTIFICATIONS=False)
class FinanceTaskTests(TestCase):

    def setUp(self):
        self.school = SchoolModel.objects.create(school_id='sch1', name='Cours Sainte Marie',
                                                 director_email='directeur@example.com')
        self.student = StudentModel.objects.create(school=self.school, student_id='stu1', first_name='Awa',
                                                   last_name='Diop', amount_due=Decimal('10000'))

    def test_receipt_goes_to_every_parent_with_an_email(self):
        self.student.parents.add(
            ParentModel.objects.create(school=self.school, first_name='Fatou', last_name='Diop',
                                       email='fatou@example.com'),
            ParentModel.objects.create(school=self.school, first_name='Ibrahima', last_name='Diop'),
        )
        payment = apply_tuition_payment('sch1', 'stu1', 5000, 'Wave', StudentPaymentModel.PaymentMethod.MOBILE)

        self.assertEqual(send_tuition_receipt_task(payment.pk), 1)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['fatou@example.com'])
        self.assertIn(payment.reference, mail.outbox[0].body)

    def test_receipt_for_unknown_payment_is_skipped(self):
        self.assertEqual(send_tuition_receipt_task(424242), 0)
        self.assertEqual(len(mail.outbox), 0)

    def test_subscription_confirmation_mails_the_director(self):
        self.school.subscription_plan = SchoolModel.Plan.PRO
        self.school.subscription_end_date = timezone.now() + timedelta(days=30)
        self.school.save()

        self.assertTrue(send_subscription_confirmation_task(self.school.pk))
        self.assertEqual(mail.outbox[0].to, ['directeur@example.com'])
        self.assertIn('Pro', mail.outbox[0].subject)

    def test_subscription_confirmation_without_director_email(self):
        self.school.director_email = None
        self.school.save()
        self.assertFalse(send_subscription_confirmation_task(self.school.pk))
        self.assertEqual(len(mail.outbox), 0)

    @override_settings(PAYMENTS_PROCESSED_EVENT_RETENTION_DAYS=30)
    def test_purge_removes_old_markers_only(self):
        ProcessedEventModel.objects.create(provider='wave', provider_event_id='old',
                                           processed_at=timezone.now() - timedelta(days=45))
        ProcessedEventModel.objects.create(provider='wave', provider_event_id='recent')

        self.assertEqual(purge_processed_events_task(), 1)
        self.assertEqual(list(ProcessedEventModel.objects.values_list('provider_event_id', flat=True)), ['recent'])

    @override_settings(PAYMENTS_PROCESSED_EVENT_RETENTION_DAYS=0)
    def test_purge_is_disabled_by_default(self):
        ProcessedEventModel.objects.create(provider='wave', provider_event_id='old',
                                           processed_at=timezone.now() - timedelta(days=4000))
        self.assertEqual(purge_processed_events_task(), 0)
        self.assertEqual(ProcessedEventModel.objects.count(), 1)
