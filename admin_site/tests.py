from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from admin_site.billing import (
    Usage, UsageBillingCalculator, compute_monthly_bill, expected_charge, check_amount_drift, get_plan,
    get_module_price,
)
from admin_site.models import SchoolModel, CycleModel
from admin_site.subscription import compute_new_end_date, extend_subscription
from admin_site.usage import DjangoUsageProvider
from payments.exceptions import SchoolNotFound
from payments.stores import DjangoSchoolStore
from student.models import StudentModel


def utc(*args):
    return datetime(*args, tzinfo=dt_timezone.utc)


class UsageBillingCalculatorTests(TestCase):

    def test_pro_plan_bills_every_overage(self):
        usage = Usage(cycles_count=7, students_count=300, storage_used_gb=Decimal('12.5'))
        bill = compute_monthly_bill('Pro', usage, ['cantine', 'sante'])

        self.assertEqual(bill.base, 49900)
        self.assertEqual(bill.supplements['cycles'], 10000)
        self.assertEqual(bill.supplements['students'], 12500)
        self.assertEqual(bill.supplements['storage'], 3000)
        self.assertEqual(bill.supplements['modules'], 15000)
        self.assertEqual(bill.total, 90400)

    def test_usage_within_quota_costs_the_base_price(self):
        usage = Usage(cycles_count=5, students_count=250, storage_used_gb=Decimal('10'))
        self.assertEqual(compute_monthly_bill('Pro', usage).total, 49900)

    def test_partial_gigabyte_is_rounded_up(self):
        calculator = UsageBillingCalculator('Pro', Usage(storage_used_gb=Decimal('10.001')))
        self.assertEqual(calculator.calculate_storage_supplement(), 1000)

    def test_premium_is_unbounded_and_bundles_modules(self):
        usage = Usage(cycles_count=40, students_count=5000, storage_used_gb=Decimal('300'))
        bill = compute_monthly_bill('Premium', usage, ['rh', 'internat', 'transport'])
        self.assertEqual(bill.total, 99900)

    def test_essentiel_does_not_bill_overage(self):
        usage = Usage(cycles_count=9, students_count=80, storage_used_gb=Decimal('3'))
        self.assertEqual(compute_monthly_bill('Essentiel', usage).total, 0)

    def test_duplicate_modules_are_billed_once(self):
        bill = compute_monthly_bill('Pro', Usage(), ['cantine', 'cantine'])
        self.assertEqual(bill.supplements['modules'], 10000)

    def test_expected_charge_multiplies_by_duration(self):
        usage = Usage(cycles_count=6)
        self.assertEqual(expected_charge('Pro', usage, ['sante'], 3), (49900 + 5000 + 5000) * 3)

    def test_unknown_plan_and_module_are_refused(self):
        with self.assertRaises(ValueError):
            get_plan('Gold')
        with self.assertRaises(ValueError):
            get_module_price('piscine')
        with self.assertRaises(ValueError):
            compute_monthly_bill('Pro', Usage(), ['piscine'])

    def test_drift_within_tolerance_is_accepted(self):
        self.assertIsNone(check_amount_drift(49900, 49950, 50))
        self.assertIsNone(check_amount_drift(49900, 49850, 50))

    def test_drift_beyond_tolerance_is_reported(self):
        mismatch = check_amount_drift(49900, 39900, 50)
        self.assertIsNotNone(mismatch)
        self.assertEqual(mismatch.expected, 49900)
        self.assertEqual(mismatch.charged, 39900)
        self.assertEqual(mismatch.difference, -10000)


class UsageProviderTests(TestCase):

    def setUp(self):
        self.school = SchoolModel.objects.create(school_id='sch1', name='Lycée Moderne',
                                                 storage_used_gb=Decimal('2.250'))

    def test_counts_cycles_active_students_and_storage(self):
        CycleModel.objects.create(school=self.school, name='Primaire')
        CycleModel.objects.create(school=self.school, name='Collège')
        StudentModel.objects.create(school=self.school, first_name='Awa', last_name='Diop')
        StudentModel.objects.create(school=self.school, first_name='Moussa', last_name='Fall', is_active=False)

        usage = DjangoUsageProvider().current_usage('sch1')

        self.assertEqual(usage.cycles_count, 2)
        self.assertEqual(usage.students_count, 1)
        self.assertEqual(usage.storage_used_gb, Decimal('2.250'))

    def test_unknown_school_has_empty_usage(self):
        self.assertEqual(DjangoUsageProvider().current_usage('missing'), Usage())


class ComputeNewEndDateTests(TestCase):

    def test_lapsed_subscription_restarts_from_now(self):
        now = utc(2024, 5, 10, 12)
        self.assertEqual(compute_new_end_date(utc(2024, 1, 1), 1, now), utc(2024, 6, 10, 12))

    def test_missing_end_date_restarts_from_now(self):
        now = utc(2024, 5, 10)
        self.assertEqual(compute_new_end_date(None, 3, now), utc(2024, 8, 10))

    def test_running_subscription_extends_from_its_end(self):
        now = utc(2024, 3, 1)
        self.assertEqual(compute_new_end_date(utc(2024, 3, 15), 2, now), utc(2024, 5, 15))

    def test_end_of_month_is_clamped(self):
        self.assertEqual(compute_new_end_date(None, 1, utc(2024, 1, 31)), utc(2024, 2, 29))
        self.assertEqual(compute_new_end_date(None, 1, utc(2023, 1, 31)), utc(2023, 2, 28))


class ExtendSubscriptionTests(TestCase):

    def setUp(self):
        self.store = DjangoSchoolStore()

    def test_trialing_school_becomes_active(self):
        SchoolModel.objects.create(school_id='sch1', name='École Les Palmiers')
        now = utc(2024, 4, 1, 9)

        new_end = extend_subscription(self.store, 'sch1', 'Pro', 1, now)

        school = SchoolModel.objects.get(school_id='sch1')
        self.assertEqual(new_end, utc(2024, 5, 1, 9))
        self.assertEqual(school.subscription_plan, 'Pro')
        self.assertEqual(school.subscription_status, SchoolModel.SubscriptionStatus.ACTIVE)
        self.assertEqual(school.subscription_start_date, now)
        self.assertEqual(school.subscription_end_date, new_end)

    def test_renewal_keeps_the_original_start_date(self):
        started = utc(2024, 1, 1)
        SchoolModel.objects.create(
            school_id='sch1', name='École Les Palmiers', subscription_plan='Pro',
            subscription_status=SchoolModel.SubscriptionStatus.ACTIVE,
            subscription_start_date=started, subscription_end_date=utc(2024, 6, 1),
        )

        new_end = extend_subscription(self.store, 'sch1', 'Premium', 6, utc(2024, 5, 20))

        school = SchoolModel.objects.get(school_id='sch1')
        self.assertEqual(new_end, utc(2024, 12, 1))
        self.assertEqual(school.subscription_plan, 'Premium')
        self.assertEqual(school.subscription_start_date, started)

    def test_lapsed_school_restarts(self):
        SchoolModel.objects.create(
            school_id='sch1', name='École Les Palmiers',
            subscription_status=SchoolModel.SubscriptionStatus.PAST_DUE,
            subscription_start_date=utc(2023, 1, 1), subscription_end_date=utc(2023, 2, 1),
        )
        now = utc(2024, 5, 20)

        extend_subscription(self.store, 'sch1', 'Pro', 1, now)

        school = SchoolModel.objects.get(school_id='sch1')
        self.assertEqual(school.subscription_start_date, now)
        self.assertEqual(school.subscription_end_date, utc(2024, 6, 20))

    def test_missing_school_raises(self):
        with self.assertRaises(SchoolNotFound):
            extend_subscription(self.store, 'ghost', 'Pro', 1, utc(2024, 5, 20))

    def test_has_module_is_true_for_every_module_on_premium(self):
        school = SchoolModel(school_id='sch2', name='X', subscription_plan='Premium')
        self.assertTrue(school.has_module('rh'))
        school.subscription_plan = 'Pro'
        school.active_modules = ['cantine']
        self.assertTrue(school.has_module('cantine'))
        self.assertFalse(school.has_module('rh'))

    def test_subscription_is_active_only_while_running(self):
        future = timezone.now() + timedelta(days=10)
        school = SchoolModel(school_id='sch3', name='Y', subscription_status=SchoolModel.SubscriptionStatus.ACTIVE,
                             subscription_end_date=future)
        self.assertTrue(school.is_subscription_active)

        school.subscription_end_date = timezone.now() - timedelta(days=1)
        self.assertFalse(school.is_subscription_active)

        school.subscription_end_date = future
        school.subscription_status = SchoolModel.SubscriptionStatus.PAST_DUE
        self.assertFalse(school.is_subscription_active)

        school.subscription_status = SchoolModel.SubscriptionStatus.ACTIVE
        school.subscription_end_date = None
        self.assertFalse(school.is_subscription_active)

    def test_extension_activates_the_subscription(self):
        SchoolModel.objects.create(school_id='sch4', name='Z')
        self.assertFalse(SchoolModel.objects.get(school_id='sch4').is_subscription_active)
        extend_subscription(self.store, 'sch4', 'Pro', 1, timezone.now())
        self.assertTrue(SchoolModel.objects.get(school_id='sch4').is_subscription_active)

    def test_number_of_students_counts_active_students(self):
        school = SchoolModel.objects.create(school_id='sch5', name='W')
        StudentModel.objects.create(school=school, first_name='A', last_name='B')
        StudentModel.objects.create(school=school, first_name='C', last_name='D', is_active=False)
        self.assertEqual(school.number_of_students(), 1)
