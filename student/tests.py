from decimal import Decimal

from django.db import IntegrityError, transaction
from django.test import TestCase

from admin_site.models import SchoolModel
from student.models import StudentModel, ParentModel
from student.tuition import compute_tuition_balance


class TuitionBalanceTests(TestCase):

    def test_partial_payment(self):
        self.assertEqual(compute_tuition_balance(Decimal('150000'), Decimal('50000')),
                         (Decimal('100000'), StudentModel.TuitionStatus.PARTIAL))

    def test_exact_payment_settles(self):
        self.assertEqual(compute_tuition_balance(Decimal('50000'), Decimal('50000')),
                         (Decimal('0'), StudentModel.TuitionStatus.SETTLED))

    def test_overpayment_is_clamped(self):
        amount_due, status = compute_tuition_balance(Decimal('20000'), Decimal('50000'))
        self.assertEqual(amount_due, Decimal('0'))
        self.assertEqual(status, StudentModel.TuitionStatus.SETTLED)


class StudentModelTests(TestCase):

    def setUp(self):
        self.school = SchoolModel.objects.create(school_id='sch1', name='Groupe Scolaire Excellence')

    def test_status_follows_amount_due(self):
        student = StudentModel.objects.create(school=self.school, first_name='Awa', last_name='Diop',
                                              amount_due=Decimal('75000'))
        self.assertEqual(student.tuition_status, StudentModel.TuitionStatus.PARTIAL)

        student.amount_due = Decimal('0')
        student.save(update_fields=['amount_due'])
        student.refresh_from_db()
        self.assertEqual(student.tuition_status, StudentModel.TuitionStatus.SETTLED)

    def test_student_id_is_generated(self):
        student = StudentModel.objects.create(school=self.school, first_name='Awa', last_name='Diop')
        self.assertTrue(student.student_id.startswith('STU-'))

    def test_student_id_is_unique_per_school(self):
        StudentModel.objects.create(school=self.school, student_id='stu1', first_name='A', last_name='B')
        other_school = SchoolModel.objects.create(school_id='sch2', name='Autre École')
        StudentModel.objects.create(school=other_school, student_id='stu1', first_name='C', last_name='D')
        with self.assertRaises(IntegrityError), transaction.atomic():
            StudentModel.objects.create(school=self.school, student_id='stu1', first_name='E', last_name='F')

    def test_amount_due_cannot_be_negative(self):
        student = StudentModel.objects.create(school=self.school, first_name='Awa', last_name='Diop')
        with self.assertRaises(IntegrityError), transaction.atomic():
            StudentModel.objects.filter(pk=student.pk).update(amount_due=Decimal('-1'))

    def test_payer_is_the_first_parent(self):
        student = StudentModel.objects.create(school=self.school, first_name='Awa', last_name='Diop')
        self.assertIsNone(student.payer)
        first = ParentModel.objects.create(school=self.school, first_name='Fatou', last_name='Diop')
        second = ParentModel.objects.create(school=self.school, first_name='Ibrahima', last_name='Diop')
        student.parents.add(second, first)
        self.assertEqual(student.payer, first)
