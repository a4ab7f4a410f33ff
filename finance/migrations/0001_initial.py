import decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('admin_site', '0001_initial'),
        ('student', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='AccountingTransactionModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('date', models.DateField(db_index=True, default=django.utils.timezone.localdate)),
                ('description', models.CharField(blank=True, default='', max_length=255)),
                ('category', models.CharField(max_length=100)),
                ('type', models.CharField(choices=[('Revenu', 'Revenu'), ('Dépense', 'Dépense')], max_length=10)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.01'))])),
                ('reference', models.CharField(blank=True, default='', max_length=100)),
                ('provider', models.CharField(blank=True, default='', max_length=30)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='accounting_transactions', to='admin_site.schoolmodel')),
                ('student', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='accounting_transactions', to='student.studentmodel')),
            ],
            options={
                'verbose_name': 'Accounting Transaction',
                'verbose_name_plural': 'Accounting Transactions',
                'ordering': ('-date', '-created_at'),
                'indexes': [models.Index(fields=['school', 'date'], name='finance_acc_school__7d3a51_idx'), models.Index(fields=['category'], name='finance_acc_categor_2b8e90_idx')],
            },
        ),
        migrations.CreateModel(
            name='FinanceStatModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('total_amount_due', models.DecimalField(decimal_places=2, default=decimal.Decimal('0.00'), max_digits=14)),
                ('last_updated', models.DateTimeField(auto_now=True)),
                ('school', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='finance_stat', to='admin_site.schoolmodel')),
            ],
        ),
        migrations.CreateModel(
            name='ProcessedEventModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('provider', models.CharField(max_length=30)),
                ('provider_event_id', models.CharField(max_length=255)),
                ('reference', models.CharField(blank=True, default='', max_length=255)),
                ('payment_type', models.CharField(blank=True, default='', max_length=20)),
                ('processed_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                'verbose_name': 'Processed Payment Event',
                'constraints': [models.UniqueConstraint(fields=('provider', 'provider_event_id'), name='unique_processed_provider_event')],
            },
        ),
        migrations.CreateModel(
            name='StudentPaymentModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('date', models.DateField(default=django.utils.timezone.localdate)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('description', models.CharField(blank=True, default='', max_length=255)),
                ('method', models.CharField(choices=[('Carte Bancaire', 'Carte Bancaire'), ('Paiement Mobile', 'Paiement Mobile')], max_length=30)),
                ('payer_first_name', models.CharField(blank=True, default='', max_length=50)),
                ('payer_last_name', models.CharField(blank=True, default='', max_length=50)),
                ('reference', models.CharField(blank=True, default='', max_length=100)),
                ('provider', models.CharField(blank=True, default='', max_length=30)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('accounting_transaction', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='student_payment', to='finance.accountingtransactionmodel')),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='student_payments', to='admin_site.schoolmodel')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments', to='student.studentmodel')),
            ],
            options={
                'verbose_name': 'Student Payment',
                'ordering': ['-date', '-created_at'],
            },
        ),
    ]
