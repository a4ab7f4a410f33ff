import decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='SchoolModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('school_id', models.CharField(help_text='Opaque identifier echoed back by payment providers.', max_length=100, unique=True)),
                ('name', models.CharField(max_length=250)),
                ('director_email', models.EmailField(blank=True, max_length=254, null=True)),
                ('storage_used_gb', models.DecimalField(decimal_places=3, default=decimal.Decimal('0.000'), max_digits=10, validators=[django.core.validators.MinValueValidator(decimal.Decimal('0'))])),
                ('subscription_plan', models.CharField(choices=[('Essentiel', 'Essentiel'), ('Pro', 'Pro'), ('Premium', 'Premium')], default='Essentiel', max_length=20)),
                ('subscription_status', models.CharField(choices=[('active', 'Active'), ('trialing', 'Trialing'), ('past_due', 'Past Due'), ('canceled', 'Canceled')], default='trialing', max_length=20)),
                ('subscription_start_date', models.DateTimeField(blank=True, null=True)),
                ('subscription_end_date', models.DateTimeField(blank=True, null=True)),
                ('active_modules', models.JSONField(blank=True, default=list, help_text='Module ids paid for on top of the plan. Ignored on Premium.')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'School',
                'verbose_name_plural': 'Schools',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='CycleModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True, null=True)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='cycles', to='admin_site.schoolmodel')),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('school', 'name'), name='unique_school_cycle_name')],
            },
        ),
    ]
