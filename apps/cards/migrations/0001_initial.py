# Generated manually for cards app

import uuid
from decimal import Decimal
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('treasury', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='CreditCard',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100)),
                ('card_number', models.CharField(blank=True, help_text='Last 4 digits', max_length=4)),
                ('card_flag', models.CharField(blank=True, max_length=30)),
                ('color', models.CharField(default='#3B82F6', max_length=7)),
                ('notes', models.TextField(blank=True)),
                ('limit', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, validators=[MinValueValidator(Decimal('0.00'))])),
                ('closing_day', models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(31)])),
                ('due_day', models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(31)])),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'credit_cards',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Invoice',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('reference_month', models.DateField()),
                ('closing_date', models.DateField()),
                ('due_date', models.DateField()),
                ('status', models.CharField(choices=[('open', 'Open'), ('closed', 'Closed'), ('overdue', 'Overdue'), ('paid', 'Paid')], default='open', max_length=20)),
                ('total_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('paid_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('payment_date', models.DateField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('card', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='invoices', to='cards.creditcard')),
                ('bank_account', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='card_invoices', to='treasury.bankaccount')),
                ('payable', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='card_invoice', to='treasury.payable')),
            ],
            options={
                'db_table': 'credit_card_invoices',
                'ordering': ['-reference_month'],
            },
        ),
        migrations.CreateModel(
            name='CardExpense',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('description', models.CharField(max_length=255)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(Decimal('0.01'))])),
                ('purchase_date', models.DateField()),
                ('supplier_name', models.CharField(blank=True, max_length=200)),
                ('reference_number', models.CharField(blank=True, max_length=100)),
                ('notes', models.TextField(blank=True)),
                ('installment_number', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('installments', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('display_order', models.PositiveIntegerField(blank=True, null=True)),
                ('created_by', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('card', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='expenses', to='cards.creditcard')),
                ('invoice', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='expenses', to='cards.invoice')),
                ('category', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='card_expenses', to='treasury.expensecategory')),
            ],
            options={
                'db_table': 'credit_card_expenses',
                'ordering': ['display_order', 'purchase_date', 'created_at'],
            },
        ),
        migrations.CreateModel(
            name='CardCredit',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('description', models.CharField(max_length=255)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(Decimal('0.01'))])),
                ('credit_date', models.DateField()),
                ('reference_number', models.CharField(blank=True, max_length=100)),
                ('notes', models.TextField(blank=True)),
                ('created_by', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('card', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='credits', to='cards.creditcard')),
                ('invoice', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='credits', to='cards.invoice')),
            ],
            options={
                'db_table': 'credit_card_credits',
                'ordering': ['-credit_date', '-created_at'],
            },
        ),
        # Constraints
        migrations.AddConstraint(
            model_name='creditcard',
            constraint=models.CheckConstraint(condition=models.Q(('closing_day__gte', 1), ('closing_day__lte', 31)), name='credit_card_closing_day_range'),
        ),
        migrations.AddConstraint(
            model_name='creditcard',
            constraint=models.CheckConstraint(condition=models.Q(('due_day__gte', 1), ('due_day__lte', 31)), name='credit_card_due_day_range'),
        ),
        migrations.AddConstraint(
            model_name='creditcard',
            constraint=models.CheckConstraint(condition=models.Q(('limit__gte', 0)), name='credit_card_limit_non_negative'),
        ),
        migrations.AddConstraint(
            model_name='invoice',
            constraint=models.UniqueConstraint(fields=('card', 'reference_month'), name='unique_invoice_per_card_month'),
        ),
        migrations.AddConstraint(
            model_name='cardexpense',
            constraint=models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='credit_card_expense_amount_positive'),
        ),
        migrations.AddConstraint(
            model_name='cardcredit',
            constraint=models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='credit_card_credit_amount_positive'),
        ),
        # Indexes
        migrations.AddIndex(
            model_name='invoice',
            index=models.Index(fields=['card', 'status'], name='invoice_card_status_idx'),
        ),
        migrations.AddIndex(
            model_name='invoice',
            index=models.Index(fields=['status', 'closing_date'], name='invoice_status_closing_idx'),
        ),
        migrations.AddIndex(
            model_name='invoice',
            index=models.Index(fields=['status', 'due_date'], name='invoice_status_due_idx'),
        ),
        migrations.AddIndex(
            model_name='cardexpense',
            index=models.Index(fields=['invoice', 'display_order'], name='card_expense_invoice_order_idx'),
        ),
        migrations.AddIndex(
            model_name='cardexpense',
            index=models.Index(fields=['card', 'invoice'], name='card_expense_card_invoice_idx'),
        ),
        migrations.AddIndex(
            model_name='cardexpense',
            index=models.Index(fields=['purchase_date'], name='card_expense_purchase_idx'),
        ),
        migrations.AddIndex(
            model_name='cardcredit',
            index=models.Index(fields=['invoice'], name='card_credit_invoice_idx'),
        ),
        migrations.AddIndex(
            model_name='cardcredit',
            index=models.Index(fields=['card', 'credit_date'], name='card_credit_card_date_idx'),
        ),
    ]
