from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal
import uuid


class ExpenseType(models.TextChoices):
    FIXED = 'fixed', 'Fixed'
    VARIABLE = 'variable', 'Variable'
    OTHER = 'other', 'Other'


class ExpenseCategory(models.Model):
    """Expense category; card entries reference it by id only."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    expense_type = models.CharField(
        max_length=20,
        choices=ExpenseType.choices,
        default=ExpenseType.OTHER
    )
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'expense_categories'
        ordering = ['name']
        verbose_name_plural = 'expense categories'

    def __str__(self):
        return self.name


class BankAccount(models.Model):
    """Bank account that settles card invoices."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    bank_name = models.CharField(max_length=100, blank=True)
    balance = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bank_accounts'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.balance})"


class TransactionType(models.TextChoices):
    INCOME = 'income', 'Income'
    EXPENSE = 'expense', 'Expense'


class BankTransaction(models.Model):
    """Movement on a bank account, written by the bank ledger service."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    bank_account = models.ForeignKey(
        BankAccount,
        on_delete=models.PROTECT,
        related_name='transactions'
    )
    type = models.CharField(max_length=20, choices=TransactionType.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    balance_after = models.DecimalField(max_digits=12, decimal_places=2)
    date = models.DateField()
    description = models.CharField(max_length=255, blank=True)

    # What produced this movement, e.g. ('credit_card_invoice', <invoice id>)
    reference_type = models.CharField(max_length=50, blank=True)
    reference_id = models.CharField(max_length=64, blank=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'bank_transactions'
        indexes = [
            models.Index(fields=['bank_account', 'date'], name='bank_tx_account_date_idx'),
            models.Index(fields=['reference_type', 'reference_id'], name='bank_tx_reference_idx'),
        ]
        ordering = ['-date', '-created_at']

    def __str__(self):
        return f"{self.get_type_display()} {self.amount} on {self.date}"


class PayableStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    OVERDUE = 'overdue', 'Overdue'
    PAID = 'paid', 'Paid'


class Payable(models.Model):
    """Accounts-payable entry mirroring a closed card invoice."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    description = models.CharField(max_length=255)
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    due_date = models.DateField()
    status = models.CharField(
        max_length=20,
        choices=PayableStatus.choices,
        default=PayableStatus.PENDING
    )
    payment_date = models.DateField(null=True, blank=True)
    bank_account = models.ForeignKey(
        BankAccount,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payables'
    )
    category = models.ForeignKey(
        ExpenseCategory,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payables'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payables'
        indexes = [
            models.Index(fields=['status', 'due_date'], name='payables_status_due_idx'),
        ]
        ordering = ['due_date']

    def __str__(self):
        return f"{self.description} - {self.amount} ({self.status})"
