from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator
from decimal import Decimal
import uuid


class InvoiceStatus(models.TextChoices):
    OPEN = 'open', 'Open'
    CLOSED = 'closed', 'Closed'
    OVERDUE = 'overdue', 'Overdue'
    PAID = 'paid', 'Paid'


# Invoices in these states still occupy the card's limit.
LIMIT_CONSUMING_STATUSES = (
    InvoiceStatus.OPEN,
    InvoiceStatus.CLOSED,
    InvoiceStatus.OVERDUE,
)

DAY_OF_MONTH_VALIDATORS = [MinValueValidator(1), MaxValueValidator(31)]


class CreditCard(models.Model):
    """Corporate credit card with a billing cycle and a total limit."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)

    # Display info
    card_number = models.CharField(max_length=4, blank=True, help_text='Last 4 digits')
    card_flag = models.CharField(max_length=30, blank=True)
    color = models.CharField(max_length=7, default='#3B82F6')
    notes = models.TextField(blank=True)

    # Billing configuration
    limit = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    closing_day = models.PositiveSmallIntegerField(validators=DAY_OF_MONTH_VALIDATORS)
    due_day = models.PositiveSmallIntegerField(validators=DAY_OF_MONTH_VALIDATORS)

    # Soft delete
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'credit_cards'
        ordering = ['name']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(closing_day__gte=1, closing_day__lte=31),
                name='credit_card_closing_day_range'
            ),
            models.CheckConstraint(
                condition=models.Q(due_day__gte=1, due_day__lte=31),
                name='credit_card_due_day_range'
            ),
            models.CheckConstraint(
                condition=models.Q(limit__gte=0),
                name='credit_card_limit_non_negative'
            ),
        ]

    def __str__(self):
        suffix = f" *{self.card_number}" if self.card_number else ""
        return f"{self.name}{suffix}"


class Invoice(models.Model):
    """
    One billing cycle of a card.

    ``total_amount`` is a snapshot of sum(expenses) - sum(credits). It is
    rewritten from an aggregate inside every transaction that touches the
    invoice's entries and is never incremented in place.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    card = models.ForeignKey(
        CreditCard,
        on_delete=models.PROTECT,
        related_name='invoices'
    )

    # First day of the month this invoice represents
    reference_month = models.DateField()
    closing_date = models.DateField()
    due_date = models.DateField()

    status = models.CharField(
        max_length=20,
        choices=InvoiceStatus.choices,
        default=InvoiceStatus.OPEN
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )

    # Settlement
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    payment_date = models.DateField(null=True, blank=True)
    bank_account = models.ForeignKey(
        'treasury.BankAccount',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='card_invoices'
    )

    # Accounts-payable mirror (present while CLOSED/OVERDUE/PAID)
    payable = models.OneToOneField(
        'treasury.Payable',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='card_invoice'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'credit_card_invoices'
        constraints = [
            models.UniqueConstraint(
                fields=['card', 'reference_month'],
                name='unique_invoice_per_card_month'
            ),
        ]
        indexes = [
            models.Index(fields=['card', 'status'], name='invoice_card_status_idx'),
            models.Index(fields=['status', 'closing_date'], name='invoice_status_closing_idx'),
            models.Index(fields=['status', 'due_date'], name='invoice_status_due_idx'),
        ]
        ordering = ['-reference_month']

    def __str__(self):
        return f"{self.card.name} - {self.period_label} ({self.status})"

    @property
    def period_label(self):
        return self.reference_month.strftime('%m/%Y')

    @property
    def is_editable(self):
        """Entries may only be edited or reordered while the cycle is open."""
        return self.status == InvoiceStatus.OPEN


class CardExpense(models.Model):
    """Debit entry on a card (one installment of a purchase)."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    card = models.ForeignKey(
        CreditCard,
        on_delete=models.PROTECT,
        related_name='expenses'
    )
    # Null while the entry is not assigned to any cycle
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='expenses'
    )

    description = models.CharField(max_length=255)
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    purchase_date = models.DateField()
    category = models.ForeignKey(
        'treasury.ExpenseCategory',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='card_expenses'
    )
    supplier_name = models.CharField(max_length=200, blank=True)
    reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)

    # Installment metadata (1/1 for single purchases)
    installment_number = models.PositiveSmallIntegerField(null=True, blank=True)
    installments = models.PositiveSmallIntegerField(null=True, blank=True)

    # Position inside the invoice statement (1..n, dense)
    display_order = models.PositiveIntegerField(null=True, blank=True)

    created_by = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'credit_card_expenses'
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name='credit_card_expense_amount_positive'
            ),
        ]
        indexes = [
            models.Index(fields=['invoice', 'display_order'], name='card_expense_invoice_order_idx'),
            models.Index(fields=['card', 'invoice'], name='card_expense_card_invoice_idx'),
            models.Index(fields=['purchase_date'], name='card_expense_purchase_idx'),
        ]
        ordering = ['display_order', 'purchase_date', 'created_at']

    def __str__(self):
        return f"{self.description} - {self.amount}"


class CardCredit(models.Model):
    """Refund entry; always offsets the invoice it is linked to."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    card = models.ForeignKey(
        CreditCard,
        on_delete=models.PROTECT,
        related_name='credits'
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name='credits'
    )

    description = models.CharField(max_length=255)
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    credit_date = models.DateField()
    reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)

    created_by = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'credit_card_credits'
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name='credit_card_credit_amount_positive'
            ),
        ]
        indexes = [
            models.Index(fields=['invoice'], name='card_credit_invoice_idx'),
            models.Index(fields=['card', 'credit_date'], name='card_credit_card_date_idx'),
        ]
        ordering = ['-credit_date', '-created_at']

    def __str__(self):
        return f"Credit {self.description} - {self.amount}"
