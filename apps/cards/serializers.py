from decimal import Decimal
from rest_framework import serializers
from .models import CreditCard, Invoice, InvoiceStatus, CardExpense, CardCredit
from .services.installments import MAX_INSTALLMENTS
from .services.ordering import DIRECTIONS


class CreditCardSerializer(serializers.ModelSerializer):
    """Main serializer for credit cards."""

    open_invoices = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = CreditCard
        fields = [
            'id',
            'name',
            'card_number',
            'card_flag',
            'color',
            'notes',
            'limit',
            'closing_day',
            'due_day',
            'is_active',
            'open_invoices',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['id', 'is_active', 'created_at', 'updated_at']


class CreditCardCreateSerializer(serializers.ModelSerializer):
    """Serializer for registering cards."""

    class Meta:
        model = CreditCard
        fields = [
            'name',
            'card_number',
            'card_flag',
            'color',
            'notes',
            'limit',
            'closing_day',
            'due_day',
        ]


class CreditCardUpdateSerializer(serializers.Serializer):
    """Partial card update; omitted fields stay unchanged."""

    name = serializers.CharField(max_length=100, required=False)
    card_number = serializers.CharField(max_length=4, required=False, allow_blank=True)
    card_flag = serializers.CharField(max_length=30, required=False, allow_blank=True)
    color = serializers.CharField(max_length=7, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    limit = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.00'), required=False)
    closing_day = serializers.IntegerField(min_value=1, max_value=31, required=False)
    due_day = serializers.IntegerField(min_value=1, max_value=31, required=False)
    is_active = serializers.BooleanField(required=False)


class CardMinimalSerializer(serializers.ModelSerializer):
    """Minimal card info for nested serialization."""

    class Meta:
        model = CreditCard
        fields = ['id', 'name', 'card_number', 'color']
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    """Main serializer for invoices."""

    card = CardMinimalSerializer(read_only=True)
    period_label = serializers.CharField(read_only=True)
    expenses_count = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = Invoice
        fields = [
            'id',
            'card',
            'reference_month',
            'period_label',
            'closing_date',
            'due_date',
            'status',
            'total_amount',
            'paid_amount',
            'payment_date',
            'bank_account',
            'payable',
            'expenses_count',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class InvoiceCreateSerializer(serializers.Serializer):
    """Input for opening an invoice by hand."""

    card = serializers.UUIDField()
    month = serializers.IntegerField(min_value=1, max_value=12)
    year = serializers.IntegerField(min_value=2000, max_value=2100)


class InvoiceFilterSerializer(serializers.Serializer):
    """Query parameters for invoice lists."""

    card = serializers.UUIDField(required=False)
    status = serializers.ChoiceField(choices=InvoiceStatus.choices, required=False)


class PayInvoiceSerializer(serializers.Serializer):
    """Input for settling an invoice."""

    bank_account = serializers.UUIDField()
    payment_date = serializers.DateField()


class CardExpenseSerializer(serializers.ModelSerializer):
    """Serializer for expense entries."""

    class Meta:
        model = CardExpense
        fields = [
            'id',
            'card',
            'invoice',
            'description',
            'amount',
            'purchase_date',
            'category',
            'supplier_name',
            'reference_number',
            'notes',
            'installment_number',
            'installments',
            'display_order',
            'created_by',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ExpenseFilterSerializer(serializers.Serializer):
    """Query parameters for expense lists."""

    card = serializers.UUIDField(required=False)
    invoice = serializers.UUIDField(required=False)
    pending = serializers.BooleanField(
        required=False,
        help_text="Only expenses not assigned to any invoice"
    )


class PurchaseAllocationSerializer(serializers.Serializer):
    """Input for posting a purchase, optionally in installments."""

    card = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    installments = serializers.IntegerField(min_value=1, max_value=MAX_INSTALLMENTS, default=1)
    purchase_date = serializers.DateField()
    description = serializers.CharField(max_length=200)
    category = serializers.UUIDField(required=False, allow_null=True)
    first_reference_month = serializers.DateField(
        required=False,
        allow_null=True,
        help_text="Month of the first installment; defaults to the purchase's billing cycle"
    )
    supplier_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class AllocationResultSerializer(serializers.Serializer):
    """Outcome of a purchase allocation."""

    expenses = CardExpenseSerializer(many=True)
    created_invoices = serializers.SerializerMethodField()
    available_limit = serializers.DecimalField(max_digits=12, decimal_places=2)
    over_limit = serializers.BooleanField()

    def get_created_invoices(self, obj):
        return [str(invoice.id) for invoice in obj.created_invoices]


class ExpenseUpdateSerializer(serializers.Serializer):
    """Partial expense update."""

    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'), required=False)
    description = serializers.CharField(max_length=255, required=False)
    purchase_date = serializers.DateField(required=False)
    category = serializers.UUIDField(required=False, allow_null=True)
    supplier_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class ReorderExpenseSerializer(serializers.Serializer):
    direction = serializers.ChoiceField(choices=DIRECTIONS)


class MoveExpenseSerializer(serializers.Serializer):
    invoice = serializers.UUIDField(
        allow_null=True,
        help_text="Target invoice; null leaves the expense unassigned"
    )


class CardCreditSerializer(serializers.ModelSerializer):
    """Serializer for credit entries."""

    class Meta:
        model = CardCredit
        fields = [
            'id',
            'card',
            'invoice',
            'description',
            'amount',
            'credit_date',
            'reference_number',
            'notes',
            'created_by',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class CardCreditCreateSerializer(serializers.Serializer):
    """Input for posting a refund."""

    card = serializers.UUIDField()
    invoice = serializers.UUIDField(required=False, allow_null=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    credit_date = serializers.DateField()
    description = serializers.CharField(max_length=255)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class CardOverviewSerializer(serializers.Serializer):
    """Serializer for the card dashboard."""

    card = CreditCardSerializer()
    current_invoice = InvoiceSerializer(allow_null=True)
    limit = serializers.DecimalField(max_digits=12, decimal_places=2)
    used = serializers.DecimalField(max_digits=12, decimal_places=2)
    available = serializers.DecimalField(max_digits=12, decimal_places=2)
    over_limit = serializers.BooleanField()
    invoices = InvoiceSerializer(many=True)
    unassigned_count = serializers.IntegerField()
    unassigned_amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class CreditFilterSerializer(serializers.Serializer):
    """Query parameters for credit lists."""

    card = serializers.UUIDField(required=False)
    invoice = serializers.UUIDField(required=False)
