from django.contrib import admin
from django.db import transaction
from django.utils.html import format_html
from .models import CreditCard, Invoice, InvoiceStatus, CardExpense, CardCredit
from .services import (
    CardsServiceError,
    close_invoice,
    reopen_invoice,
    delete_invoice,
    delete_expense,
    delete_credit,
)
from .services.limit_accounting import recompute_invoice_total
from .services.locks import lock_invoice


STATUS_COLORS = {
    InvoiceStatus.OPEN: ('#3B82F6', 'white'),
    InvoiceStatus.CLOSED: ('#E5C49A', '#2C1810'),
    InvoiceStatus.OVERDUE: ('#B85C5C', 'white'),
    InvoiceStatus.PAID: ('#6B8E5E', 'white'),
}


class CardExpenseInline(admin.TabularInline):
    """Statement lines within an invoice."""
    model = CardExpense
    extra = 0
    fields = [
        'display_order',
        'description',
        'amount',
        'purchase_date',
        'installment_number',
        'installments',
    ]
    readonly_fields = fields
    ordering = ['display_order']
    can_delete = False

    def has_add_permission(self, request, obj=None):
        """Entries are posted through the services so totals stay in sync."""
        return False


class CardCreditInline(admin.TabularInline):
    model = CardCredit
    extra = 0
    fields = ['description', 'amount', 'credit_date']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(CreditCard)
class CreditCardAdmin(admin.ModelAdmin):
    list_display = [
        'name',
        'card_number',
        'card_flag',
        'limit',
        'closing_day',
        'due_day',
        'is_active',
    ]
    list_filter = ['is_active', 'card_flag']
    search_fields = ['name', 'card_number']
    readonly_fields = ['created_at', 'updated_at']

    fieldsets = (
        ('Card', {
            'fields': ('name', 'card_number', 'card_flag', 'color', 'is_active')
        }),
        ('Billing', {
            'fields': ('limit', 'closing_day', 'due_day')
        }),
        ('Notes', {
            'fields': ('notes',),
            'classes': ('collapse',),
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    """
    Admin interface for invoices.

    Totals and status are read-only here; transitions run through the
    lifecycle services via the actions below.
    """

    list_display = [
        'card',
        'period_label',
        'closing_date',
        'due_date',
        'total_amount',
        'status_badge',
    ]
    list_filter = ['status', 'card']
    search_fields = ['card__name']
    readonly_fields = [
        'card',
        'reference_month',
        'closing_date',
        'due_date',
        'status',
        'total_amount',
        'paid_amount',
        'payment_date',
        'bank_account',
        'payable',
        'created_at',
        'updated_at',
    ]
    inlines = [CardExpenseInline, CardCreditInline]
    date_hierarchy = 'reference_month'
    ordering = ['-reference_month']

    actions = [
        'close_selected',
        'reopen_selected',
        'recompute_totals',
        'delete_unsettled',
    ]

    def status_badge(self, obj):
        """Display invoice status as colored badge."""
        bg, fg = STATUS_COLORS.get(obj.status, ('#ccc', '#666'))
        return format_html(
            '<span style="background: {}; color: {}; padding: 3px 8px; '
            'border-radius: 10px; font-size: 11px;">{}</span>',
            bg, fg, obj.get_status_display()
        )
    status_badge.short_description = 'Status'
    status_badge.admin_order_field = 'status'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description='Close selected invoices')
    def close_selected(self, request, queryset):
        count = 0
        for invoice in queryset.filter(status=InvoiceStatus.OPEN):
            try:
                close_invoice(invoice_id=invoice.id)
                count += 1
            except CardsServiceError as e:
                self.message_user(request, f'{invoice}: {e}', level='error')
        self.message_user(request, f'Closed {count} invoice(s).')

    @admin.action(description='Reopen selected invoices')
    def reopen_selected(self, request, queryset):
        count = 0
        for invoice in queryset.filter(status__in=[InvoiceStatus.CLOSED, InvoiceStatus.OVERDUE]):
            try:
                reopen_invoice(invoice_id=invoice.id)
                count += 1
            except CardsServiceError as e:
                self.message_user(request, f'{invoice}: {e}', level='error')
        self.message_user(request, f'Reopened {count} invoice(s).')

    @admin.action(description='Recompute totals')
    def recompute_totals(self, request, queryset):
        count = 0
        for invoice_id in queryset.values_list('id', flat=True):
            try:
                with transaction.atomic():
                    recompute_invoice_total(lock_invoice(invoice_id))
                count += 1
            except CardsServiceError as e:
                self.message_user(request, f'{invoice_id}: {e}', level='error')
        self.message_user(request, f'Recomputed {count} invoice total(s).')

    @admin.action(description='Delete selected unpaid invoices')
    def delete_unsettled(self, request, queryset):
        count = 0
        for invoice in queryset:
            try:
                delete_invoice(invoice_id=invoice.id)
                count += 1
            except CardsServiceError as e:
                self.message_user(request, f'{invoice}: {e}', level='error')
        self.message_user(request, f'Deleted {count} invoice(s).')

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related('card')


@admin.register(CardExpense)
class CardExpenseAdmin(admin.ModelAdmin):
    list_display = [
        'description',
        'card',
        'invoice',
        'amount',
        'purchase_date',
        'display_order',
    ]
    list_filter = ['card', 'purchase_date']
    search_fields = ['description', 'supplier_name', 'reference_number']
    readonly_fields = [
        'card',
        'invoice',
        'amount',
        'installment_number',
        'installments',
        'display_order',
        'created_by',
        'created_at',
        'updated_at',
    ]
    date_hierarchy = 'purchase_date'
    actions = ['delete_through_ledger']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description='Delete selected expenses')
    def delete_through_ledger(self, request, queryset):
        count = 0
        for expense_id in queryset.values_list('id', flat=True):
            try:
                delete_expense(expense_id=expense_id)
                count += 1
            except CardsServiceError as e:
                self.message_user(request, f'{expense_id}: {e}', level='error')
        self.message_user(request, f'Deleted {count} expense(s).')

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related('card', 'invoice', 'category')


@admin.register(CardCredit)
class CardCreditAdmin(admin.ModelAdmin):
    list_display = ['description', 'card', 'invoice', 'amount', 'credit_date']
    list_filter = ['card', 'credit_date']
    search_fields = ['description', 'reference_number']
    readonly_fields = ['card', 'invoice', 'amount', 'created_by', 'created_at', 'updated_at']
    actions = ['delete_through_ledger']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description='Delete selected credits')
    def delete_through_ledger(self, request, queryset):
        count = 0
        for credit_id in queryset.values_list('id', flat=True):
            try:
                delete_credit(credit_id=credit_id)
                count += 1
            except CardsServiceError as e:
                self.message_user(request, f'{credit_id}: {e}', level='error')
        self.message_user(request, f'Deleted {count} credit(s).')
