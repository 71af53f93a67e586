from django.contrib import admin
from django.utils.html import format_html
from .models import ExpenseCategory, BankAccount, BankTransaction, Payable, PayableStatus


@admin.register(ExpenseCategory)
class ExpenseCategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'expense_type', 'is_active']
    list_filter = ['expense_type', 'is_active']
    search_fields = ['name']


@admin.register(BankAccount)
class BankAccountAdmin(admin.ModelAdmin):
    list_display = ['name', 'bank_name', 'balance', 'is_active', 'updated_at']
    list_filter = ['is_active']
    search_fields = ['name', 'bank_name']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(BankTransaction)
class BankTransactionAdmin(admin.ModelAdmin):
    """
    Admin interface for bank movements.

    Movements are written by the bank ledger service only, so every
    field is read-only here.
    """

    list_display = [
        'date',
        'bank_account',
        'type',
        'amount',
        'balance_after',
        'reference_type',
        'description',
    ]
    list_filter = ['type', 'reference_type', 'bank_account']
    search_fields = ['description', 'reference_id']
    readonly_fields = [
        'bank_account',
        'type',
        'amount',
        'balance_after',
        'date',
        'description',
        'reference_type',
        'reference_id',
        'created_at',
    ]
    date_hierarchy = 'date'
    ordering = ['-date', '-created_at']

    def has_add_permission(self, request):
        return False

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related('bank_account')


@admin.register(Payable)
class PayableAdmin(admin.ModelAdmin):
    list_display = [
        'description',
        'amount',
        'due_date',
        'status_badge',
        'payment_date',
        'bank_account',
    ]
    list_filter = ['status', 'due_date']
    search_fields = ['description']
    readonly_fields = ['created_at', 'updated_at']
    date_hierarchy = 'due_date'

    def status_badge(self, obj):
        """Display payable status as colored badge."""
        colors = {
            PayableStatus.PENDING: ('#E5C49A', '#2C1810'),
            PayableStatus.OVERDUE: ('#B85C5C', 'white'),
            PayableStatus.PAID: ('#6B8E5E', 'white'),
        }
        bg, fg = colors.get(obj.status, ('#ccc', '#666'))
        return format_html(
            '<span style="background: {}; color: {}; padding: 3px 8px; '
            'border-radius: 10px; font-size: 11px;">{}</span>',
            bg, fg, obj.get_status_display()
        )
    status_badge.short_description = 'Status'
    status_badge.admin_order_field = 'status'
