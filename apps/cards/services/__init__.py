"""
Cards app services layer.

Services contain the credit card ledger engine: invoice lifecycle,
limit accounting, ledger entries, installment allocation, statement
ordering and the billing scheduler. All state-changing operations use
transactions and row locks.
"""

from .exceptions import (
    CardsServiceError,
    CardNotFoundError,
    InvoiceNotFoundError,
    EntryNotFoundError,
    DuplicateInvoiceError,
    InvalidTransitionError,
    CannotDeleteSettledError,
    InvoiceNotEditableError,
    PartialAllocationFailure,
    SettlementFailedError,
    CardInUseError,
    CreditLimitExceededError,
    LedgerValidationError,
    EntryMovedError,
)

from .card_management import (
    create_card,
    get_card_by_id,
    update_card,
    deactivate_card,
    delete_card,
    get_card_overview,
    list_cards,
)

from .invoice_lifecycle import (
    create_invoice,
    close_invoice,
    mark_invoice_overdue,
    pay_invoice,
    reopen_invoice,
    delete_invoice,
    get_invoice,
    get_current_open_invoice,
)

from .limit_accounting import (
    available_limit,
    compute_invoice_total,
    get_limit_summary,
)

from .ledger_entries import (
    get_expense,
    update_expense,
    move_expense,
    delete_expense,
    add_credit,
    delete_credit,
)

from .installments import (
    AllocationResult,
    allocate_installments,
    add_expense,
    split_installments,
)

from .ordering import (
    reorder_expense,
    list_invoice_expenses,
)

from .billing_scheduler import (
    BillingPassReport,
    run_billing_pass,
)


__all__ = [
    # Exceptions
    'CardsServiceError',
    'CardNotFoundError',
    'InvoiceNotFoundError',
    'EntryNotFoundError',
    'DuplicateInvoiceError',
    'InvalidTransitionError',
    'CannotDeleteSettledError',
    'InvoiceNotEditableError',
    'PartialAllocationFailure',
    'SettlementFailedError',
    'CardInUseError',
    'CreditLimitExceededError',
    'LedgerValidationError',
    'EntryMovedError',

    # Card Management
    'create_card',
    'get_card_by_id',
    'update_card',
    'deactivate_card',
    'delete_card',
    'get_card_overview',
    'list_cards',

    # Invoice Lifecycle
    'create_invoice',
    'close_invoice',
    'mark_invoice_overdue',
    'pay_invoice',
    'reopen_invoice',
    'delete_invoice',
    'get_invoice',
    'get_current_open_invoice',

    # Limit Accounting
    'available_limit',
    'compute_invoice_total',
    'get_limit_summary',

    # Ledger Entries
    'get_expense',
    'update_expense',
    'move_expense',
    'delete_expense',
    'add_credit',
    'delete_credit',

    # Installments
    'AllocationResult',
    'allocate_installments',
    'add_expense',
    'split_installments',

    # Ordering
    'reorder_expense',
    'list_invoice_expenses',

    # Billing Scheduler
    'BillingPassReport',
    'run_billing_pass',
]
