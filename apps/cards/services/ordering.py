"""
Ordering service.

Expenses of an invoice carry a dense ``display_order`` sequence 1..n.
Inserts append, deletes shift later rows down, and ``reorder_expense``
is the only operation that permutes positions. Every helper here
expects the caller to hold the invoice lock.
"""

import logging
from uuid import UUID

from django.db import transaction
from django.db.models import F, Max

from apps.cards.models import CardExpense

from .exceptions import (
    EntryNotFoundError,
    InvoiceNotEditableError,
    LedgerValidationError,
)
from .locks import lock_invoice

logger = logging.getLogger(__name__)

UP = 'up'
DOWN = 'down'
DIRECTIONS = (UP, DOWN)


def next_display_order(*, invoice_id: UUID) -> int:
    """Position for an expense appended to the end of the invoice."""
    current = (
        CardExpense.objects
        .filter(invoice_id=invoice_id)
        .aggregate(top=Max('display_order'))['top']
    )
    return (current or 0) + 1


def close_gap(*, invoice_id: UUID, removed_order: int) -> int:
    """
    Shift every expense after ``removed_order`` up by one slot.

    Returns:
        Number of rows renumbered
    """
    return (
        CardExpense.objects
        .filter(invoice_id=invoice_id, display_order__gt=removed_order)
        .update(display_order=F('display_order') - 1)
    )


@transaction.atomic
def reorder_expense(*, expense_id: UUID, direction: str) -> CardExpense:
    """
    Swap an expense with its neighbour above or below.

    Moving the first entry up or the last entry down is a no-op.

    Args:
        expense_id: Expense to move
        direction: 'up' or 'down'

    Returns:
        The expense with its (possibly) new display_order

    Raises:
        LedgerValidationError: If direction is unknown or the expense is unassigned
        EntryNotFoundError: If the expense doesn't exist
        InvoiceNotEditableError: If the invoice is not OPEN
    """
    if direction not in DIRECTIONS:
        raise LedgerValidationError(f"Direction must be one of {DIRECTIONS}, got {direction!r}")

    invoice_id = (
        CardExpense.objects
        .filter(id=expense_id)
        .values_list('invoice_id', flat=True)
        .first()
    )
    if invoice_id is None:
        if not CardExpense.objects.filter(id=expense_id).exists():
            raise EntryNotFoundError(f"Expense with ID {expense_id} not found")
        raise LedgerValidationError("Unassigned expenses have no statement position")

    invoice = lock_invoice(invoice_id)
    if not invoice.is_editable:
        raise InvoiceNotEditableError(
            f"Invoice {invoice.period_label} is {invoice.status}; only open invoices can be reordered"
        )

    # Re-read under the lock; a concurrent move may have changed it.
    try:
        expense = CardExpense.objects.get(id=expense_id, invoice_id=invoice.id)
    except CardExpense.DoesNotExist:
        raise EntryNotFoundError(f"Expense with ID {expense_id} not found in invoice {invoice.id}")

    current = expense.display_order
    target = current - 1 if direction == UP else current + 1

    neighbour = (
        CardExpense.objects
        .filter(invoice_id=invoice.id, display_order=target)
        .first()
    )
    if neighbour is None:
        return expense

    neighbour.display_order = current
    neighbour.save(update_fields=['display_order', 'updated_at'])
    expense.display_order = target
    expense.save(update_fields=['display_order', 'updated_at'])

    logger.info(
        "Expense %s moved %s in invoice %s: %s -> %s",
        expense.id, direction, invoice.id, current, target,
    )
    return expense


def list_invoice_expenses(*, invoice_id: UUID):
    """Expenses of an invoice in statement order."""
    return (
        CardExpense.objects
        .filter(invoice_id=invoice_id)
        .select_related('category')
        .order_by('display_order', 'created_at')
    )
