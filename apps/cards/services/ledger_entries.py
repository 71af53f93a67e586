"""
Ledger entry store.

CRUD over card expenses (debits) and credits (refunds). Every write
locks the owning invoice, then in the same transaction rewrites the
invoice total from its entries and keeps the expense display order
dense.
"""

import logging
from datetime import date as date_type
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Tuple
from uuid import UUID

from django.db import transaction

from apps.cards.models import CardCredit, CardExpense, Invoice

from .billing_calendar import billing_month_for
from .exceptions import (
    EntryMovedError,
    EntryNotFoundError,
    InvoiceNotEditableError,
    InvoiceNotFoundError,
    LedgerValidationError,
)
from .invoice_lifecycle import ensure_invoice
from .limit_accounting import check_limit_policy, recompute_invoice_total
from .locks import lock_card, lock_invoice
from .ordering import close_gap, next_display_order

logger = logging.getLogger(__name__)

TWOPLACES = Decimal('0.01')

# How often an expense lock follows a concurrent move before giving up.
LOCK_ATTEMPTS = 3

# Marks an optional argument the caller did not pass, where None is a value.
UNCHANGED = object()


def to_money(value) -> Decimal:
    """
    Normalize an amount to a positive two-place Decimal.

    Raises:
        LedgerValidationError: If the value is not a positive number
    """
    try:
        amount = Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise LedgerValidationError(f"Invalid amount: {value!r}")
    if amount <= Decimal('0.00'):
        raise LedgerValidationError("Amount must be greater than zero")
    return amount


def _assert_editable(invoice: Invoice) -> None:
    if not invoice.is_editable:
        logger.warning("Refused entry change on %s invoice %s", invoice.status, invoice.id)
        raise InvoiceNotEditableError(
            f"Invoice {invoice.period_label} is {invoice.status} and cannot be edited"
        )


def _get_expense(expense_id: UUID) -> CardExpense:
    try:
        return CardExpense.objects.get(id=expense_id)
    except CardExpense.DoesNotExist:
        raise EntryNotFoundError(f"Expense with ID {expense_id} not found")


def _get_credit(credit_id: UUID) -> CardCredit:
    try:
        return CardCredit.objects.get(id=credit_id)
    except CardCredit.DoesNotExist:
        raise EntryNotFoundError(f"Credit with ID {credit_id} not found")


def _locked_expense_in(expense_id: UUID, invoice_id: Optional[UUID]) -> Optional[CardExpense]:
    """Re-read an expense under lock; None if it no longer sits in ``invoice_id``."""
    expense = (
        CardExpense.objects
        .select_for_update()
        .filter(id=expense_id, invoice_id=invoice_id)
        .first()
    )
    if expense is None and not CardExpense.objects.filter(id=expense_id).exists():
        raise EntryNotFoundError(f"Expense with ID {expense_id} not found")
    return expense


def _lock_expense(expense_id: UUID) -> Tuple[CardExpense, Optional[Invoice]]:
    """
    Lock an expense together with the invoice that owns it.

    The owner is read before its lock is held, so a move committed in
    between is caught by re-reading under the lock, and the lock is
    then taken on the new owner.

    Raises:
        EntryNotFoundError: If the expense doesn't exist
        EntryMovedError: If the expense keeps changing invoice
    """
    # Card before invoices, as in locks.py.
    lock_card(_get_expense(expense_id).card_id)

    for _ in range(LOCK_ATTEMPTS):
        invoice_id = _get_expense(expense_id).invoice_id
        try:
            invoice = lock_invoice(invoice_id) if invoice_id else None
        except InvoiceNotFoundError:
            # Owner deleted meanwhile; the next read tells where the expense went.
            continue
        expense = _locked_expense_in(expense_id, invoice_id)
        if expense is not None:
            return expense, invoice
        logger.info("Expense %s left invoice %s before it was locked; retrying", expense_id, invoice_id)

    _get_expense(expense_id)
    raise EntryMovedError(f"Expense {expense_id} changed invoice concurrently; try again")


# =============================================================================
# Expenses
# =============================================================================

def insert_expense(
    *,
    invoice: Invoice,
    amount: Decimal,
    purchase_date: date_type,
    description: str,
    category_id: Optional[UUID] = None,
    supplier_name: str = '',
    reference_number: str = '',
    notes: str = '',
    installment_number: int = 1,
    installments: int = 1,
    created_by: str = '',
) -> CardExpense:
    """
    Append an expense to an invoice and refresh the invoice total.

    Low-level insert used by the installment allocator; no status check
    is made here. The caller holds the invoice lock.
    """
    expense = CardExpense.objects.create(
        card_id=invoice.card_id,
        invoice=invoice,
        amount=amount,
        purchase_date=purchase_date,
        description=description,
        category_id=category_id,
        supplier_name=supplier_name,
        reference_number=reference_number,
        notes=notes,
        installment_number=installment_number,
        installments=installments,
        display_order=next_display_order(invoice_id=invoice.id),
        created_by=created_by,
    )
    recompute_invoice_total(invoice)
    return expense


def get_expense(*, expense_id: UUID) -> CardExpense:
    """
    Raises:
        EntryNotFoundError: If the expense doesn't exist
    """
    return _get_expense(expense_id)


@transaction.atomic
def update_expense(
    *,
    expense_id: UUID,
    amount=None,
    description: Optional[str] = None,
    purchase_date: Optional[date_type] = None,
    category_id=UNCHANGED,
    supplier_name: Optional[str] = None,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> CardExpense:
    """
    Edit an expense while its invoice is OPEN.

    Only the provided (non-None) fields change. ``category_id`` may be
    passed as None to clear the category.

    Raises:
        EntryNotFoundError: If the expense doesn't exist
        EntryMovedError: If the expense keeps changing invoice meanwhile
        InvoiceNotEditableError: If its invoice is not OPEN
        LedgerValidationError: If the new amount is not positive
        CreditLimitExceededError: Under the 'block' policy
    """
    expense, invoice = _lock_expense(expense_id)
    if invoice is not None:
        _assert_editable(invoice)

    update_fields = ['updated_at']

    if amount is not None:
        expense.amount = to_money(amount)
        update_fields.append('amount')

    if description is not None:
        expense.description = description
        update_fields.append('description')

    if purchase_date is not None:
        expense.purchase_date = purchase_date
        update_fields.append('purchase_date')

    if category_id is not UNCHANGED:
        expense.category_id = category_id
        update_fields.append('category')

    if supplier_name is not None:
        expense.supplier_name = supplier_name
        update_fields.append('supplier_name')

    if reference_number is not None:
        expense.reference_number = reference_number
        update_fields.append('reference_number')

    if notes is not None:
        expense.notes = notes
        update_fields.append('notes')

    expense.save(update_fields=update_fields)

    if invoice is not None:
        recompute_invoice_total(invoice)
        if 'amount' in update_fields:
            check_limit_policy(card_id=invoice.card_id)

    return expense


@transaction.atomic
def move_expense(*, expense_id: UUID, target_invoice_id: Optional[UUID]) -> CardExpense:
    """
    Reassign an expense to another invoice of the same card, or unassign it.

    Both invoices must be OPEN. The source ordering closes its gap and
    the expense is appended to the end of the target.

    Raises:
        EntryNotFoundError: If the expense doesn't exist
        EntryMovedError: If the expense keeps changing invoice meanwhile
        InvoiceNotFoundError: If the target invoice doesn't exist
        InvoiceNotEditableError: If either invoice is not OPEN
        LedgerValidationError: If the target belongs to another card
        CreditLimitExceededError: Under the 'block' policy
    """
    if target_invoice_id is not None:
        target_invoice_id = UUID(str(target_invoice_id))

    lock_card(_get_expense(expense_id).card_id)

    for _ in range(LOCK_ATTEMPTS):
        source_id = _get_expense(expense_id).invoice_id
        if source_id == target_invoice_id:
            return _get_expense(expense_id)

        # Lock in a stable order so two opposite moves cannot deadlock.
        locked = {}
        for invoice_id in sorted(filter(None, [source_id, target_invoice_id]), key=str):
            locked[invoice_id] = lock_invoice(invoice_id)

        expense = _locked_expense_in(expense_id, source_id)
        if expense is not None:
            break
        logger.info("Expense %s left invoice %s before it was locked; retrying", expense_id, source_id)
    else:
        raise EntryMovedError(f"Expense {expense_id} changed invoice concurrently; try again")

    for invoice in locked.values():
        _assert_editable(invoice)

    target = locked.get(target_invoice_id)
    if target is not None and target.card_id != expense.card_id:
        raise LedgerValidationError("Expenses can only move between invoices of the same card")

    old_order = expense.display_order

    expense.invoice = target
    expense.display_order = next_display_order(invoice_id=target.id) if target else None
    expense.save(update_fields=['invoice', 'display_order', 'updated_at'])

    source = locked.get(source_id)
    if source is not None:
        if old_order is not None:
            close_gap(invoice_id=source.id, removed_order=old_order)
        recompute_invoice_total(source)

    if target is not None:
        recompute_invoice_total(target)
        check_limit_policy(card_id=target.card_id)

    logger.info("Expense %s moved from invoice %s to %s", expense.id, source_id, target_invoice_id)
    return expense


@transaction.atomic
def delete_expense(*, expense_id: UUID) -> None:
    """
    Delete an expense whatever the invoice status.

    Later expenses shift up one position and the invoice total is
    recomputed.

    Raises:
        EntryNotFoundError: If the expense doesn't exist
        EntryMovedError: If the expense keeps changing invoice meanwhile
    """
    expense, invoice = _lock_expense(expense_id)
    invoice_id = expense.invoice_id
    removed_order = expense.display_order
    expense.delete()

    if invoice is not None:
        if removed_order is not None:
            close_gap(invoice_id=invoice.id, removed_order=removed_order)
        recompute_invoice_total(invoice)

    logger.info("Expense %s deleted from invoice %s", expense_id, invoice_id)


# =============================================================================
# Credits
# =============================================================================

@transaction.atomic
def add_credit(
    *,
    card_id: UUID,
    amount,
    credit_date: date_type,
    description: str,
    invoice_id: Optional[UUID] = None,
    reference_number: str = '',
    notes: str = '',
    created_by: str = '',
) -> CardCredit:
    """
    Post a refund against an OPEN invoice.

    Without ``invoice_id`` the credit goes to the cycle its date falls
    in, opening that invoice if needed.

    Raises:
        CardNotFoundError: If the card doesn't exist
        InvoiceNotFoundError: If the given invoice doesn't exist
        InvoiceNotEditableError: If the target invoice is not OPEN
        LedgerValidationError: If amount is not positive or the invoice
            belongs to another card
    """
    amount = to_money(amount)

    if invoice_id is None:
        card = lock_card(card_id)
        month = billing_month_for(closing_day=card.closing_day, on_date=credit_date)
        invoice, _ = ensure_invoice(card=card, reference_month=month)
        invoice_id = invoice.id

    invoice = lock_invoice(invoice_id)
    if str(invoice.card_id) != str(card_id):
        raise LedgerValidationError("Invoice does not belong to this card")
    _assert_editable(invoice)

    credit = CardCredit.objects.create(
        card_id=invoice.card_id,
        invoice=invoice,
        amount=amount,
        credit_date=credit_date,
        description=description,
        reference_number=reference_number,
        notes=notes,
        created_by=created_by,
    )
    total = recompute_invoice_total(invoice)

    logger.info("Credit %s of %s posted to invoice %s (total now %s)", credit.id, amount, invoice.id, total)
    return credit


@transaction.atomic
def delete_credit(*, credit_id: UUID) -> None:
    """
    Remove a credit; its invoice total goes back up.

    Raises:
        EntryNotFoundError: If the credit doesn't exist
    """
    invoice = lock_invoice(_get_credit(credit_id).invoice_id)
    credit = _get_credit(credit_id)
    credit.delete()
    recompute_invoice_total(invoice)

    logger.info("Credit %s deleted from invoice %s", credit_id, invoice.id)

