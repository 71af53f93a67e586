"""
Invoice lifecycle service.

State machine (PAID is terminal):

    OPEN    --close-->   CLOSED
    CLOSED  --overdue--> OVERDUE   (billing scheduler)
    CLOSED  --pay-->     PAID
    OVERDUE --pay-->     PAID
    CLOSED  --reopen-->  OPEN
    OVERDUE --reopen-->  OPEN

Every transition locks the invoice row first. Only one invoice may
exist per (card, reference month).
"""

import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from django.db import transaction, IntegrityError

from apps.cards.models import CardCredit, CardExpense, CreditCard, Invoice, InvoiceStatus
from apps.treasury.models import PayableStatus
from apps.treasury.services import (
    TreasuryServiceError,
    mark_payable_paid,
    record_settlement,
    remove_payable,
    upsert_payable,
)

from .billing_calendar import closing_date_for, due_date_for
from .exceptions import (
    CannotDeleteSettledError,
    DuplicateInvoiceError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    LedgerValidationError,
    SettlementFailedError,
)
from .limit_accounting import recompute_invoice_total
from .locks import lock_card, lock_invoice

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    InvoiceStatus.OPEN: {InvoiceStatus.CLOSED},
    InvoiceStatus.CLOSED: {InvoiceStatus.OVERDUE, InvoiceStatus.PAID, InvoiceStatus.OPEN},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PAID, InvoiceStatus.OPEN},
    InvoiceStatus.PAID: set(),
}

PAYABLE_STATUS_FOR = {
    InvoiceStatus.CLOSED: PayableStatus.PENDING,
    InvoiceStatus.OVERDUE: PayableStatus.OVERDUE,
}


def _assert_transition(invoice: Invoice, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS[invoice.status]:
        logger.warning(
            "Refused transition of invoice %s: %s -> %s",
            invoice.id, invoice.status, target,
        )
        raise InvalidTransitionError(
            f"Invoice {invoice.period_label} cannot go from {invoice.status} to {target}"
        )


def _payable_description(invoice: Invoice) -> str:
    return f"Credit card invoice {invoice.card.name} - {invoice.period_label}"


def _sync_payable(invoice: Invoice) -> None:
    """Mirror a CLOSED/OVERDUE invoice into the payable store."""
    payable = upsert_payable(
        payable=invoice.payable,
        description=_payable_description(invoice),
        amount=max(invoice.total_amount, Decimal('0.00')),
        due_date=invoice.due_date,
        status=PAYABLE_STATUS_FOR[invoice.status],
    )
    if invoice.payable_id != payable.id:
        invoice.payable = payable
        invoice.save(update_fields=['payable', 'updated_at'])


def build_invoice(*, card: CreditCard, reference_month: date_type) -> Invoice:
    """
    Insert an OPEN invoice for a card and month.

    The caller holds the card lock.

    Raises:
        DuplicateInvoiceError: If the month already has an invoice
    """
    if Invoice.objects.filter(card=card, reference_month=reference_month).exists():
        raise DuplicateInvoiceError(
            f"Card {card.name} already has an invoice for {reference_month:%m/%Y}"
        )

    try:
        with transaction.atomic():
            invoice = Invoice.objects.create(
                card=card,
                reference_month=reference_month,
                closing_date=closing_date_for(
                    closing_day=card.closing_day,
                    reference_month=reference_month,
                ),
                due_date=due_date_for(
                    closing_day=card.closing_day,
                    due_day=card.due_day,
                    reference_month=reference_month,
                ),
                status=InvoiceStatus.OPEN,
                total_amount=Decimal('0.00'),
            )
    except IntegrityError:
        raise DuplicateInvoiceError(
            f"Card {card.name} already has an invoice for {reference_month:%m/%Y}"
        )

    logger.info(
        "Invoice %s opened for card %s, month %s (closes %s, due %s)",
        invoice.id, card.id, invoice.period_label, invoice.closing_date, invoice.due_date,
    )
    return invoice


def ensure_invoice(*, card: CreditCard, reference_month: date_type) -> Tuple[Invoice, bool]:
    """
    Return the card's invoice for a month, creating it if absent.

    Existing invoices are reused whatever their status. The caller holds
    the card lock.

    Returns:
        (invoice, created)
    """
    existing = Invoice.objects.filter(card=card, reference_month=reference_month).first()
    if existing is not None:
        return existing, False
    return build_invoice(card=card, reference_month=reference_month), True


@transaction.atomic
def create_invoice(*, card_id: UUID, month: int, year: int) -> Invoice:
    """
    Explicitly open an invoice for a card and month.

    Args:
        card_id: Owning card
        month: 1..12
        year: Four digit year

    Returns:
        New OPEN invoice with a zero total

    Raises:
        CardNotFoundError: If the card doesn't exist
        DuplicateInvoiceError: If the month already has an invoice
        LedgerValidationError: If month is out of range
    """
    if not 1 <= month <= 12:
        raise LedgerValidationError(f"Month must be between 1 and 12, got {month}")

    card = lock_card(card_id)
    return build_invoice(card=card, reference_month=date_type(year, month, 1))


@transaction.atomic
def close_invoice(*, invoice_id: UUID) -> Invoice:
    """
    Close an OPEN invoice. Entries are left untouched.

    Raises:
        InvoiceNotFoundError: If the invoice doesn't exist
        InvalidTransitionError: If the invoice is not OPEN
    """
    invoice = lock_invoice(invoice_id)
    _assert_transition(invoice, InvoiceStatus.CLOSED)

    invoice.status = InvoiceStatus.CLOSED
    invoice.save(update_fields=['status', 'updated_at'])
    recompute_invoice_total(invoice)
    _sync_payable(invoice)

    logger.info("Invoice %s closed with total %s", invoice.id, invoice.total_amount)
    return invoice


@transaction.atomic
def mark_invoice_overdue(*, invoice_id: UUID) -> Invoice:
    """
    Move a CLOSED invoice whose due date elapsed to OVERDUE.

    Raises:
        InvoiceNotFoundError: If the invoice doesn't exist
        InvalidTransitionError: If the invoice is not CLOSED
    """
    invoice = lock_invoice(invoice_id)
    _assert_transition(invoice, InvoiceStatus.OVERDUE)

    invoice.status = InvoiceStatus.OVERDUE
    invoice.save(update_fields=['status', 'updated_at'])
    _sync_payable(invoice)

    logger.info("Invoice %s is overdue (due %s)", invoice.id, invoice.due_date)
    return invoice


@transaction.atomic
def pay_invoice(
    *,
    invoice_id: UUID,
    bank_account_id: UUID,
    payment_date: date_type,
) -> Invoice:
    """
    Settle a CLOSED or OVERDUE invoice from a bank account.

    The bank ledger is debited with the invoice total recomputed in this
    transaction. Once PAID the invoice no longer consumes the card limit.

    Args:
        invoice_id: Invoice to settle
        bank_account_id: Account the payment leaves from
        payment_date: Settlement date

    Returns:
        The PAID invoice

    Raises:
        LedgerValidationError: If bank account or date is missing
        InvoiceNotFoundError: If the invoice doesn't exist
        InvalidTransitionError: If the invoice is OPEN or already PAID
        SettlementFailedError: If the bank ledger rejects the payment
    """
    if not bank_account_id:
        raise LedgerValidationError("A bank account is required to pay an invoice")
    if payment_date is None:
        raise LedgerValidationError("A payment date is required to pay an invoice")

    invoice = lock_invoice(invoice_id)
    _assert_transition(invoice, InvoiceStatus.PAID)

    total = recompute_invoice_total(invoice)

    try:
        record_settlement(
            bank_account_id=bank_account_id,
            amount=max(total, Decimal('0.00')),
            date=payment_date,
            reference=str(invoice.id),
            description=f"Payment {_payable_description(invoice)}",
        )
    except TreasuryServiceError as e:
        logger.warning("Settlement of invoice %s failed: %s", invoice.id, e)
        raise SettlementFailedError(str(e)) from e

    invoice.status = InvoiceStatus.PAID
    invoice.paid_amount = total
    invoice.payment_date = payment_date
    invoice.bank_account_id = bank_account_id
    invoice.save(update_fields=[
        'status', 'paid_amount', 'payment_date', 'bank_account', 'updated_at',
    ])

    if invoice.payable_id:
        mark_payable_paid(
            payable_id=invoice.payable_id,
            bank_account_id=bank_account_id,
            payment_date=payment_date,
        )

    logger.info(
        "Invoice %s paid: amount=%s account=%s date=%s",
        invoice.id, total, bank_account_id, payment_date,
    )
    return invoice


@transaction.atomic
def reopen_invoice(*, invoice_id: UUID) -> Invoice:
    """
    Return a CLOSED or OVERDUE invoice to OPEN.

    Entries and therefore the limit consumption are unchanged; the
    payable mirror is withdrawn.

    Raises:
        InvoiceNotFoundError: If the invoice doesn't exist
        InvalidTransitionError: If the invoice is OPEN or PAID
    """
    invoice = lock_invoice(invoice_id)
    _assert_transition(invoice, InvoiceStatus.OPEN)

    payable_id = invoice.payable_id
    invoice.status = InvoiceStatus.OPEN
    invoice.payable = None
    invoice.save(update_fields=['status', 'payable', 'updated_at'])
    remove_payable(payable_id=payable_id)

    logger.info("Invoice %s reopened", invoice.id)
    return invoice


@transaction.atomic
def delete_invoice(*, invoice_id: UUID) -> dict:
    """
    Delete an unsettled invoice together with all of its entries.

    The invoice lock is held for the whole cascade so no entry can be
    inserted into it meanwhile. The limit it consumed is released
    implicitly because its entries are gone.

    Returns:
        dict with ``deleted_expenses``, ``deleted_credits`` and
        ``released_amount``

    Raises:
        InvoiceNotFoundError: If the invoice doesn't exist
        CannotDeleteSettledError: If the invoice is PAID
    """
    invoice = lock_invoice(invoice_id)
    if invoice.status == InvoiceStatus.PAID:
        logger.warning("Refused delete of settled invoice %s", invoice.id)
        raise CannotDeleteSettledError(
            f"Invoice {invoice.period_label} is paid and cannot be deleted"
        )

    released = recompute_invoice_total(invoice)
    deleted_expenses, _ = CardExpense.objects.filter(invoice_id=invoice.id).delete()
    deleted_credits, _ = CardCredit.objects.filter(invoice_id=invoice.id).delete()

    payable_id = invoice.payable_id
    invoice.delete()
    remove_payable(payable_id=payable_id)

    logger.info(
        "Invoice %s deleted: %s expense(s), %s credit(s), released %s",
        invoice_id, deleted_expenses, deleted_credits, released,
    )
    return {
        'deleted_expenses': deleted_expenses,
        'deleted_credits': deleted_credits,
        'released_amount': released,
    }


def get_invoice(*, invoice_id: UUID) -> Invoice:
    """
    Raises:
        InvoiceNotFoundError: If the invoice doesn't exist
    """
    try:
        return Invoice.objects.select_related('card').get(id=invoice_id)
    except Invoice.DoesNotExist:
        raise InvoiceNotFoundError(f"Invoice with ID {invoice_id} not found")


def get_current_open_invoice(*, card_id: UUID) -> Optional[Invoice]:
    """The card's OPEN invoice with the earliest reference month."""
    return (
        Invoice.objects
        .filter(card_id=card_id, status=InvoiceStatus.OPEN)
        .order_by('reference_month')
        .first()
    )
