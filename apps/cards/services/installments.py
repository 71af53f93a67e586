"""
Installment allocator.

Spreads a purchase over N consecutive monthly invoices, one expense per
installment. The whole set posts in a single transaction: either every
installment lands or none does.
"""

import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from django.db import transaction, DatabaseError

from apps.cards.models import CardExpense, Invoice

from .billing_calendar import add_months, billing_month_for, first_of_month
from .exceptions import LedgerValidationError, PartialAllocationFailure
from .invoice_lifecycle import ensure_invoice
from .ledger_entries import insert_expense, to_money
from .limit_accounting import check_limit_policy
from .locks import lock_card, lock_invoice

logger = logging.getLogger(__name__)

MAX_INSTALLMENTS = 48


@dataclass
class AllocationResult:
    """Outcome of posting a purchase."""

    expenses: List[CardExpense] = field(default_factory=list)
    invoices: List[Invoice] = field(default_factory=list)
    created_invoices: List[Invoice] = field(default_factory=list)
    available_limit: Decimal = Decimal('0.00')

    @property
    def over_limit(self) -> bool:
        return self.available_limit < Decimal('0.00')


def split_installments(total: Decimal, count: int) -> List[Decimal]:
    """
    Split an amount into ``count`` cent-exact installments.

    Every installment gets the floor share; the leftover cents all go to
    the first installment, so the parts always add up to ``total``.

    Example::

        >>> split_installments(Decimal('100.00'), 3)
        [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')]
        >>> split_installments(Decimal('0.05'), 3)
        [Decimal('0.03'), Decimal('0.01'), Decimal('0.01')]

    Raises:
        LedgerValidationError: If count < 1 or an installment would be zero
    """
    if count < 1:
        raise LedgerValidationError("Installment count must be at least 1")

    total_cents = int(total * 100)
    base_cents, remainder_cents = divmod(total_cents, count)
    if base_cents == 0:
        raise LedgerValidationError(
            f"{total} cannot be split into {count} installments of at least 0.01"
        )

    parts = [Decimal(base_cents) / Decimal(100) for _ in range(count)]
    parts[0] = Decimal(base_cents + remainder_cents) / Decimal(100)

    if sum(parts) != total:
        raise LedgerValidationError(f"Split calculation error: {sum(parts)} != {total}")
    return parts


def allocate_installments(
    *,
    card_id: UUID,
    total_amount,
    installment_count: int,
    purchase_date: date_type,
    description: str,
    category_id: Optional[UUID] = None,
    first_reference_month: Optional[date_type] = None,
    supplier_name: str = '',
    reference_number: str = '',
    notes: str = '',
    created_by: str = '',
) -> AllocationResult:
    """
    Post a purchase as ``installment_count`` monthly expenses.

    Installment i goes to the invoice of ``first month + (i - 1)``; the
    invoice is created OPEN when missing and reused whatever its status
    otherwise. Each expense is appended to the end of its invoice.

    Args:
        card_id: Card the purchase was made with
        total_amount: Purchase amount
        installment_count: Number of monthly installments (1 = single purchase)
        purchase_date: Date of the purchase
        description: Statement text; multi-installment entries get " (i/N)"
        category_id: Expense category (optional)
        first_reference_month: Month of the first installment. Defaults
            to the cycle the purchase date falls in given the card's
            closing day.
        supplier_name: Optional supplier
        reference_number: Optional document number
        notes: Optional notes
        created_by: Who posted it

    Returns:
        AllocationResult with the expenses, touched invoices and the
        available limit after posting (may be negative)

    Raises:
        CardNotFoundError: If the card doesn't exist
        LedgerValidationError: If amount/count are invalid or the card is inactive
        CreditLimitExceededError: Under the 'block' policy
        PartialAllocationFailure: If any installment failed to post; nothing
            was written
    """
    amount = to_money(total_amount)
    try:
        installment_count = int(installment_count)
    except (TypeError, ValueError):
        raise LedgerValidationError(f"Invalid installment count: {installment_count!r}")
    if installment_count > MAX_INSTALLMENTS:
        raise LedgerValidationError(f"At most {MAX_INSTALLMENTS} installments are allowed")
    parts = split_installments(amount, installment_count)

    with transaction.atomic():
        card = lock_card(card_id)
        if not card.is_active:
            raise LedgerValidationError(f"Card {card.name} is inactive")

        if first_reference_month is not None:
            first_month = first_of_month(first_reference_month)
        else:
            first_month = billing_month_for(closing_day=card.closing_day, on_date=purchase_date)

        result = AllocationResult()
        try:
            with transaction.atomic():
                for number, part in enumerate(parts, start=1):
                    invoice, created = ensure_invoice(
                        card=card,
                        reference_month=add_months(first_month, number - 1),
                    )
                    invoice = lock_invoice(invoice.id)

                    expense = insert_expense(
                        invoice=invoice,
                        amount=part,
                        purchase_date=purchase_date,
                        description=(
                            f"{description} ({number}/{installment_count})"
                            if installment_count > 1 else description
                        ),
                        category_id=category_id,
                        supplier_name=supplier_name,
                        reference_number=reference_number,
                        notes=notes,
                        installment_number=number,
                        installments=installment_count,
                        created_by=created_by,
                    )
                    result.expenses.append(expense)
                    result.invoices.append(invoice)
                    if created:
                        result.created_invoices.append(invoice)
        except DatabaseError as e:
            logger.error(
                "Installment allocation for card %s failed after %s of %s installment(s): %s",
                card.id, len(result.expenses), installment_count, e,
            )
            raise PartialAllocationFailure(
                f"Could not post all {installment_count} installments; nothing was saved"
            ) from e

        result.available_limit = check_limit_policy(card_id=card.id)

    logger.info(
        "Purchase of %s posted to card %s in %s installment(s) from %s; available limit %s",
        amount, card_id, installment_count, first_month.strftime('%m/%Y'), result.available_limit,
    )
    return result


def add_expense(
    *,
    card_id: UUID,
    amount,
    purchase_date: date_type,
    description: str,
    **options,
) -> CardExpense:
    """Post a single (one installment) purchase and return its expense."""
    result = allocate_installments(
        card_id=card_id,
        total_amount=amount,
        installment_count=1,
        purchase_date=purchase_date,
        description=description,
        **options,
    )
    return result.expenses[0]
