"""
Card management service.

Handles card CRUD and the card overview consumed by the dashboard.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, Sum

from apps.cards.models import CardCredit, CardExpense, CreditCard, Invoice, InvoiceStatus

from .exceptions import CardInUseError, CardNotFoundError, LedgerValidationError
from .invoice_lifecycle import get_current_open_invoice
from .limit_accounting import get_limit_summary
from .locks import lock_card

logger = logging.getLogger(__name__)


def _validate_day(name: str, value: int) -> int:
    if not 1 <= int(value) <= 31:
        raise LedgerValidationError(f"{name} must be between 1 and 31")
    return int(value)


def _validate_limit(value) -> Decimal:
    limit = Decimal(str(value))
    if limit < Decimal('0.00'):
        raise LedgerValidationError("Limit must not be negative")
    return limit


def create_card(
    *,
    name: str,
    limit,
    closing_day: int,
    due_day: int,
    card_number: str = '',
    card_flag: str = '',
    color: str = '#3B82F6',
    notes: str = '',
) -> CreditCard:
    """
    Register a new card.

    Raises:
        LedgerValidationError: If days are outside 1..31 or limit is negative
    """
    card = CreditCard.objects.create(
        name=name,
        limit=_validate_limit(limit),
        closing_day=_validate_day('closing_day', closing_day),
        due_day=_validate_day('due_day', due_day),
        card_number=card_number,
        card_flag=card_flag,
        color=color,
        notes=notes,
        is_active=True,
    )
    logger.info("Card %s created (%s), limit %s", card.id, card.name, card.limit)
    return card


def get_card_by_id(*, card_id: UUID) -> CreditCard:
    """
    Raises:
        CardNotFoundError: If card doesn't exist
    """
    try:
        return CreditCard.objects.get(id=card_id)
    except CreditCard.DoesNotExist:
        raise CardNotFoundError(f"Credit card with ID {card_id} not found")


@transaction.atomic
def update_card(
    *,
    card_id: UUID,
    name: Optional[str] = None,
    limit=None,
    closing_day: Optional[int] = None,
    due_day: Optional[int] = None,
    card_number: Optional[str] = None,
    card_flag: Optional[str] = None,
    color: Optional[str] = None,
    notes: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> CreditCard:
    """
    Update card details. Only provided fields change.

    Changing the billing days affects invoices created afterwards; the
    dates of existing invoices are kept.

    Raises:
        CardNotFoundError: If card doesn't exist
        LedgerValidationError: If new values are out of range
    """
    card = lock_card(card_id)
    update_fields = ['updated_at']

    if name is not None:
        card.name = name
        update_fields.append('name')

    if limit is not None:
        card.limit = _validate_limit(limit)
        update_fields.append('limit')

    if closing_day is not None:
        card.closing_day = _validate_day('closing_day', closing_day)
        update_fields.append('closing_day')

    if due_day is not None:
        card.due_day = _validate_day('due_day', due_day)
        update_fields.append('due_day')

    if card_number is not None:
        card.card_number = card_number
        update_fields.append('card_number')

    if card_flag is not None:
        card.card_flag = card_flag
        update_fields.append('card_flag')

    if color is not None:
        card.color = color
        update_fields.append('color')

    if notes is not None:
        card.notes = notes
        update_fields.append('notes')

    if is_active is not None:
        card.is_active = is_active
        update_fields.append('is_active')

    card.save(update_fields=update_fields)
    return card


def deactivate_card(*, card_id: UUID) -> CreditCard:
    """Soft-delete a card; its history stays in place."""
    card = update_card(card_id=card_id, is_active=False)
    logger.info("Card %s deactivated", card.id)
    return card


@transaction.atomic
def delete_card(*, card_id: UUID) -> None:
    """
    Physically remove a card that owns no ledger entries.

    Empty invoices are removed with it.

    Raises:
        CardNotFoundError: If card doesn't exist
        CardInUseError: If any expense or credit still references the card
    """
    card = lock_card(card_id)

    if (
        CardExpense.objects.filter(card=card).exists()
        or CardCredit.objects.filter(card=card).exists()
    ):
        raise CardInUseError(
            f"Card {card.name} has ledger entries; deactivate it instead"
        )

    Invoice.objects.filter(card=card).delete()
    card.delete()
    logger.info("Card %s deleted", card_id)


def get_card_overview(*, card_id: UUID) -> dict:
    """
    Card with its open invoice, limit figures and recent invoices.

    Returns:
        dict containing:
            - card (CreditCard)
            - current_invoice (Invoice | None): earliest OPEN invoice
            - limit, used, available, over_limit: see get_limit_summary
            - invoices (list[Invoice]): most recent first, annotated with
              ``expenses_count``
            - unassigned_count / unassigned_amount: expenses with no invoice

    Raises:
        CardNotFoundError: If card doesn't exist
    """
    card = get_card_by_id(card_id=card_id)
    history_size = getattr(settings, 'CARD_INVOICE_HISTORY_SIZE', 12)

    invoices = list(
        Invoice.objects
        .filter(card=card)
        .annotate(expenses_count=Count('expenses'))
        .order_by('-reference_month')[:history_size]
    )

    unassigned = CardExpense.objects.filter(card=card, invoice__isnull=True).aggregate(
        count=Count('id'),
        amount=Sum('amount'),
    )

    overview = {
        'card': card,
        'current_invoice': get_current_open_invoice(card_id=card.id),
        'invoices': invoices,
        'unassigned_count': unassigned['count'],
        'unassigned_amount': unassigned['amount'] or Decimal('0.00'),
    }
    overview.update(get_limit_summary(card_id=card.id))
    return overview


def list_cards(*, include_inactive: bool = False):
    queryset = CreditCard.objects.annotate(
        open_invoices=Count('invoices', filter=Q(invoices__status=InvoiceStatus.OPEN)),
    )
    if not include_inactive:
        queryset = queryset.filter(is_active=True)
    return queryset
