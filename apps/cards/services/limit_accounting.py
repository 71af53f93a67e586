"""
Limit accounting service.

Available limit and invoice totals are always derived from the entry
rows, never kept as running counters:

    total(invoice)   = sum(expenses) - sum(credits)
    available(card)  = card.limit - sum(total(invoice)) over non-PAID invoices

Reads can run outside a transaction (snapshot reads). Writers call
``recompute_invoice_total`` inside their own transaction after touching
an invoice's entries.
"""

import logging
from decimal import Decimal
from uuid import UUID

from django.conf import settings
from django.db.models import Sum

from apps.cards.models import (
    CardCredit,
    CardExpense,
    CreditCard,
    Invoice,
    LIMIT_CONSUMING_STATUSES,
)

from .exceptions import CardNotFoundError, CreditLimitExceededError

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

LIMIT_POLICY_WARN = 'warn'
LIMIT_POLICY_BLOCK = 'block'


def _sum(queryset) -> Decimal:
    return queryset.aggregate(total=Sum('amount'))['total'] or ZERO


def compute_invoice_total(*, invoice_id: UUID) -> Decimal:
    """Sum of the invoice's expenses minus its credits."""
    expenses = _sum(CardExpense.objects.filter(invoice_id=invoice_id))
    credits = _sum(CardCredit.objects.filter(invoice_id=invoice_id))
    return expenses - credits


def recompute_invoice_total(invoice: Invoice) -> Decimal:
    """
    Rewrite the invoice's total snapshot from its entries.

    Must be called inside the transaction that changed the entries.
    """
    total = compute_invoice_total(invoice_id=invoice.id)
    if invoice.total_amount != total:
        invoice.total_amount = total
        invoice.save(update_fields=['total_amount', 'updated_at'])
    return total


def consumed_limit(*, card_id: UUID) -> Decimal:
    """Amount of the card's limit held by OPEN, CLOSED and OVERDUE invoices."""
    expenses = _sum(CardExpense.objects.filter(
        invoice__card_id=card_id,
        invoice__status__in=LIMIT_CONSUMING_STATUSES,
    ))
    credits = _sum(CardCredit.objects.filter(
        invoice__card_id=card_id,
        invoice__status__in=LIMIT_CONSUMING_STATUSES,
    ))
    return expenses - credits


def available_limit(*, card_id: UUID) -> Decimal:
    """
    Card limit minus everything still owed on unsettled invoices.

    May be negative; the figure is returned as is.

    Raises:
        CardNotFoundError: If the card doesn't exist
    """
    card_limit = (
        CreditCard.objects
        .filter(id=card_id)
        .values_list('limit', flat=True)
        .first()
    )
    if card_limit is None:
        raise CardNotFoundError(f"Credit card with ID {card_id} not found")

    return card_limit - consumed_limit(card_id=card_id)


def get_limit_summary(*, card_id: UUID) -> dict:
    """
    Limit figures for a card.

    Returns:
        dict with ``limit``, ``used``, ``available`` and ``over_limit``.
    """
    available = available_limit(card_id=card_id)
    card_limit = CreditCard.objects.values_list('limit', flat=True).get(id=card_id)
    return {
        'limit': card_limit,
        'used': card_limit - available,
        'available': available,
        'over_limit': available < ZERO,
    }


def check_limit_policy(*, card_id: UUID) -> Decimal:
    """
    Apply the configured over-limit policy after a post.

    Called at the end of a writing transaction; raising here rolls the
    post back.

    Returns:
        The available limit after the post

    Raises:
        CreditLimitExceededError: Under the 'block' policy when the
            available limit went negative
    """
    available = available_limit(card_id=card_id)
    if available >= ZERO:
        return available

    policy = getattr(settings, 'CARD_LIMIT_POLICY', LIMIT_POLICY_WARN)
    if policy == LIMIT_POLICY_BLOCK:
        logger.warning("Post refused, card %s would be over limit (%s)", card_id, available)
        raise CreditLimitExceededError(
            f"Credit limit exceeded: available limit would be {available}",
            available_limit=available,
        )

    logger.warning("Card %s is over limit: available=%s", card_id, available)
    return available
