"""
Row-lock helpers.

All writers go through these so that work on one invoice serializes
while different invoices and cards proceed in parallel. Must be called
inside ``transaction.atomic``.

Lock order, followed by every writer so none can deadlock another:

- a card before any of its invoices, and held by any writer that may
  lock more than one invoice of that card;
- two invoices locked together (moves) in ascending ``str(id)`` order;
- an expense row only after the invoice that owns it.
"""

from uuid import UUID

from apps.cards.models import CreditCard, Invoice

from .exceptions import CardNotFoundError, InvoiceNotFoundError


def lock_card(card_id: UUID) -> CreditCard:
    """Lock a card row; taken before creating invoices for it."""
    try:
        return CreditCard.objects.select_for_update().get(id=card_id)
    except CreditCard.DoesNotExist:
        raise CardNotFoundError(f"Credit card with ID {card_id} not found")


def lock_invoice(invoice_id: UUID) -> Invoice:
    """Lock an invoice row, which guards its whole entry set."""
    try:
        return Invoice.objects.select_for_update().get(id=invoice_id)
    except Invoice.DoesNotExist:
        raise InvoiceNotFoundError(f"Invoice with ID {invoice_id} not found")
