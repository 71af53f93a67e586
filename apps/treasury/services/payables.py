"""
Payable record store.

Keeps accounts-payable entries in step with the documents they mirror.
Callers own the transaction; these helpers never open their own.
"""

import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Optional
from uuid import UUID

from apps.treasury.models import Payable, PayableStatus

logger = logging.getLogger(__name__)


def upsert_payable(
    *,
    payable: Optional[Payable],
    description: str,
    amount: Decimal,
    due_date: date_type,
    status: str = PayableStatus.PENDING,
) -> Payable:
    """
    Create a payable, or refresh an existing one in place.

    Args:
        payable: Existing mirror, or None to create a new one
        description: Statement line shown in accounts-payable views
        amount: Amount owed
        due_date: When the amount is due
        status: Payable status to store

    Returns:
        The saved Payable
    """
    if payable is None:
        payable = Payable.objects.create(
            description=description,
            amount=amount,
            due_date=due_date,
            status=status,
        )
        logger.info("Payable created: %s amount=%s", payable.id, amount)
        return payable

    payable.description = description
    payable.amount = amount
    payable.due_date = due_date
    payable.status = status
    payable.save(update_fields=['description', 'amount', 'due_date', 'status', 'updated_at'])
    return payable


def mark_payable_paid(
    *,
    payable_id: UUID,
    bank_account_id: UUID,
    payment_date: date_type,
) -> Optional[Payable]:
    """Mark a mirrored payable as settled. Returns None if it is gone."""
    payable = Payable.objects.select_for_update().filter(id=payable_id).first()
    if payable is None:
        return None

    payable.status = PayableStatus.PAID
    payable.bank_account_id = bank_account_id
    payable.payment_date = payment_date
    payable.save(update_fields=['status', 'bank_account', 'payment_date', 'updated_at'])
    return payable


def remove_payable(*, payable_id: Optional[UUID]) -> bool:
    """
    Delete a mirrored payable if present.

    Returns:
        True if a row was deleted
    """
    if payable_id is None:
        return False

    deleted, _ = Payable.objects.filter(id=payable_id).delete()
    if deleted:
        logger.info("Payable removed: %s", payable_id)
    return bool(deleted)
