"""
Bank ledger service.

Writes money movements against bank accounts. The card engine calls
``record_settlement`` when an invoice is paid.
"""

import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Optional
from uuid import UUID

from django.db import transaction

from apps.treasury.models import BankAccount, BankTransaction, TransactionType

from .exceptions import (
    BankAccountNotFoundError,
    InactiveBankAccountError,
    InvalidSettlementAmountError,
)

logger = logging.getLogger(__name__)


@transaction.atomic
def record_settlement(
    *,
    bank_account_id: UUID,
    amount: Decimal,
    date: date_type,
    reference: str,
    reference_type: str = 'credit_card_invoice',
    description: str = '',
) -> BankTransaction:
    """
    Debit a bank account for a settlement.

    The account row is locked so concurrent settlements against the same
    account see each other's balance.

    Args:
        bank_account_id: Account paying the settlement
        amount: Amount to debit (zero is allowed, negative is not)
        date: Settlement date
        reference: Identifier of the settled document
        reference_type: Kind of the settled document
        description: Human readable statement line

    Returns:
        The created BankTransaction

    Raises:
        BankAccountNotFoundError: If the account doesn't exist
        InactiveBankAccountError: If the account is deactivated
        InvalidSettlementAmountError: If amount is negative
    """
    if amount < Decimal('0.00'):
        raise InvalidSettlementAmountError(
            f"Settlement amount must not be negative (got {amount})"
        )

    try:
        account = BankAccount.objects.select_for_update().get(id=bank_account_id)
    except BankAccount.DoesNotExist:
        raise BankAccountNotFoundError(f"Bank account {bank_account_id} not found")

    if not account.is_active:
        raise InactiveBankAccountError(f"Bank account {account.name} is inactive")

    account.balance = account.balance - amount
    account.save(update_fields=['balance', 'updated_at'])

    movement = BankTransaction.objects.create(
        bank_account=account,
        type=TransactionType.EXPENSE,
        amount=amount,
        balance_after=account.balance,
        date=date,
        description=description,
        reference_type=reference_type,
        reference_id=str(reference),
    )

    logger.info(
        "Settlement recorded: account=%s amount=%s reference=%s balance_after=%s",
        account.id, amount, reference, account.balance,
    )
    return movement


def get_settlement(*, reference: str, reference_type: str = 'credit_card_invoice') -> Optional[BankTransaction]:
    """Return the latest settlement movement for a document, if any."""
    return (
        BankTransaction.objects
        .filter(reference_type=reference_type, reference_id=str(reference))
        .order_by('-created_at')
        .first()
    )
