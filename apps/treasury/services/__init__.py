"""
Treasury app services layer.

External collaborators of the card engine: the bank ledger that settles
invoices and the payable store that mirrors closed invoices.
"""

from .exceptions import (
    TreasuryServiceError,
    BankAccountNotFoundError,
    InactiveBankAccountError,
    InvalidSettlementAmountError,
)

from .bank_ledger import (
    record_settlement,
    get_settlement,
)

from .payables import (
    upsert_payable,
    mark_payable_paid,
    remove_payable,
)


__all__ = [
    # Exceptions
    'TreasuryServiceError',
    'BankAccountNotFoundError',
    'InactiveBankAccountError',
    'InvalidSettlementAmountError',

    # Bank ledger
    'record_settlement',
    'get_settlement',

    # Payables
    'upsert_payable',
    'mark_payable_paid',
    'remove_payable',
]
