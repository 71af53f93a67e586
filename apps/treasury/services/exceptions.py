"""
Domain-specific exceptions for the treasury app.

The cards engine treats these as collaborator failures and wraps them.
"""


class TreasuryServiceError(Exception):
    """Base exception for all treasury service errors."""
    pass


class BankAccountNotFoundError(TreasuryServiceError):
    """Raised when a bank account does not exist."""
    pass


class InactiveBankAccountError(TreasuryServiceError):
    """Raised when posting to a deactivated bank account."""
    pass


class InvalidSettlementAmountError(TreasuryServiceError):
    """Raised when a settlement amount is negative."""
    pass
