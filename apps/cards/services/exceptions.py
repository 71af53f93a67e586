"""
Domain-specific exceptions for the cards app.

These exceptions represent business rule violations and should be
caught in views and converted to appropriate HTTP responses. None of
them is retried by the services.
"""


class CardsServiceError(Exception):
    """Base exception for all card ledger service errors."""
    pass


class CardNotFoundError(CardsServiceError):
    """Raised when a credit card does not exist."""
    pass


class InvoiceNotFoundError(CardsServiceError):
    """Raised when an invoice does not exist."""
    pass


class EntryNotFoundError(CardsServiceError):
    """Raised when an expense or credit entry does not exist."""
    pass


class DuplicateInvoiceError(CardsServiceError):
    """Raised when an invoice already exists for the card and month."""
    pass


class InvalidTransitionError(CardsServiceError):
    """Raised when an invoice status change is not allowed from its current state."""
    pass


class CannotDeleteSettledError(CardsServiceError):
    """Raised when trying to delete a PAID invoice."""
    pass


class InvoiceNotEditableError(CardsServiceError):
    """Raised when entries of a non-OPEN invoice would be changed."""
    pass


class PartialAllocationFailure(CardsServiceError):
    """Raised when an installment set could not be posted as a whole."""
    pass


class SettlementFailedError(CardsServiceError):
    """Raised when the bank ledger rejects an invoice payment."""
    pass


class CardInUseError(CardsServiceError):
    """Raised when deleting a card that still owns ledger entries."""
    pass


class CreditLimitExceededError(CardsServiceError):
    """Raised under the 'block' policy when a post would exceed the limit."""

    def __init__(self, message, available_limit=None):
        super().__init__(message)
        self.available_limit = available_limit


class LedgerValidationError(CardsServiceError):
    """Raised when an entry payload is invalid (amounts, installment counts)."""
    pass


class EntryMovedError(CardsServiceError):
    """Raised when an expense keeps changing invoice while it is being locked."""
    pass
