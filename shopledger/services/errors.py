"""
Ledger errors.

Every rule violation detected by the services is raised as one of these,
before anything is written. The API layer maps each class to an HTTP status
(see shopledger.app.api.exception_handlers); callers that are not HTTP can
switch on ``code``.
"""

from __future__ import annotations


class LedgerError(RuntimeError):
    """Base error for stock ledger / procurement / returns operations."""

    code = "LEDGER_ERROR"

    def __init__(self, detail: str, **context):
        self.detail = detail
        self.context = context
        super().__init__(detail)


class InvalidInputError(LedgerError):
    """Malformed request data (empty line set, negative price...)."""

    code = "INVALID_INPUT"


class NotFoundError(LedgerError):
    """Referenced entity is missing or belongs to another tenant."""

    code = "NOT_FOUND"


class InvalidStateError(LedgerError):
    """Operation is not legal for the entity's current status."""

    code = "INVALID_STATE"


class QuantityExceededError(LedgerError):
    """A received / returned / paid quantity would pass its ceiling."""

    code = "QUANTITY_EXCEEDED"


class InsufficientStockError(QuantityExceededError):
    """A movement would drive branch stock below zero."""

    code = "INSUFFICIENT_STOCK"


class InsufficientPaidError(LedgerError):
    """Refund exceeds what was actually paid on the purchase order."""

    code = "INSUFFICIENT_PAID"


class AlreadyProcessedError(LedgerError):
    """Second confirm / reject / refund of the same return."""

    code = "ALREADY_PROCESSED"


class InternalError(LedgerError):
    """Unexpected storage failure; the unit of work was rolled back."""

    code = "INTERNAL"
