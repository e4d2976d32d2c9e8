# Overview: Error taxonomy shared by services and routes.

"""
Settlement error taxonomy.

Every error carries a human-readable message plus a ``details`` dict that the
routes return verbatim. ``status_code`` is the HTTP status the routes map the
error to; services never look at it.

All of these are raised before the first mutating statement where feasible.
When one is raised after a mutation started, the enclosing transaction is
rolled back in full (see services/concurrency.run_in_transaction).
"""

from __future__ import annotations


class GestilogError(Exception):
    """Base class for business errors surfaced to the caller."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(GestilogError):
    """Bad input shape or range (negative qty, missing required field)."""


class InvalidLineError(ValidationError):
    """A sale line has a non-finite or out-of-range quantity or price."""


class MissingReasonError(ValidationError):
    """Stock out or adjustment attempted without a reason."""


class InvalidStatusError(ValidationError):
    """Unknown check status requested."""


class BadRequestError(ValidationError):
    """Request is well-formed but cannot apply to this record."""


class NotFoundError(GestilogError):
    """Sale, product or customer not found in the current tenant."""
    status_code = 404


class InsufficientStockError(GestilogError):
    status_code = 409


class CreditLimitExceededError(GestilogError):
    status_code = 409


class AlreadyCancelledError(GestilogError):
    status_code = 409


class ExceedsBalanceError(GestilogError):
    """Credit repayment larger than the customer's outstanding balance."""
    status_code = 409


class ConflictError(GestilogError):
    """Business rule conflict on master data (e.g., duplicate product reference)."""
    status_code = 409
