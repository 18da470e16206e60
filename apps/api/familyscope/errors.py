"""Error taxonomy for the authorization and aggregation layer."""
from __future__ import annotations

from typing import Dict, Optional


class FamilyScopeError(Exception):
    """Base class; every failure is local to a single operation."""

    status_code = 500
    retriable = False
    public_detail: Optional[str] = None

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def detail(self) -> object:
        return self.public_detail or self.message


class Unauthenticated(FamilyScopeError):
    status_code = 401
    public_detail = "Authentication required."


class Forbidden(FamilyScopeError):
    # Reported exactly like NotFound so other families' records stay invisible.
    status_code = 404
    public_detail = "Not found."


class NotFound(FamilyScopeError):
    status_code = 404
    public_detail = "Not found."


class JourneyNotFound(NotFound):
    pass


class ValidationFailed(FamilyScopeError):
    status_code = 422

    def __init__(self, errors: Dict[str, str], collection: Optional[str] = None) -> None:
        fields = ", ".join(sorted(errors))
        super().__init__(f"Validation failed for {collection or 'payload'}: {fields}")
        self.errors = dict(errors)
        self.collection = collection

    @property
    def field(self) -> Optional[str]:
        return next(iter(sorted(self.errors)), None)

    def detail(self) -> object:
        return {"error": "validation_failed", "fields": self.errors}


class Conflict(FamilyScopeError):
    """A create targeted a key that already exists."""

    status_code = 409


class ConflictRetryExhausted(FamilyScopeError):
    status_code = 409
    retriable = True
    public_detail = "Too many concurrent updates; retry shortly."


class StoreUnavailable(FamilyScopeError):
    status_code = 503
    retriable = True
    public_detail = "Storage temporarily unavailable; retry shortly."


class TransactionConflict(Exception):
    """Raised by a store when an optimistic transaction lost a race.

    Internal to the store/coordinator boundary; callers only ever see
    ConflictRetryExhausted.
    """
