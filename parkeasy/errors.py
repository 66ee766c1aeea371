"""Failure taxonomy of the booking engine and the result shape returned to callers."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class BookingError(Exception):
    kind = "error"

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason


class ValidationError(BookingError):
    """Malformed input, unknown rows or an unowned vehicle."""
    kind = "validation"


class ConflictError(BookingError):
    """The request is well formed but clashes with stored state."""
    kind = "conflict"


class PersistenceError(BookingError):
    """The store failed; the transaction was rolled back."""
    kind = "persistence"


class IntegrityViolation(BookingError):
    """Stored data contradicts an invariant. Never partially recovered."""
    kind = "integrity"


class OpResult(BaseModel):
    ok: bool
    reason: Optional[str] = None
    kind: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def success(cls, message: Optional[str] = None, **data) -> "OpResult":
        return cls(ok=True, message=message, data=data)

    @classmethod
    def failure(cls, error: BookingError) -> "OpResult":
        return cls(ok=False, reason=error.reason, kind=error.kind, message=error.message)
