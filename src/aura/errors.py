"""Error taxonomy for marketplace operations.

Components raise MarketError subclasses for expected, caller-recoverable
conditions. Raising inside a store transaction unit also rolls back every
write made in that unit. The service facade converts each error into a
ServiceResult carrying its ErrorKind.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Classification reported to callers alongside error messages."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    DUPLICATE = "duplicate"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL = "internal"


class MarketError(Exception):
    """Base class for expected marketplace failures."""
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class ValidationError(MarketError):
    """Malformed or missing input. No state was changed."""
    kind = ErrorKind.VALIDATION


class NotFoundError(MarketError):
    """A referenced session, offer, beacon, or transaction does not exist."""
    kind = ErrorKind.NOT_FOUND


class StateConflictError(MarketError):
    """The operation is illegal for the entity's current lifecycle state."""
    kind = ErrorKind.STATE_CONFLICT


class DuplicateError(MarketError):
    """An idempotency key or uniqueness constraint collided."""
    kind = ErrorKind.DUPLICATE
