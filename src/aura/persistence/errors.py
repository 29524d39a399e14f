"""Storage-layer exceptions shared by every MarketStore backend."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for storage failures."""


class StoreUnavailableError(StoreError):
    """The backing store could not be reached or failed operationally."""


class IntegrityViolationError(StoreError):
    """A write violated a relational constraint."""


class UniqueViolationError(IntegrityViolationError):
    """A write collided with a uniqueness constraint.

    ``constraint`` names the violated rule: ``idempotency_key``,
    ``offer_id``, ``session_committed``, ``external_id``, or
    ``primary_key``.
    """

    def __init__(self, constraint: str, message: str = "") -> None:
        super().__init__(message or f"Unique constraint violated: {constraint}")
        self.constraint = constraint


class ReferenceViolationError(IntegrityViolationError):
    """A write referenced a row that does not exist."""
