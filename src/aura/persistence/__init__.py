"""Persistence layer: repository interface, backends, and audit log."""

from aura.persistence.audit_log import AuditLog
from aura.persistence.errors import (
    IntegrityViolationError,
    ReferenceViolationError,
    StoreError,
    StoreUnavailableError,
    UniqueViolationError,
)
from aura.persistence.memory_store import InMemoryStore
from aura.persistence.sqlite_store import SqliteStore
from aura.persistence.store import MarketStore

__all__ = [
    "AuditLog",
    "InMemoryStore",
    "IntegrityViolationError",
    "MarketStore",
    "ReferenceViolationError",
    "SqliteStore",
    "StoreError",
    "StoreUnavailableError",
    "UniqueViolationError",
]
