"""Audit models: immutable facts about state changes."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class EntityType(str, enum.Enum):
    """Kinds of entity whose state changes are audited."""
    SESSION = "session"
    BEACON = "beacon"
    OFFER = "offer"
    TRANSACTION = "transaction"


@dataclass(frozen=True)
class AuditEntry:
    """One immutable audit fact. Entries are appended, never modified."""
    entry_id: str
    entity_type: EntityType
    entity_id: str
    action: str
    changed_by: str
    created_utc: datetime
    previous_state: Optional[dict[str, Any]] = None
    new_state: Optional[dict[str, Any]] = field(default=None)
