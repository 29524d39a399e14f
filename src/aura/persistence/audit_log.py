"""Append-only audit log: the forensic record of every state change.

Each state-changing write appends one AuditEntry in the same store
transaction unit as the change itself. If the audit append fails, the
unit rolls back and the change never becomes visible, so no state
transition exists without its audit entry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from aura.ids import new_id
from aura.models.audit import AuditEntry, EntityType
from aura.persistence.store import MarketStore

SYSTEM_ACTOR = "system"


class AuditLog:
    """Writes and reads audit entries through a MarketStore.

    Usage:
        audit = AuditLog(store)
        with store.transaction():
            store.update_session(session)
            audit.append(EntityType.SESSION, session.session_id,
                         "transition:cancelled", {"state": "market_forming"},
                         {"state": "cancelled"}, actor="scout-1")
    """

    def __init__(self, store: MarketStore) -> None:
        self._store = store

    def append(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: str,
        before: Optional[dict[str, Any]],
        after: Optional[dict[str, Any]],
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AuditEntry:
        """Append one entry. Joins the caller's transaction unit if open."""
        entry = AuditEntry(
            entry_id=new_id("aud"),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changed_by=actor or SYSTEM_ACTOR,
            created_utc=now or datetime.now(timezone.utc),
            previous_state=dict(before) if before is not None else None,
            new_state=dict(after) if after is not None else None,
        )
        with self._store.transaction():
            self._store.append_audit(entry)
        return entry

    def entries_for(self, entity_type: EntityType, entity_id: str) -> list[AuditEntry]:
        """All entries for one entity, oldest first."""
        return self._store.list_audit(entity_type, entity_id)
