"""Beacon registry: registration and the read-side candidate query.

Registration upserts by external ID. A re-registering beacon keeps its
internal ID and status; its name, description, endpoint, capabilities,
and metadata are replaced. Every registration and status change is
audited in the same unit as the write.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from aura.errors import NotFoundError, ValidationError
from aura.ids import new_id
from aura.logging_utils import get_logger
from aura.models.audit import EntityType
from aura.models.market import Beacon, BeaconStatus
from aura.persistence.audit_log import AuditLog
from aura.persistence.errors import StoreError
from aura.persistence.store import MarketStore

logger = get_logger(__name__)


class BeaconRegistry:
    """Query and registration surface over persisted beacons.

    Usage:
        registry = BeaconRegistry(store, audit_log)
        beacon, created = registry.register("acme-widgets", "Acme Widgets",
                                            capabilities={"products": ["widgets"]})
        candidates = registry.find_active_candidates()
    """

    def __init__(self, store: MarketStore, audit_log: AuditLog) -> None:
        self._store = store
        self._audit = audit_log

    def register(
        self,
        external_id: str,
        name: str,
        capabilities: Any = None,
        metadata: Optional[dict[str, Any]] = None,
        description: str = "",
        endpoint_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Beacon, bool]:
        """Create or update a beacon. Returns (beacon, created)."""
        if not isinstance(external_id, str) or not external_id.strip():
            raise ValidationError("external_id is required")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")

        now = now or datetime.now(timezone.utc)
        with self._store.transaction():
            existing = self._store.get_beacon_by_external_id(external_id)
            if existing is None:
                beacon = Beacon(
                    beacon_id=new_id("bcn"),
                    external_id=external_id,
                    name=name,
                    status=BeaconStatus.ACTIVE,
                    capabilities=capabilities,
                    metadata=dict(metadata or {}),
                    description=description or "",
                    endpoint_url=endpoint_url,
                    created_utc=now,
                    updated_utc=now,
                )
                self._store.insert_beacon(beacon)
                self._audit.append(
                    EntityType.BEACON, beacon.beacon_id, "registered",
                    None, {"name": beacon.name, "status": beacon.status.value},
                    actor=external_id, now=now,
                )
                return beacon, True

            before = {"name": existing.name, "status": existing.status.value}
            existing.name = name
            existing.capabilities = capabilities
            existing.metadata = dict(metadata or {})
            existing.description = description or ""
            existing.endpoint_url = endpoint_url
            existing.updated_utc = now
            self._store.update_beacon(existing)
            self._audit.append(
                EntityType.BEACON, existing.beacon_id, "re-registered",
                before, {"name": existing.name, "status": existing.status.value},
                actor=external_id, now=now,
            )
            return existing, False

    def set_status(
        self,
        beacon_ref: str,
        status: BeaconStatus,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Beacon:
        """Activate or deactivate a beacon."""
        now = now or datetime.now(timezone.utc)
        with self._store.transaction():
            beacon = self.get(beacon_ref)
            if beacon is None:
                raise NotFoundError(f"Beacon not found: {beacon_ref}")
            if beacon.status == status:
                return beacon
            before = {"status": beacon.status.value}
            beacon.status = status
            beacon.updated_utc = now
            self._store.update_beacon(beacon)
            self._audit.append(
                EntityType.BEACON, beacon.beacon_id, f"status:{status.value}",
                before, {"status": status.value}, actor=actor, now=now,
            )
            return beacon

    def get(self, beacon_ref: str) -> Optional[Beacon]:
        """Look up a beacon by internal ID or external ID."""
        beacon = self._store.get_beacon(beacon_ref)
        if beacon is None:
            beacon = self._store.get_beacon_by_external_id(beacon_ref)
        return beacon

    def find_active_candidates(self) -> list[Beacon]:
        """All ACTIVE beacons in registration order.

        A store failure yields an empty list: for matching, "no
        candidates" and "store down" are handled the same way.
        """
        try:
            return self._store.list_beacons(BeaconStatus.ACTIVE)
        except StoreError as exc:
            logger.warning("Beacon candidate query failed: %s", exc)
            return []
