"""MarketStore: the repository interface behind registry, offers,
transactions, and the audit log.

Every backend must provide:
- ``transaction()``: a re-entrant atomic unit. All writes inside the
  outermost unit become visible together or not at all, and concurrent
  units are serialised.
- Uniqueness: ``beacons.external_id``, ``transactions.offer_id``,
  ``transactions.idempotency_key`` (when set), and at most one committed
  transaction per session. Violations raise UniqueViolationError.
- Copies: records returned are detached from the store; mutating them
  has no effect until written back.
"""

from __future__ import annotations

import abc
from contextlib import AbstractContextManager
from typing import Iterable, Optional

from aura.models.audit import AuditEntry, EntityType
from aura.models.market import (
    Beacon,
    BeaconStatus,
    Offer,
    OfferState,
    Session,
    SessionState,
    Transaction,
)


class MarketStore(abc.ABC):
    """Abstract persistence for marketplace records."""

    @abc.abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Open (or join) an atomic unit of work."""

    # ------------------------------------------------------------------
    # Beacons
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_beacon(self, beacon: Beacon) -> None: ...

    @abc.abstractmethod
    def update_beacon(self, beacon: Beacon) -> None: ...

    @abc.abstractmethod
    def get_beacon(self, beacon_id: str) -> Optional[Beacon]: ...

    @abc.abstractmethod
    def get_beacon_by_external_id(self, external_id: str) -> Optional[Beacon]: ...

    @abc.abstractmethod
    def list_beacons(self, status: Optional[BeaconStatus] = None) -> list[Beacon]:
        """Beacons in registration order, optionally filtered by status."""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_session(self, session: Session) -> None: ...

    @abc.abstractmethod
    def update_session(self, session: Session) -> None: ...

    @abc.abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]: ...

    @abc.abstractmethod
    def list_sessions(
        self, states: Optional[Iterable[SessionState]] = None,
    ) -> list[Session]:
        """Sessions in creation order, optionally filtered by state."""

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_offer(self, offer: Offer) -> None: ...

    @abc.abstractmethod
    def update_offer_state(self, offer_id: str, state: OfferState) -> None: ...

    @abc.abstractmethod
    def get_offer(self, offer_id: str) -> Optional[Offer]: ...

    @abc.abstractmethod
    def list_offers(
        self, session_id: str, state: Optional[OfferState] = None,
    ) -> list[Offer]:
        """Offers of a session in submission order."""

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_transaction(self, txn: Transaction) -> None: ...

    @abc.abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]: ...

    @abc.abstractmethod
    def get_transaction_by_idempotency_key(self, key: str) -> Optional[Transaction]: ...

    @abc.abstractmethod
    def get_transaction_for_session(self, session_id: str) -> Optional[Transaction]: ...

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def append_audit(self, entry: AuditEntry) -> None: ...

    @abc.abstractmethod
    def list_audit(self, entity_type: EntityType, entity_id: str) -> list[AuditEntry]:
        """Entries for one entity, oldest first."""

    def close(self) -> None:
        """Release backend resources. Default: nothing to release."""
