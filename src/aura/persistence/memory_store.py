"""In-memory MarketStore for tests and single-process deployments.

A single re-entrant lock serialises every transaction unit, which is
what makes a commit linearisable against concurrent offer submissions
and competing commits. Rollback restores a snapshot of the record maps
taken when the outermost unit opened. Stored records are never mutated
in place, so a shallow snapshot is sufficient.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterable, Iterator, Optional

from aura.models.audit import AuditEntry, EntityType
from aura.models.market import (
    Beacon,
    BeaconStatus,
    Offer,
    OfferState,
    Session,
    SessionState,
    Transaction,
    TransactionStatus,
)
from aura.persistence.errors import ReferenceViolationError, UniqueViolationError
from aura.persistence.store import MarketStore


class InMemoryStore(MarketStore):
    """Process-local MarketStore.

    Usage:
        store = InMemoryStore()
        with store.transaction():
            store.insert_session(session)
            store.append_audit(entry)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._beacons: dict[str, Beacon] = {}
        self._sessions: dict[str, Session] = {}
        self._offers: dict[str, Offer] = {}
        self._transactions: dict[str, Transaction] = {}
        self._audit: list[AuditEntry] = []

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = self._snapshot() if self._depth == 0 else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    self._restore(snapshot)
                raise
            finally:
                self._depth -= 1

    def _snapshot(self) -> dict[str, Any]:
        return {
            "beacons": dict(self._beacons),
            "sessions": dict(self._sessions),
            "offers": dict(self._offers),
            "transactions": dict(self._transactions),
            "audit": list(self._audit),
        }

    def _restore(self, snapshot: dict[str, Any]) -> None:
        self._beacons = snapshot["beacons"]
        self._sessions = snapshot["sessions"]
        self._offers = snapshot["offers"]
        self._transactions = snapshot["transactions"]
        self._audit = snapshot["audit"]

    # ------------------------------------------------------------------
    # Beacons
    # ------------------------------------------------------------------

    def insert_beacon(self, beacon: Beacon) -> None:
        with self.transaction():
            if beacon.beacon_id in self._beacons:
                raise UniqueViolationError("primary_key")
            if any(b.external_id == beacon.external_id for b in self._beacons.values()):
                raise UniqueViolationError("external_id")
            self._beacons[beacon.beacon_id] = copy.deepcopy(beacon)

    def update_beacon(self, beacon: Beacon) -> None:
        with self.transaction():
            if beacon.beacon_id not in self._beacons:
                raise ReferenceViolationError(f"Beacon not stored: {beacon.beacon_id}")
            for other in self._beacons.values():
                if other.beacon_id != beacon.beacon_id and other.external_id == beacon.external_id:
                    raise UniqueViolationError("external_id")
            self._beacons[beacon.beacon_id] = copy.deepcopy(beacon)

    def get_beacon(self, beacon_id: str) -> Optional[Beacon]:
        with self._lock:
            return copy.deepcopy(self._beacons.get(beacon_id))

    def get_beacon_by_external_id(self, external_id: str) -> Optional[Beacon]:
        with self._lock:
            for beacon in self._beacons.values():
                if beacon.external_id == external_id:
                    return copy.deepcopy(beacon)
            return None

    def list_beacons(self, status: Optional[BeaconStatus] = None) -> list[Beacon]:
        with self._lock:
            return [
                copy.deepcopy(b) for b in self._beacons.values()
                if status is None or b.status == status
            ]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: Session) -> None:
        with self.transaction():
            if session.session_id in self._sessions:
                raise UniqueViolationError("primary_key")
            self._sessions[session.session_id] = copy.deepcopy(session)

    def update_session(self, session: Session) -> None:
        with self.transaction():
            if session.session_id not in self._sessions:
                raise ReferenceViolationError(f"Session not stored: {session.session_id}")
            self._sessions[session.session_id] = copy.deepcopy(session)

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return copy.deepcopy(self._sessions.get(session_id))

    def list_sessions(
        self, states: Optional[Iterable[SessionState]] = None,
    ) -> list[Session]:
        wanted = set(states) if states is not None else None
        with self._lock:
            return [
                copy.deepcopy(s) for s in self._sessions.values()
                if wanted is None or s.state in wanted
            ]

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def insert_offer(self, offer: Offer) -> None:
        with self.transaction():
            if offer.offer_id in self._offers:
                raise UniqueViolationError("primary_key")
            if offer.session_id not in self._sessions:
                raise ReferenceViolationError(f"Unknown session: {offer.session_id}")
            if offer.beacon_id not in self._beacons:
                raise ReferenceViolationError(f"Unknown beacon: {offer.beacon_id}")
            self._offers[offer.offer_id] = copy.deepcopy(offer)

    def update_offer_state(self, offer_id: str, state: OfferState) -> None:
        with self.transaction():
            stored = self._offers.get(offer_id)
            if stored is None:
                raise ReferenceViolationError(f"Offer not stored: {offer_id}")
            self._offers[offer_id] = replace(stored, state=state)

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        with self._lock:
            return copy.deepcopy(self._offers.get(offer_id))

    def list_offers(
        self, session_id: str, state: Optional[OfferState] = None,
    ) -> list[Offer]:
        with self._lock:
            return [
                copy.deepcopy(o) for o in self._offers.values()
                if o.session_id == session_id and (state is None or o.state == state)
            ]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def insert_transaction(self, txn: Transaction) -> None:
        with self.transaction():
            if txn.transaction_id in self._transactions:
                raise UniqueViolationError("primary_key")
            for existing in self._transactions.values():
                if txn.idempotency_key and existing.idempotency_key == txn.idempotency_key:
                    raise UniqueViolationError("idempotency_key")
                if existing.offer_id == txn.offer_id:
                    raise UniqueViolationError("offer_id")
                if (
                    existing.session_id == txn.session_id
                    and existing.status == TransactionStatus.COMMITTED
                    and txn.status == TransactionStatus.COMMITTED
                ):
                    raise UniqueViolationError("session_committed")
            if txn.session_id not in self._sessions:
                raise ReferenceViolationError(f"Unknown session: {txn.session_id}")
            if txn.offer_id not in self._offers:
                raise ReferenceViolationError(f"Unknown offer: {txn.offer_id}")
            if txn.beacon_id not in self._beacons:
                raise ReferenceViolationError(f"Unknown beacon: {txn.beacon_id}")
            self._transactions[txn.transaction_id] = copy.deepcopy(txn)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return copy.deepcopy(self._transactions.get(transaction_id))

    def get_transaction_by_idempotency_key(self, key: str) -> Optional[Transaction]:
        with self._lock:
            for txn in self._transactions.values():
                if txn.idempotency_key == key:
                    return copy.deepcopy(txn)
            return None

    def get_transaction_for_session(self, session_id: str) -> Optional[Transaction]:
        with self._lock:
            for txn in self._transactions.values():
                if txn.session_id == session_id:
                    return copy.deepcopy(txn)
            return None

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_audit(self, entry: AuditEntry) -> None:
        with self.transaction():
            self._audit.append(entry)

    def list_audit(self, entity_type: EntityType, entity_id: str) -> list[AuditEntry]:
        with self._lock:
            matching = [
                e for e in self._audit
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        return sorted(matching, key=lambda e: e.created_utc)
