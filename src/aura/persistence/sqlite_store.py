"""SQLite MarketStore: relational schema with enforced uniqueness.

Atomic units map to ``BEGIN IMMEDIATE`` transactions, so competing
writers (threads sharing this store, or other processes on the same
file) are serialised at the database. The partial unique index on
committed transactions backs the one-commit-per-session rule even if an
application-level check is bypassed.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from aura.models.audit import AuditEntry, EntityType
from aura.models.market import (
    Beacon,
    BeaconStatus,
    NegotiationProtocol,
    Offer,
    OfferState,
    RequestTokens,
    Session,
    SessionState,
    Transaction,
    TransactionStatus,
)
from aura.persistence.errors import (
    IntegrityViolationError,
    ReferenceViolationError,
    StoreUnavailableError,
    UniqueViolationError,
)
from aura.persistence.store import MarketStore

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]

_UNIQUE_COLUMNS = {
    "beacons.external_id": "external_id",
    "transactions.idempotency_key": "idempotency_key",
    "transactions.offer_id": "offer_id",
    "transactions.session_id": "session_committed",
    "index 'uq_transactions_committed_session'": "session_committed",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS beacons (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    endpoint_url TEXT,
    status TEXT NOT NULL,
    capabilities TEXT,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    requester_id TEXT,
    status TEXT NOT NULL,
    protocol TEXT NOT NULL,
    raw_request TEXT NOT NULL,
    derived_tokens TEXT NOT NULL,
    constraints TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    expires_at TEXT
);

CREATE TABLE IF NOT EXISTS offers (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    beacon_id TEXT NOT NULL,
    status TEXT NOT NULL,
    product TEXT NOT NULL,
    unit_price TEXT,
    quantity INTEGER,
    total_price TEXT NOT NULL,
    currency TEXT NOT NULL,
    delivery_date TEXT,
    terms TEXT NOT NULL,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL,
    expires_at TEXT,
    FOREIGN KEY(session_id) REFERENCES sessions(id),
    FOREIGN KEY(beacon_id) REFERENCES beacons(id)
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    offer_id TEXT NOT NULL UNIQUE,
    beacon_id TEXT NOT NULL,
    requester_id TEXT,
    status TEXT NOT NULL,
    final_terms TEXT NOT NULL,
    idempotency_key TEXT UNIQUE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES sessions(id),
    FOREIGN KEY(offer_id) REFERENCES offers(id),
    FOREIGN KEY(beacon_id) REFERENCES beacons(id)
);

CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    action TEXT NOT NULL,
    previous_state TEXT,
    new_state TEXT,
    changed_by TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_transactions_committed_session
    ON transactions(session_id) WHERE status = 'committed';
CREATE INDEX IF NOT EXISTS idx_beacons_status ON beacons(status);
CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status);
CREATE INDEX IF NOT EXISTS idx_sessions_expires_at ON sessions(expires_at);
CREATE INDEX IF NOT EXISTS idx_offers_session_status ON offers(session_id, status);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id);
"""


class SqliteStore(MarketStore):
    """SQLite-backed MarketStore.

    Usage:
        store = SqliteStore("data/aura.db")
        with store.transaction():
            store.insert_offer(offer)
            store.append_audit(entry)
        store.close()
    """

    def __init__(self, path: str | Path, wal: bool = True, timeout: float = 5.0) -> None:
        path = str(path)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                path, check_same_thread=False, isolation_level=None, timeout=timeout,
            )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open {path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = False
        if wal and path != ":memory:":
            self._run("PRAGMA journal_mode=WAL")
        self._run("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            try:
                self._conn.executescript(_SCHEMA)
            except sqlite3.Error as exc:
                raise StoreUnavailableError(f"Schema initialisation failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    # ------------------------------------------------------------------
    # Unit of work and low-level access
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._run("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise
            self._depth -= 1
            if outermost:
                try:
                    self._run("COMMIT")
                except StoreUnavailableError:
                    self._rollback()
                    raise

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error:
            # No transaction left to roll back (already aborted by SQLite).
            pass

    def _run(self, query: str, params: _SqlParams = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return self._conn.execute(query, params)
            except sqlite3.IntegrityError as exc:
                raise _integrity_error(exc) from exc
            except sqlite3.Error as exc:
                raise StoreUnavailableError(str(exc)) from exc

    def _fetch_one(self, query: str, params: _SqlParams) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._run(query, params).fetchone()

    def _fetch_all(self, query: str, params: _SqlParams = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._run(query, params).fetchall()

    def _write(self, query: str, params: _SqlParams) -> int:
        with self.transaction():
            return self._run(query, params).rowcount

    # ------------------------------------------------------------------
    # Beacons
    # ------------------------------------------------------------------

    def insert_beacon(self, beacon: Beacon) -> None:
        self._write(
            """
            INSERT INTO beacons (
                id, external_id, name, description, endpoint_url, status,
                capabilities, metadata, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                beacon.beacon_id,
                beacon.external_id,
                beacon.name,
                beacon.description,
                beacon.endpoint_url,
                beacon.status.value,
                _dump(beacon.capabilities),
                _dump(beacon.metadata),
                _ts(beacon.created_utc),
                _ts(beacon.updated_utc or beacon.created_utc),
            ),
        )

    def update_beacon(self, beacon: Beacon) -> None:
        changed = self._write(
            """
            UPDATE beacons SET external_id = ?, name = ?, description = ?,
                endpoint_url = ?, status = ?, capabilities = ?, metadata = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                beacon.external_id,
                beacon.name,
                beacon.description,
                beacon.endpoint_url,
                beacon.status.value,
                _dump(beacon.capabilities),
                _dump(beacon.metadata),
                _ts(beacon.updated_utc),
                beacon.beacon_id,
            ),
        )
        if changed == 0:
            raise ReferenceViolationError(f"Beacon not stored: {beacon.beacon_id}")

    def get_beacon(self, beacon_id: str) -> Optional[Beacon]:
        row = self._fetch_one("SELECT * FROM beacons WHERE id = ?", (beacon_id,))
        return _row_to_beacon(row) if row is not None else None

    def get_beacon_by_external_id(self, external_id: str) -> Optional[Beacon]:
        row = self._fetch_one("SELECT * FROM beacons WHERE external_id = ?", (external_id,))
        return _row_to_beacon(row) if row is not None else None

    def list_beacons(self, status: Optional[BeaconStatus] = None) -> list[Beacon]:
        if status is None:
            rows = self._fetch_all("SELECT * FROM beacons ORDER BY rowid")
        else:
            rows = self._fetch_all(
                "SELECT * FROM beacons WHERE status = ? ORDER BY rowid", (status.value,),
            )
        return [_row_to_beacon(r) for r in rows]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: Session) -> None:
        self._write(
            """
            INSERT INTO sessions (
                id, requester_id, status, protocol, raw_request, derived_tokens,
                constraints, created_at, updated_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.session_id,
                session.requester_id,
                session.state.value,
                session.protocol.value,
                session.raw_request,
                _dump(session.tokens.to_dict()),
                _dump(session.constraints),
                _ts(session.created_utc),
                _ts(session.updated_utc or session.created_utc),
                _ts(session.expires_utc),
            ),
        )

    def update_session(self, session: Session) -> None:
        changed = self._write(
            """
            UPDATE sessions SET requester_id = ?, status = ?, protocol = ?,
                derived_tokens = ?, constraints = ?, updated_at = ?, expires_at = ?
            WHERE id = ?
            """,
            (
                session.requester_id,
                session.state.value,
                session.protocol.value,
                _dump(session.tokens.to_dict()),
                _dump(session.constraints),
                _ts(session.updated_utc),
                _ts(session.expires_utc),
                session.session_id,
            ),
        )
        if changed == 0:
            raise ReferenceViolationError(f"Session not stored: {session.session_id}")

    def get_session(self, session_id: str) -> Optional[Session]:
        row = self._fetch_one("SELECT * FROM sessions WHERE id = ?", (session_id,))
        return _row_to_session(row) if row is not None else None

    def list_sessions(
        self, states: Optional[Iterable[SessionState]] = None,
    ) -> list[Session]:
        if states is None:
            rows = self._fetch_all("SELECT * FROM sessions ORDER BY rowid")
        else:
            values = [s.value for s in states]
            if not values:
                return []
            marks = ", ".join("?" for _ in values)
            rows = self._fetch_all(
                f"SELECT * FROM sessions WHERE status IN ({marks}) ORDER BY rowid", values,
            )
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def insert_offer(self, offer: Offer) -> None:
        self._write(
            """
            INSERT INTO offers (
                id, session_id, beacon_id, status, product, unit_price, quantity,
                total_price, currency, delivery_date, terms, metadata,
                created_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                offer.offer_id,
                offer.session_id,
                offer.beacon_id,
                offer.state.value,
                offer.product,
                str(offer.unit_price) if offer.unit_price is not None else None,
                offer.quantity,
                str(offer.total_price),
                offer.currency,
                offer.delivery_date,
                _dump(offer.terms),
                _dump(offer.metadata),
                _ts(offer.created_utc),
                _ts(offer.expires_utc),
            ),
        )

    def update_offer_state(self, offer_id: str, state: OfferState) -> None:
        changed = self._write(
            "UPDATE offers SET status = ? WHERE id = ?", (state.value, offer_id),
        )
        if changed == 0:
            raise ReferenceViolationError(f"Offer not stored: {offer_id}")

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        row = self._fetch_one("SELECT * FROM offers WHERE id = ?", (offer_id,))
        return _row_to_offer(row) if row is not None else None

    def list_offers(
        self, session_id: str, state: Optional[OfferState] = None,
    ) -> list[Offer]:
        if state is None:
            rows = self._fetch_all(
                "SELECT * FROM offers WHERE session_id = ? ORDER BY rowid", (session_id,),
            )
        else:
            rows = self._fetch_all(
                "SELECT * FROM offers WHERE session_id = ? AND status = ? ORDER BY rowid",
                (session_id, state.value),
            )
        return [_row_to_offer(r) for r in rows]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def insert_transaction(self, txn: Transaction) -> None:
        self._write(
            """
            INSERT INTO transactions (
                id, session_id, offer_id, beacon_id, requester_id, status,
                final_terms, idempotency_key, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                txn.transaction_id,
                txn.session_id,
                txn.offer_id,
                txn.beacon_id,
                txn.requester_id,
                txn.status.value,
                _dump(txn.final_terms),
                txn.idempotency_key,
                _ts(txn.created_utc),
                _ts(txn.created_utc),
            ),
        )

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = self._fetch_one("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
        return _row_to_transaction(row) if row is not None else None

    def get_transaction_by_idempotency_key(self, key: str) -> Optional[Transaction]:
        row = self._fetch_one(
            "SELECT * FROM transactions WHERE idempotency_key = ?", (key,),
        )
        return _row_to_transaction(row) if row is not None else None

    def get_transaction_for_session(self, session_id: str) -> Optional[Transaction]:
        row = self._fetch_one(
            "SELECT * FROM transactions WHERE session_id = ? ORDER BY rowid LIMIT 1",
            (session_id,),
        )
        return _row_to_transaction(row) if row is not None else None

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_audit(self, entry: AuditEntry) -> None:
        self._write(
            """
            INSERT INTO audit_log (
                id, entity_type, entity_id, action, previous_state, new_state,
                changed_by, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.entity_type.value,
                entry.entity_id,
                entry.action,
                _dump(entry.previous_state) if entry.previous_state is not None else None,
                _dump(entry.new_state) if entry.new_state is not None else None,
                entry.changed_by,
                _ts(entry.created_utc),
            ),
        )

    def list_audit(self, entity_type: EntityType, entity_id: str) -> list[AuditEntry]:
        rows = self._fetch_all(
            """
            SELECT * FROM audit_log WHERE entity_type = ? AND entity_id = ?
            ORDER BY created_at, rowid
            """,
            (entity_type.value, entity_id),
        )
        return [_row_to_audit(r) for r in rows]


# ----------------------------------------------------------------------
# Encoding helpers
# ----------------------------------------------------------------------

def _integrity_error(exc: sqlite3.IntegrityError) -> IntegrityViolationError:
    message = str(exc)
    if "UNIQUE constraint failed" in message:
        column = message.split(":", 1)[-1].strip().split(",")[0].strip()
        return UniqueViolationError(_UNIQUE_COLUMNS.get(column, "primary_key"), message)
    if "FOREIGN KEY constraint failed" in message:
        return ReferenceViolationError(message)
    return IntegrityViolationError(message)


def _dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def _load(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_beacon(row: sqlite3.Row) -> Beacon:
    return Beacon(
        beacon_id=row["id"],
        external_id=row["external_id"],
        name=row["name"],
        status=BeaconStatus(row["status"]),
        capabilities=_load(row["capabilities"]),
        metadata=_load(row["metadata"]) or {},
        description=row["description"],
        endpoint_url=row["endpoint_url"],
        created_utc=_parse_ts(row["created_at"]),
        updated_utc=_parse_ts(row["updated_at"]),
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        session_id=row["id"],
        raw_request=row["raw_request"],
        tokens=RequestTokens.from_dict(_load(row["derived_tokens"])),
        requester_id=row["requester_id"],
        state=SessionState(row["status"]),
        protocol=NegotiationProtocol(row["protocol"]),
        constraints=_load(row["constraints"]) or {},
        created_utc=_parse_ts(row["created_at"]),
        updated_utc=_parse_ts(row["updated_at"]),
        expires_utc=_parse_ts(row["expires_at"]),
    )


def _row_to_offer(row: sqlite3.Row) -> Offer:
    return Offer(
        offer_id=row["id"],
        session_id=row["session_id"],
        beacon_id=row["beacon_id"],
        product=row["product"],
        total_price=Decimal(row["total_price"]),
        unit_price=Decimal(row["unit_price"]) if row["unit_price"] is not None else None,
        quantity=row["quantity"],
        currency=row["currency"],
        state=OfferState(row["status"]),
        delivery_date=row["delivery_date"],
        terms=_load(row["terms"]) or {},
        metadata=_load(row["metadata"]) or {},
        created_utc=_parse_ts(row["created_at"]),
        expires_utc=_parse_ts(row["expires_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        transaction_id=row["id"],
        session_id=row["session_id"],
        offer_id=row["offer_id"],
        beacon_id=row["beacon_id"],
        final_terms=_load(row["final_terms"]) or {},
        status=TransactionStatus(row["status"]),
        requester_id=row["requester_id"],
        idempotency_key=row["idempotency_key"],
        created_utc=_parse_ts(row["created_at"]),
    )


def _row_to_audit(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        entry_id=row["id"],
        entity_type=EntityType(row["entity_type"]),
        entity_id=row["entity_id"],
        action=row["action"],
        changed_by=row["changed_by"],
        created_utc=_parse_ts(row["created_at"]),
        previous_state=_load(row["previous_state"]),
        new_state=_load(row["new_state"]),
    )
