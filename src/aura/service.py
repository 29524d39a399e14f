"""AURA service: unified facade for the marketplace core.

This is the primary interface for programmatic access to the market.
It wires the subsystems together:
- Beacon registry (registration, status, candidate discovery)
- Request tokenization and beacon matching
- Session lifecycle (create, cancel, expire)
- Offer submission and listing
- Commit coordination (one transaction per session)
- Audit trail reads

Every operation returns a ServiceResult. Expected failures carry their
ErrorKind and a message the caller can act on. A backing store that
cannot be reached yields ``upstream_unavailable`` and nothing is
assumed to have been written. Anything unexpected is logged in full and
reported as a generic ``internal`` failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from aura.errors import (
    ErrorKind,
    MarketError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from aura.logging_utils import get_logger
from aura.market.commit_coordinator import CommitCoordinator
from aura.market.offer_store import OfferStore, OfferView
from aura.market.registry import BeaconRegistry
from aura.market.session_state_machine import SessionStateMachine
from aura.market.sessions import SessionLifecycle
from aura.matching.matcher import MarketMatcher
from aura.matching.scorer import MatchScorer
from aura.matching.tokenizer import RequestTokenizer
from aura.models.audit import AuditEntry, EntityType
from aura.models.market import (
    Beacon,
    BeaconMatch,
    BeaconStatus,
    NegotiationProtocol,
    Offer,
    RequestTokens,
    Session,
    Transaction,
)
from aura.persistence.audit_log import AuditLog
from aura.persistence.errors import StoreUnavailableError
from aura.persistence.memory_store import InMemoryStore
from aura.persistence.store import MarketStore
from aura.policy.resolver import PolicyResolver

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal error; the failure has been logged"
UNAVAILABLE_MESSAGE = "Backing store unavailable; the operation was not applied"


@dataclass
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None
    retryable: bool = False


class AuraService:
    """Unified marketplace facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = AuraService(resolver, InMemoryStore())
        beacon = service.register_beacon("acme", "Acme Widgets",
                                         capabilities={"products": ["widgets"]})
        session = service.create_session("500 red widgets")
        matches = service.match_session(session.data["session_id"])
        offer = service.submit_offer(session_id, beacon_id, product="widgets",
                                     total_price="90")
        result = service.commit(session_id, offer_id, idempotency_key="k-1")
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[MarketStore] = None,
    ) -> None:
        self._resolver = resolver
        self._store = store if store is not None else InMemoryStore()
        self._audit = AuditLog(self._store)
        self._registry = BeaconRegistry(self._store, self._audit)
        self._tokenizer = RequestTokenizer(resolver)
        self._matcher = MarketMatcher(self._registry, MatchScorer(resolver), resolver)
        self._sessions = SessionLifecycle(self._store, self._audit, resolver)
        self._offers = OfferStore(
            self._store, self._sessions, self._registry, self._audit, resolver,
        )
        self._coordinator = CommitCoordinator(self._store, self._sessions, self._audit)

    @property
    def store(self) -> MarketStore:
        return self._store

    def close(self) -> None:
        """Release the backing store."""
        self._store.close()

    # ------------------------------------------------------------------
    # Beacons
    # ------------------------------------------------------------------

    def register_beacon(
        self,
        external_id: str,
        name: str,
        capabilities: Any = None,
        metadata: Optional[dict[str, Any]] = None,
        description: str = "",
        endpoint_url: Optional[str] = None,
    ) -> ServiceResult:
        """Register a beacon, or update it if the external ID is known."""
        def op() -> dict[str, Any]:
            beacon, created = self._registry.register(
                external_id, name,
                capabilities=capabilities, metadata=metadata,
                description=description, endpoint_url=endpoint_url,
            )
            data = _beacon_data(beacon)
            data["created"] = created
            return data
        return self._run("register_beacon", op)

    def set_beacon_status(
        self,
        beacon_ref: str,
        status: BeaconStatus | str,
        actor: Optional[str] = None,
    ) -> ServiceResult:
        def op() -> dict[str, Any]:
            target = _parse_enum(BeaconStatus, status, "beacon status")
            return _beacon_data(self._registry.set_status(beacon_ref, target, actor=actor))
        return self._run("set_beacon_status", op)

    def get_beacon(self, beacon_ref: str) -> ServiceResult:
        """Look up a beacon by internal or external ID."""
        def op() -> dict[str, Any]:
            beacon = self._registry.get(beacon_ref)
            if beacon is None:
                raise _not_found("Beacon", beacon_ref)
            return _beacon_data(beacon)
        return self._run("get_beacon", op)

    # ------------------------------------------------------------------
    # Sessions and matching
    # ------------------------------------------------------------------

    def create_session(
        self,
        raw_request: str,
        requester_id: Optional[str] = None,
        constraints: Optional[dict[str, Any]] = None,
        tokens: RequestTokens | dict[str, Any] | None = None,
        protocol: NegotiationProtocol | str = NegotiationProtocol.DIRECT,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Open a session for a scout's request.

        Tokens are derived from the request text unless the caller
        supplies an already-extracted set.
        """
        def op() -> dict[str, Any]:
            chosen = _parse_enum(NegotiationProtocol, protocol, "protocol")
            if tokens is None:
                if constraints is not None and not isinstance(constraints, dict):
                    raise ValidationError("constraints must be an object")
                text = raw_request if isinstance(raw_request, str) else ""
                request_tokens = self._tokenizer.tokenize(text, constraints)
            elif isinstance(tokens, RequestTokens):
                request_tokens = tokens
            elif isinstance(tokens, dict):
                request_tokens = _parse_tokens(tokens)
            else:
                raise ValidationError("tokens must be an object")
            session = self._sessions.create(
                raw_request, request_tokens,
                requester_id=requester_id, constraints=constraints,
                protocol=chosen, now=now,
            )
            return _session_data(session)
        return self._run("create_session", op)

    def get_session(self, session_id: str, now: Optional[datetime] = None) -> ServiceResult:
        def op() -> dict[str, Any]:
            return _session_data(self._sessions.get(session_id, now=now))
        return self._run("get_session", op)

    def match_session(
        self,
        session_id: str,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Rank active beacons against a session's request tokens."""
        def op() -> dict[str, Any]:
            if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int)):
                raise ValidationError("limit must be an integer")
            if limit is not None and limit < 1:
                raise ValidationError("limit must be a positive integer")
            moment = now or _utcnow()
            session = self._sessions.get(session_id, now=moment)
            self._sessions.ensure_live(session, moment)
            if not SessionStateMachine.is_open(session.state):
                raise StateConflictError(
                    f"Session {session_id} is {session.state.value}; matching is closed"
                )
            matches = self._matcher.match(session.tokens, limit=limit)
            return {
                "session_id": session_id,
                "state": session.state.value,
                "matches": [_match_data(m) for m in matches],
            }
        return self._run("match_session", op)

    def cancel_session(
        self,
        session_id: str,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def op() -> dict[str, Any]:
            return _session_data(self._sessions.cancel(session_id, actor=actor, now=now))
        return self._run("cancel_session", op)

    def expire_sessions(self, now: Optional[datetime] = None) -> ServiceResult:
        """Move every open session past its expiry time to EXPIRED."""
        def op() -> dict[str, Any]:
            expired = self._sessions.expire_due(now=now)
            return {
                "expired": [s.session_id for s in expired],
                "count": len(expired),
            }
        return self._run("expire_sessions", op)

    def list_open_sessions(
        self,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Sessions beacons can still bid on, most recent first."""
        def op() -> dict[str, Any]:
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
                raise ValidationError("limit must be a positive integer")
            sessions = self._sessions.list_open(limit=limit, now=now)
            return {"sessions": [_session_data(s) for s in sessions]}
        return self._run("list_open_sessions", op)

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def submit_offer(
        self,
        session_id: str,
        beacon_id: str,
        product: str,
        unit_price: Any = None,
        quantity: Any = None,
        total_price: Any = None,
        currency: Optional[str] = None,
        delivery_date: Optional[str] = None,
        terms: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def op() -> dict[str, Any]:
            offer = self._offers.submit(
                session_id, beacon_id, product,
                unit_price=unit_price, quantity=quantity, total_price=total_price,
                currency=currency, delivery_date=delivery_date,
                terms=terms, metadata=metadata, now=now,
            )
            return _offer_data(offer)
        return self._run("submit_offer", op)

    def list_offers(self, session_id: str) -> ServiceResult:
        """Pending offers for a session, most recent first."""
        def op() -> dict[str, Any]:
            views = self._offers.list_pending(session_id)
            return {
                "session_id": session_id,
                "offers": [_offer_view_data(v) for v in views],
            }
        return self._run("list_offers", op)

    # ------------------------------------------------------------------
    # Commit and transactions
    # ------------------------------------------------------------------

    def commit(
        self,
        session_id: str,
        offer_id: str,
        idempotency_key: Optional[str] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Commit a session to one offer, creating its single transaction."""
        def op() -> dict[str, Any]:
            outcome = self._coordinator.commit(
                session_id, offer_id,
                idempotency_key=idempotency_key, actor=actor, now=now,
            )
            data = _transaction_data(outcome.transaction)
            data["replayed"] = outcome.replayed
            return data
        return self._run("commit", op)

    def get_transaction(self, transaction_id: str) -> ServiceResult:
        def op() -> dict[str, Any]:
            txn = self._store.get_transaction(transaction_id)
            if txn is None:
                raise _not_found("Transaction", transaction_id)
            return _transaction_data(txn)
        return self._run("get_transaction", op)

    def get_session_transaction(self, session_id: str) -> ServiceResult:
        """The committed transaction of a session, if it has one."""
        def op() -> dict[str, Any]:
            self._sessions.load(session_id)
            txn = self._store.get_transaction_for_session(session_id)
            if txn is None:
                raise _not_found("Transaction for session", session_id)
            return _transaction_data(txn)
        return self._run("get_session_transaction", op)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit_trail(self, entity_type: EntityType | str, entity_id: str) -> ServiceResult:
        """Audit entries for one entity, oldest first."""
        def op() -> dict[str, Any]:
            kind = _parse_enum(EntityType, entity_type, "entity type")
            entries = self._audit.entries_for(kind, entity_id)
            return {
                "entity_type": kind.value,
                "entity_id": entity_id,
                "entries": [_audit_data(e) for e in entries],
            }
        return self._run("audit_trail", op)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, action: str, op: Callable[[], dict[str, Any]]) -> ServiceResult:
        """Run one operation and convert its failure into a result."""
        try:
            data = op()
        except MarketError as exc:
            return ServiceResult(
                success=False,
                errors=[exc.message],
                error_kind=exc.kind,
                retryable=exc.retryable,
            )
        except StoreUnavailableError as exc:
            logger.error("Store unavailable during %s: %s", action, exc)
            return ServiceResult(
                success=False,
                errors=[UNAVAILABLE_MESSAGE],
                error_kind=ErrorKind.UPSTREAM_UNAVAILABLE,
                retryable=True,
            )
        except Exception:
            logger.exception("Unexpected failure during %s", action)
            return ServiceResult(
                success=False,
                errors=[INTERNAL_ERROR_MESSAGE],
                error_kind=ErrorKind.INTERNAL,
            )
        return ServiceResult(success=True, data=data)


# ----------------------------------------------------------------------
# Serialization
# ----------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _not_found(what: str, ref: str) -> MarketError:
    return NotFoundError(f"{what} not found: {ref}")


def _parse_enum(enum_cls: Any, value: Any, label: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Unknown {label}: {value!r} (expected one of: {allowed})") from None


def _parse_tokens(data: dict[str, Any]) -> RequestTokens:
    """Caller-extracted tokens: a list of keyword strings and an optional
    category string."""
    keywords = data.get("keywords")
    if keywords is None:
        keywords = []
    if not isinstance(keywords, (list, tuple)) or not all(
        isinstance(kw, str) for kw in keywords
    ):
        raise ValidationError("tokens.keywords must be a list of strings")
    category = data.get("category")
    if category is not None and not isinstance(category, str):
        raise ValidationError("tokens.category must be a string")
    return RequestTokens.from_dict({"keywords": keywords, "category": category})


def _beacon_data(beacon: Beacon) -> dict[str, Any]:
    return {
        "beacon_id": beacon.beacon_id,
        "external_id": beacon.external_id,
        "name": beacon.name,
        "status": beacon.status.value,
        "capabilities": beacon.capabilities,
        "metadata": dict(beacon.metadata),
        "description": beacon.description,
        "endpoint_url": beacon.endpoint_url,
        "created_utc": _iso(beacon.created_utc),
        "updated_utc": _iso(beacon.updated_utc),
    }


def _session_data(session: Session) -> dict[str, Any]:
    return {
        "session_id": session.session_id,
        "raw_request": session.raw_request,
        "requester_id": session.requester_id,
        "state": session.state.value,
        "protocol": session.protocol.value,
        "tokens": session.tokens.to_dict(),
        "constraints": dict(session.constraints),
        "created_utc": _iso(session.created_utc),
        "updated_utc": _iso(session.updated_utc),
        "expires_utc": _iso(session.expires_utc),
    }


def _match_data(match: BeaconMatch) -> dict[str, Any]:
    return {
        "beacon_id": match.beacon_id,
        "name": match.name,
        "score": match.score,
        "capabilities": match.capabilities,
    }


def _offer_data(offer: Offer) -> dict[str, Any]:
    return {
        "offer_id": offer.offer_id,
        "session_id": offer.session_id,
        "beacon_id": offer.beacon_id,
        "state": offer.state.value,
        "product": offer.product,
        "unit_price": _money(offer.unit_price),
        "quantity": offer.quantity,
        "total_price": _money(offer.total_price),
        "currency": offer.currency,
        "delivery_date": offer.delivery_date,
        "terms": dict(offer.terms),
        "metadata": dict(offer.metadata),
        "created_utc": _iso(offer.created_utc),
        "expires_utc": _iso(offer.expires_utc),
    }


def _offer_view_data(view: OfferView) -> dict[str, Any]:
    data = _offer_data(view.offer)
    data["beacon_name"] = view.beacon_name
    data["beacon_external_id"] = view.beacon_external_id
    return data


def _transaction_data(txn: Transaction) -> dict[str, Any]:
    return {
        "transaction_id": txn.transaction_id,
        "session_id": txn.session_id,
        "offer_id": txn.offer_id,
        "beacon_id": txn.beacon_id,
        "status": txn.status.value,
        "final_terms": dict(txn.final_terms),
        "requester_id": txn.requester_id,
        "idempotency_key": txn.idempotency_key,
        "created_utc": _iso(txn.created_utc),
    }


def _audit_data(entry: AuditEntry) -> dict[str, Any]:
    return {
        "entry_id": entry.entry_id,
        "entity_type": entry.entity_type.value,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "changed_by": entry.changed_by,
        "created_utc": _iso(entry.created_utc),
        "previous_state": entry.previous_state,
        "new_state": entry.new_state,
    }
