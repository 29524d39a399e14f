"""Commit coordinator: turns one chosen offer into the session's single
transaction.

For any session, at most one offer is ever ACCEPTED, and a transaction
exists for the session if and only if the session is COMMITTED. The
whole commit (transaction row, offer accept, sibling rejects, session
transition, audit entries) runs in one store transaction unit, so a
concurrent commit either sees the finished result or nothing of it.

Outcomes for a second commit on the same session:
- same idempotency key: the existing transaction is replayed unchanged;
- different or no key: StateConflictError ("already committed"), the
  caller should query the session's current state;
- a concurrent insert that collides on the idempotency key:
  DuplicateError with retryable=True.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from aura.errors import (
    DuplicateError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from aura.ids import new_id
from aura.logging_utils import get_logger
from aura.market.session_state_machine import SessionStateMachine
from aura.market.sessions import SessionLifecycle
from aura.models.audit import EntityType
from aura.models.market import (
    NegotiationProtocol,
    Offer,
    OfferState,
    Session,
    SessionState,
    Transaction,
    TransactionStatus,
)
from aura.persistence.audit_log import AuditLog
from aura.persistence.errors import UniqueViolationError
from aura.persistence.store import MarketStore

logger = get_logger(__name__)

_ALREADY_COMMITTED = (SessionState.COMMITTED, SessionState.COMPLETED)


@dataclass(frozen=True)
class CommitOutcome:
    """Result of a commit call. ``replayed`` is True when an earlier
    transaction was returned for a repeated idempotency key."""
    transaction: Transaction
    replayed: bool = False


_ProtocolHandler = Callable[
    [Session, Offer, Optional[str], Optional[str], datetime], Transaction,
]


class CommitCoordinator:
    """Usage:
        coordinator = CommitCoordinator(store, sessions, audit_log)
        outcome = coordinator.commit(session_id, offer_id,
                                     idempotency_key="checkout-42")
        outcome.transaction.final_terms["total_price"]
    """

    def __init__(
        self,
        store: MarketStore,
        sessions: SessionLifecycle,
        audit_log: AuditLog,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._audit = audit_log
        self._handlers: dict[NegotiationProtocol, _ProtocolHandler] = {
            NegotiationProtocol.DIRECT: self._commit_direct,
        }

    def commit(
        self,
        session_id: str,
        offer_id: str,
        idempotency_key: Optional[str] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CommitOutcome:
        """Commit ``offer_id`` as the outcome of ``session_id``."""
        if not session_id:
            raise ValidationError("session_id is required")
        if not offer_id:
            raise ValidationError("offer_id is required")
        if idempotency_key is not None:
            if not isinstance(idempotency_key, str) or not idempotency_key.strip():
                raise ValidationError("idempotency_key must be a non-empty string")

        now = now or datetime.now(timezone.utc)
        try:
            with self._store.transaction():
                session = self._sessions.load(session_id)
                offer = self._store.get_offer(offer_id)
                if offer is None or offer.session_id != session_id:
                    raise NotFoundError(
                        f"Offer {offer_id} not found for session {session_id}"
                    )

                if idempotency_key:
                    existing = self._store.get_transaction_by_idempotency_key(
                        idempotency_key,
                    )
                    if existing is not None:
                        if existing.session_id != session_id:
                            raise DuplicateError(
                                f"Idempotency key {idempotency_key!r} was already "
                                f"used for a different session"
                            )
                        logger.info(
                            "Replayed transaction %s for session %s (key %s)",
                            existing.transaction_id, session_id, idempotency_key,
                        )
                        return CommitOutcome(transaction=existing, replayed=True)

                handler = self._handlers.get(session.protocol)
                if handler is None:
                    raise ValidationError(
                        f"Commit is not supported for protocol "
                        f"'{session.protocol.value}'"
                    )
                txn = handler(session, offer, idempotency_key, actor, now)
        except UniqueViolationError as exc:
            if exc.constraint == "idempotency_key":
                logger.info(
                    "Concurrent commit with key %s on session %s",
                    idempotency_key, session_id,
                )
                raise DuplicateError(
                    f"A commit with idempotency key {idempotency_key!r} is "
                    f"already in progress or complete",
                    retryable=True,
                ) from exc
            logger.info(
                "Commit conflict on session %s (%s)", session_id, exc.constraint,
            )
            raise StateConflictError(
                f"Session {session_id} is already committed; "
                f"query its current state"
            ) from exc

        logger.info(
            "Committed session %s to offer %s (transaction %s)",
            session_id, offer_id, txn.transaction_id,
        )
        return CommitOutcome(transaction=txn)

    # ------------------------------------------------------------------
    # Protocol variants
    # ------------------------------------------------------------------

    def _commit_direct(
        self,
        session: Session,
        offer: Offer,
        idempotency_key: Optional[str],
        actor: Optional[str],
        now: datetime,
    ) -> Transaction:
        """Single-offer accept: the scout takes one offer outright."""
        session_id = session.session_id
        if session.state in _ALREADY_COMMITTED:
            logger.info("Commit conflict on session %s (already committed)", session_id)
            raise StateConflictError(
                f"Session {session_id} is already committed; "
                f"query its current state"
            )
        self._sessions.ensure_live(session, now)
        if not SessionStateMachine.is_open(session.state):
            raise StateConflictError(
                f"Session {session_id} is {session.state.value} and cannot be committed"
            )
        if offer.state != OfferState.PENDING:
            raise StateConflictError(
                f"Offer {offer.offer_id} is {offer.state.value}, not pending"
            )
        if offer.is_expired(now):
            raise StateConflictError(
                f"Offer {offer.offer_id} has expired; request fresh offers"
            )

        txn = Transaction(
            transaction_id=new_id("txn"),
            session_id=session_id,
            offer_id=offer.offer_id,
            beacon_id=offer.beacon_id,
            final_terms=offer.terms_snapshot(),
            status=TransactionStatus.COMMITTED,
            requester_id=session.requester_id,
            idempotency_key=idempotency_key,
            created_utc=now,
        )
        self._store.insert_transaction(txn)

        self._store.update_offer_state(offer.offer_id, OfferState.ACCEPTED)
        self._audit.append(
            EntityType.OFFER, offer.offer_id, "accepted",
            {"state": OfferState.PENDING.value}, {"state": OfferState.ACCEPTED.value},
            actor=actor, now=now,
        )
        rejected: list[str] = []
        for sibling in self._store.list_offers(session_id, OfferState.PENDING):
            if sibling.offer_id == offer.offer_id:
                continue
            self._store.update_offer_state(sibling.offer_id, OfferState.REJECTED)
            self._audit.append(
                EntityType.OFFER, sibling.offer_id, "rejected",
                {"state": OfferState.PENDING.value}, {"state": OfferState.REJECTED.value},
                actor=actor, now=now,
            )
            rejected.append(sibling.offer_id)

        self._sessions.advance_to(session, SessionState.COMMITTED, actor=actor, now=now)
        self._audit.append(
            EntityType.TRANSACTION, txn.transaction_id, "committed",
            None,
            {
                "status": txn.status.value,
                "session_id": session_id,
                "offer_id": offer.offer_id,
                "beacon_id": offer.beacon_id,
                "rejected_offer_ids": rejected,
                "total_price": txn.final_terms["total_price"],
            },
            actor=actor, now=now,
        )
        return txn
