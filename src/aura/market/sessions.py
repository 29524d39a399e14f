"""Session lifecycle: creation, lookup, transitions, cancellation, expiry.

Every transition is validated by SessionStateMachine and written
together with its audit entry in one store transaction unit.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from aura.errors import NotFoundError, StateConflictError, ValidationError
from aura.ids import new_id
from aura.logging_utils import get_logger
from aura.market.session_state_machine import SessionStateMachine
from aura.models.audit import EntityType
from aura.models.market import (
    NegotiationProtocol,
    OfferState,
    RequestTokens,
    Session,
    SessionState,
)
from aura.persistence.audit_log import AuditLog
from aura.persistence.store import MarketStore
from aura.policy.resolver import PolicyResolver

logger = get_logger(__name__)

_UNCANCELLABLE = (SessionState.COMMITTED, SessionState.COMPLETED)


class SessionLifecycle:
    """Persistence-backed session operations.

    Usage:
        sessions = SessionLifecycle(store, audit_log, resolver)
        session = sessions.create("500 red widgets", tokens)
        session = sessions.get(session.session_id)
        session = sessions.cancel(session.session_id, actor="scout-1")
    """

    def __init__(
        self,
        store: MarketStore,
        audit_log: AuditLog,
        resolver: PolicyResolver,
    ) -> None:
        self._store = store
        self._audit = audit_log
        self._ttl = resolver.session_ttl()

    def create(
        self,
        raw_request: str,
        tokens: RequestTokens,
        requester_id: Optional[str] = None,
        constraints: Optional[dict[str, Any]] = None,
        protocol: NegotiationProtocol = NegotiationProtocol.DIRECT,
        now: Optional[datetime] = None,
    ) -> Session:
        """Store a new session.

        The session starts CREATED and moves straight to MARKET_FORMING
        when its token set is non-empty.
        """
        if not isinstance(raw_request, str) or not raw_request.strip():
            raise ValidationError("A request describing what is wanted is required")
        if constraints is not None and not isinstance(constraints, dict):
            raise ValidationError("constraints must be an object")

        now = now or datetime.now(timezone.utc)
        session = Session(
            session_id=new_id("ses"),
            raw_request=raw_request,
            tokens=tokens,
            requester_id=requester_id,
            state=SessionState.CREATED,
            protocol=protocol,
            constraints=dict(constraints or {}),
            created_utc=now,
            updated_utc=now,
            expires_utc=now + self._ttl,
        )
        with self._store.transaction():
            self._store.insert_session(session)
            self._audit.append(
                EntityType.SESSION, session.session_id, "created",
                None,
                {
                    "state": session.state.value,
                    "raw_request": raw_request,
                    "protocol": protocol.value,
                },
                actor=requester_id or "anonymous", now=now,
            )
            if not tokens.is_empty():
                self.transition(
                    session, SessionState.MARKET_FORMING,
                    actor=requester_id, now=now,
                )
        return session

    def load(self, session_id: str) -> Session:
        """Fetch a session as stored. Raises NotFoundError."""
        session = self._store.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return session

    def get(self, session_id: str, now: Optional[datetime] = None) -> Session:
        """Fetch a session, promoting MARKET_FORMING to OFFERS_AVAILABLE
        when pending offers already exist."""
        session = self.load(session_id)
        if session.state != SessionState.MARKET_FORMING:
            return session

        with self._store.transaction():
            session = self.load(session_id)
            if (
                session.state == SessionState.MARKET_FORMING
                and self._store.list_offers(session_id, OfferState.PENDING)
            ):
                self.transition(session, SessionState.OFFERS_AVAILABLE, now=now)
        return session

    def transition(
        self,
        session: Session,
        target: SessionState,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Session:
        """Apply one validated transition, persist it, and audit it.

        Mutates and returns ``session``. Raises StateConflictError on an
        illegal transition.
        """
        previous, previous_utc = session.state, session.updated_utc
        errors = SessionStateMachine.apply_transition(session, target)
        if errors:
            raise StateConflictError("; ".join(errors))

        now = now or datetime.now(timezone.utc)
        session.updated_utc = now
        try:
            with self._store.transaction():
                self._store.update_session(session)
                self._audit.append(
                    EntityType.SESSION, session.session_id,
                    f"transition:{target.value}",
                    {"state": previous.value}, {"state": target.value},
                    actor=actor, now=now,
                )
        except BaseException:
            session.state, session.updated_utc = previous, previous_utc
            raise
        return session

    def advance_to(
        self,
        session: Session,
        target: SessionState,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Session:
        """Walk forward through every intermediate state up to target."""
        for step in SessionStateMachine.path_to(session.state, target):
            self.transition(session, step, actor=actor, now=now)
        return session

    def ensure_live(self, session: Session, now: datetime) -> None:
        """Raise StateConflictError if the session has expired."""
        if session.is_expired(now):
            raise StateConflictError(
                f"Session {session.session_id} has expired"
            )

    def cancel(
        self,
        session_id: str,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Session:
        """Cancel a session that has not been committed."""
        with self._store.transaction():
            session = self.load(session_id)
            if session.state in _UNCANCELLABLE:
                raise StateConflictError(
                    f"Session {session_id} is already {session.state.value} "
                    f"and cannot be cancelled"
                )
            self.transition(session, SessionState.CANCELLED, actor=actor, now=now)
        logger.info("Session %s cancelled by %s", session_id, actor or "system")
        return session

    def expire_due(self, now: Optional[datetime] = None) -> list[Session]:
        """Move every open session past its expiry time to EXPIRED."""
        now = now or datetime.now(timezone.utc)
        expired: list[Session] = []
        with self._store.transaction():
            for session in self._store.list_sessions(
                [SessionState.CREATED, SessionState.MARKET_FORMING, SessionState.OFFERS_AVAILABLE],
            ):
                if session.expires_utc is not None and now >= session.expires_utc:
                    self.transition(session, SessionState.EXPIRED, now=now)
                    expired.append(session)
        if expired:
            logger.info("Expired %d session(s)", len(expired))
        return expired

    def list_open(
        self,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> list[Session]:
        """Open, unexpired sessions, most recent first."""
        now = now or datetime.now(timezone.utc)
        sessions = [
            s for s in self._store.list_sessions(
                [SessionState.CREATED, SessionState.MARKET_FORMING, SessionState.OFFERS_AVAILABLE],
            )
            if not s.is_expired(now)
        ]
        sessions.sort(key=lambda s: (s.created_utc, s.session_id), reverse=True)
        return sessions[:max(0, limit)]
