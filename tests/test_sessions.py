"""Tests for the session lifecycle: creation, transitions, cancel, expiry."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from aura.errors import NotFoundError, StateConflictError, ValidationError
from aura.market.sessions import SessionLifecycle
from aura.models.audit import EntityType
from aura.models.market import (
    Beacon,
    NegotiationProtocol,
    Offer,
    RequestTokens,
    SessionState,
)
from aura.persistence.audit_log import AuditLog
from aura.persistence.errors import StoreUnavailableError
from aura.persistence.memory_store import InMemoryStore
from aura.policy.resolver import PolicyResolver

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

RED_WIDGETS = RequestTokens(keywords=("500", "red", "widgets"))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def audit(store: InMemoryStore) -> AuditLog:
    return AuditLog(store)


@pytest.fixture
def sessions(store: InMemoryStore, audit: AuditLog) -> SessionLifecycle:
    return SessionLifecycle(store, audit, PolicyResolver.from_config_dir(CONFIG_DIR))


def _actions(audit: AuditLog, session_id: str) -> list[str]:
    return [e.action for e in audit.entries_for(EntityType.SESSION, session_id)]


def _insert_pending_offer(store: InMemoryStore, session_id: str) -> None:
    store.insert_beacon(Beacon(beacon_id="bcn_1", external_id="acme", name="Acme"))
    store.insert_offer(Offer(
        offer_id="ofr_1",
        session_id=session_id,
        beacon_id="bcn_1",
        product="widgets",
        total_price=Decimal("90"),
    ))


class TestCreate:
    def test_tokens_move_session_to_market_forming(self, sessions, audit) -> None:
        session = sessions.create("500 red widgets", RED_WIDGETS, requester_id="scout-1")
        assert session.session_id.startswith("ses_")
        assert session.state == SessionState.MARKET_FORMING
        assert session.requester_id == "scout-1"
        assert _actions(audit, session.session_id) == ["created", "transition:market_forming"]

    def test_empty_tokens_stay_created(self, sessions, audit) -> None:
        session = sessions.create("please help", RequestTokens())
        assert session.state == SessionState.CREATED
        assert _actions(audit, session.session_id) == ["created"]

    def test_expiry_from_policy(self, sessions) -> None:
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        session = sessions.create("widgets", RED_WIDGETS, now=now)
        assert session.created_utc == now
        assert session.expires_utc == now + timedelta(hours=24)

    def test_protocol_recorded(self, sessions, store) -> None:
        session = sessions.create("widgets", RED_WIDGETS, protocol=NegotiationProtocol.RFQ)
        assert store.get_session(session.session_id).protocol == NegotiationProtocol.RFQ

    def test_blank_request_rejected(self, sessions, store) -> None:
        with pytest.raises(ValidationError):
            sessions.create("   ", RED_WIDGETS)
        assert store.list_sessions() == []

    def test_constraints_must_be_object(self, sessions) -> None:
        with pytest.raises(ValidationError):
            sessions.create("widgets", RED_WIDGETS, constraints="cheap")  # type: ignore[arg-type]


class TestLookup:
    def test_unknown_session(self, sessions) -> None:
        with pytest.raises(NotFoundError):
            sessions.get("ses_missing")

    def test_get_promotes_when_offers_pending(self, sessions, store, audit) -> None:
        session = sessions.create("widgets", RED_WIDGETS)
        _insert_pending_offer(store, session.session_id)
        loaded = sessions.get(session.session_id)
        assert loaded.state == SessionState.OFFERS_AVAILABLE
        assert store.get_session(session.session_id).state == SessionState.OFFERS_AVAILABLE
        assert _actions(audit, session.session_id)[-1] == "transition:offers_available"

    def test_get_without_offers_leaves_state(self, sessions) -> None:
        session = sessions.create("widgets", RED_WIDGETS)
        assert sessions.get(session.session_id).state == SessionState.MARKET_FORMING


class TestTransitions:
    def test_invalid_transition_raises_and_keeps_state(self, sessions, store) -> None:
        session = sessions.create("widgets", RED_WIDGETS)
        with pytest.raises(StateConflictError, match="Invalid session transition"):
            sessions.transition(session, SessionState.COMMITTED)
        assert session.state == SessionState.MARKET_FORMING
        assert store.get_session(session.session_id).state == SessionState.MARKET_FORMING

    def test_advance_walks_intermediate_states(self, sessions, audit) -> None:
        session = sessions.create("please help", RequestTokens())
        sessions.advance_to(session, SessionState.OFFERS_AVAILABLE, actor="bcn_1")
        assert session.state == SessionState.OFFERS_AVAILABLE
        assert _actions(audit, session.session_id) == [
            "created",
            "transition:market_forming",
            "transition:offers_available",
        ]

    def test_ensure_live(self, sessions) -> None:
        session = sessions.create("widgets", RED_WIDGETS)
        sessions.ensure_live(session, session.created_utc + timedelta(hours=1))
        with pytest.raises(StateConflictError, match="expired"):
            sessions.ensure_live(session, session.expires_utc)

    def test_failed_write_restores_session(self) -> None:
        class _UpdateDownStore(InMemoryStore):
            def update_session(self, session):
                raise StoreUnavailableError("disk full")

        store = _UpdateDownStore()
        sessions = SessionLifecycle(
            store, AuditLog(store), PolicyResolver.from_config_dir(CONFIG_DIR),
        )
        session = sessions.create("please help", RequestTokens())
        stamped = session.updated_utc
        with pytest.raises(StoreUnavailableError):
            sessions.transition(session, SessionState.MARKET_FORMING)
        assert session.state == SessionState.CREATED
        assert session.updated_utc == stamped


class TestCancel:
    def test_cancel_open_session(self, sessions, audit) -> None:
        session = sessions.create("widgets", RED_WIDGETS)
        cancelled = sessions.cancel(session.session_id, actor="scout-1")
        assert cancelled.state == SessionState.CANCELLED
        entry = audit.entries_for(EntityType.SESSION, session.session_id)[-1]
        assert entry.action == "transition:cancelled"
        assert entry.changed_by == "scout-1"

    def test_cancel_committed_rejected(self, sessions, store) -> None:
        session = sessions.create("widgets", RED_WIDGETS)
        stored = store.get_session(session.session_id)
        for state in (SessionState.COMMITTED, SessionState.COMPLETED):
            stored.state = state
            store.update_session(stored)
            with pytest.raises(StateConflictError, match="cannot be cancelled"):
                sessions.cancel(session.session_id)
            assert store.get_session(session.session_id).state == state

    def test_cancel_twice_rejected(self, sessions) -> None:
        session = sessions.create("widgets", RED_WIDGETS)
        sessions.cancel(session.session_id)
        with pytest.raises(StateConflictError):
            sessions.cancel(session.session_id)

    def test_cancel_unknown(self, sessions) -> None:
        with pytest.raises(NotFoundError):
            sessions.cancel("ses_missing")


class TestExpiry:
    def test_expire_due_moves_only_overdue_sessions(self, sessions, audit) -> None:
        now = datetime.now(timezone.utc)
        stale = sessions.create("widgets", RED_WIDGETS, now=now - timedelta(days=2))
        fresh = sessions.create("gadgets", RequestTokens(keywords=("gadgets",)), now=now)
        expired = sessions.expire_due(now=now)
        assert [s.session_id for s in expired] == [stale.session_id]
        assert sessions.load(stale.session_id).state == SessionState.EXPIRED
        assert sessions.load(fresh.session_id).state == SessionState.MARKET_FORMING
        assert _actions(audit, stale.session_id)[-1] == "transition:expired"

    def test_expire_due_skips_terminal_sessions(self, sessions) -> None:
        now = datetime.now(timezone.utc)
        old = sessions.create("widgets", RED_WIDGETS, now=now - timedelta(days=2))
        sessions.cancel(old.session_id, now=now - timedelta(days=2))
        assert sessions.expire_due(now=now) == []
        assert sessions.load(old.session_id).state == SessionState.CANCELLED


class TestListOpen:
    def test_most_recent_first_and_filtered(self, sessions) -> None:
        now = datetime.now(timezone.utc)
        first = sessions.create("a widgets", RED_WIDGETS, now=now - timedelta(minutes=2))
        second = sessions.create("b widgets", RED_WIDGETS, now=now - timedelta(minutes=1))
        cancelled = sessions.create("c widgets", RED_WIDGETS, now=now)
        sessions.cancel(cancelled.session_id, now=now)
        sessions.create("old widgets", RED_WIDGETS, now=now - timedelta(days=2))

        listed = sessions.list_open(now=now)
        assert [s.session_id for s in listed] == [second.session_id, first.session_id]

    def test_limit(self, sessions) -> None:
        for i in range(4):
            sessions.create(f"widgets {i}", RED_WIDGETS)
        assert len(sessions.list_open(limit=3)) == 3
