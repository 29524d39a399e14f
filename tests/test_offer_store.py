"""Tests for the offer store: submission rules, pricing, pending lists."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from aura.errors import NotFoundError, StateConflictError, ValidationError
from aura.market.offer_store import OfferStore
from aura.market.registry import BeaconRegistry
from aura.market.sessions import SessionLifecycle
from aura.models.audit import EntityType
from aura.models.market import BeaconStatus, OfferState, RequestTokens, SessionState
from aura.persistence.audit_log import AuditLog
from aura.persistence.memory_store import InMemoryStore
from aura.policy.resolver import PolicyResolver

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

RED_WIDGETS = RequestTokens(keywords=("500", "red", "widgets"))


class _Stack:
    def __init__(self) -> None:
        resolver = PolicyResolver.from_config_dir(CONFIG_DIR)
        self.store = InMemoryStore()
        self.audit = AuditLog(self.store)
        self.registry = BeaconRegistry(self.store, self.audit)
        self.sessions = SessionLifecycle(self.store, self.audit, resolver)
        self.offers = OfferStore(
            self.store, self.sessions, self.registry, self.audit, resolver,
        )


@pytest.fixture
def stack() -> _Stack:
    return _Stack()


def _open_session(stack: _Stack, tokens: RequestTokens = RED_WIDGETS, now=None) -> str:
    return stack.sessions.create("500 red widgets", tokens, now=now).session_id


def _beacon_id(stack: _Stack, external_id: str = "acme", name: str = "Acme Widgets") -> str:
    beacon, _ = stack.registry.register(external_id, name, capabilities=["widgets"])
    return beacon.beacon_id


class TestSubmit:
    def test_offer_is_pending(self, stack) -> None:
        session_id = _open_session(stack)
        offer = stack.offers.submit(session_id, _beacon_id(stack), "widgets", total_price=100)
        assert offer.offer_id.startswith("ofr_")
        assert offer.state == OfferState.PENDING
        assert offer.total_price == Decimal("100")
        assert offer.currency == "USD"
        assert stack.store.get_offer(offer.offer_id).state == OfferState.PENDING

    def test_total_computed_from_unit_price(self, stack) -> None:
        session_id = _open_session(stack)
        offer = stack.offers.submit(
            session_id, _beacon_id(stack), "widgets", unit_price="4.50", quantity=20,
        )
        assert offer.total_price == Decimal("90.00")
        assert offer.unit_price == Decimal("4.50")
        assert offer.quantity == 20

    def test_explicit_total_wins(self, stack) -> None:
        session_id = _open_session(stack)
        offer = stack.offers.submit(
            session_id, _beacon_id(stack), "widgets",
            unit_price="5", quantity=20, total_price="95",
        )
        assert offer.total_price == Decimal("95")

    def test_first_offer_makes_offers_available(self, stack) -> None:
        session_id = _open_session(stack)
        stack.offers.submit(session_id, _beacon_id(stack), "widgets", total_price=100)
        assert stack.store.get_session(session_id).state == SessionState.OFFERS_AVAILABLE

    def test_created_session_walks_forward(self, stack) -> None:
        session_id = _open_session(stack, RequestTokens())
        assert stack.store.get_session(session_id).state == SessionState.CREATED
        stack.offers.submit(session_id, _beacon_id(stack), "widgets", total_price=10)
        actions = [e.action for e in stack.audit.entries_for(EntityType.SESSION, session_id)]
        assert actions == [
            "created",
            "transition:market_forming",
            "transition:offers_available",
        ]

    def test_second_offer_leaves_state(self, stack) -> None:
        session_id = _open_session(stack)
        stack.offers.submit(session_id, _beacon_id(stack, "a"), "widgets", total_price=100)
        stack.offers.submit(session_id, _beacon_id(stack, "b"), "widgets", total_price=90)
        assert stack.store.get_session(session_id).state == SessionState.OFFERS_AVAILABLE

    def test_submission_is_audited(self, stack) -> None:
        session_id = _open_session(stack)
        beacon_id = _beacon_id(stack)
        offer = stack.offers.submit(session_id, beacon_id, "widgets", total_price=100)
        entries = stack.audit.entries_for(EntityType.OFFER, offer.offer_id)
        assert [e.action for e in entries] == ["submitted"]
        assert entries[0].changed_by == beacon_id

    def test_beacon_by_external_id(self, stack) -> None:
        session_id = _open_session(stack)
        beacon_id = _beacon_id(stack, "acme")
        offer = stack.offers.submit(session_id, "acme", "widgets", total_price=1)
        assert offer.beacon_id == beacon_id


class TestValidation:
    @pytest.mark.parametrize("kwargs", [
        {"product": "", "total_price": 10},
        {"product": "widgets"},
        {"product": "widgets", "unit_price": 5},
        {"product": "widgets", "unit_price": -1, "quantity": 2},
        {"product": "widgets", "unit_price": 5, "quantity": 0},
        {"product": "widgets", "unit_price": 5, "quantity": 2.5},
        {"product": "widgets", "unit_price": 5, "quantity": True},
        {"product": "widgets", "total_price": "ten"},
        {"product": "widgets", "total_price": -3},
        {"product": "widgets", "total_price": "NaN"},
        {"product": "widgets", "total_price": 10, "terms": "net30"},
    ])
    def test_rejected_without_state_change(self, stack, kwargs) -> None:
        session_id = _open_session(stack)
        with pytest.raises(ValidationError):
            stack.offers.submit(session_id, _beacon_id(stack), **kwargs)
        assert stack.store.list_offers(session_id) == []
        assert stack.store.get_session(session_id).state == SessionState.MARKET_FORMING

    def test_string_quantity_accepted(self, stack) -> None:
        session_id = _open_session(stack)
        offer = stack.offers.submit(
            session_id, _beacon_id(stack), "widgets", unit_price=2, quantity="3",
        )
        assert offer.quantity == 3
        assert offer.total_price == Decimal("6")


class TestPreconditions:
    def test_unknown_session(self, stack) -> None:
        with pytest.raises(NotFoundError):
            stack.offers.submit("ses_missing", _beacon_id(stack), "widgets", total_price=1)

    def test_unknown_beacon(self, stack) -> None:
        session_id = _open_session(stack)
        with pytest.raises(NotFoundError):
            stack.offers.submit(session_id, "bcn_missing", "widgets", total_price=1)

    def test_inactive_beacon(self, stack) -> None:
        session_id = _open_session(stack)
        beacon_id = _beacon_id(stack)
        stack.registry.set_status(beacon_id, BeaconStatus.INACTIVE)
        with pytest.raises(StateConflictError, match="not active"):
            stack.offers.submit(session_id, beacon_id, "widgets", total_price=1)

    def test_cancelled_session(self, stack) -> None:
        session_id = _open_session(stack)
        stack.sessions.cancel(session_id)
        with pytest.raises(StateConflictError, match="not accepting offers"):
            stack.offers.submit(session_id, _beacon_id(stack), "widgets", total_price=1)

    def test_expired_session_without_sweep(self, stack) -> None:
        old = datetime.now(timezone.utc) - timedelta(days=2)
        session_id = _open_session(stack, now=old)
        with pytest.raises(StateConflictError, match="expired"):
            stack.offers.submit(session_id, _beacon_id(stack), "widgets", total_price=1)
        assert stack.store.list_offers(session_id) == []


class TestListPending:
    def test_most_recent_first_with_beacon_data(self, stack) -> None:
        session_id = _open_session(stack)
        now = datetime.now(timezone.utc)
        first = stack.offers.submit(
            session_id, _beacon_id(stack, "a", "Alpha"), "widgets", total_price=100, now=now,
        )
        second = stack.offers.submit(
            session_id, _beacon_id(stack, "b", "Beta"), "widgets", total_price=90,
            now=now + timedelta(seconds=1),
        )
        views = stack.offers.list_pending(session_id)
        assert [v.offer.offer_id for v in views] == [second.offer_id, first.offer_id]
        assert [v.beacon_name for v in views] == ["Beta", "Alpha"]
        assert views[0].beacon_external_id == "b"

    def test_same_timestamp_newest_first(self, stack) -> None:
        session_id = _open_session(stack)
        now = datetime.now(timezone.utc)
        ids = [
            stack.offers.submit(
                session_id, _beacon_id(stack, f"b{i}"), "widgets", total_price=i + 1, now=now,
            ).offer_id
            for i in range(3)
        ]
        assert [v.offer.offer_id for v in stack.offers.list_pending(session_id)] == ids[::-1]

    def test_excludes_non_pending(self, stack) -> None:
        session_id = _open_session(stack)
        kept = stack.offers.submit(session_id, _beacon_id(stack, "a"), "widgets", total_price=1)
        dropped = stack.offers.submit(session_id, _beacon_id(stack, "b"), "widgets", total_price=2)
        stack.store.update_offer_state(dropped.offer_id, OfferState.REJECTED)
        assert [v.offer.offer_id for v in stack.offers.list_pending(session_id)] == [kept.offer_id]

    def test_unknown_session(self, stack) -> None:
        with pytest.raises(NotFoundError):
            stack.offers.list_pending("ses_missing")

    def test_get(self, stack) -> None:
        session_id = _open_session(stack)
        offer = stack.offers.submit(session_id, _beacon_id(stack), "widgets", total_price=1)
        assert stack.offers.get(offer.offer_id).offer_id == offer.offer_id
        with pytest.raises(NotFoundError):
            stack.offers.get("ofr_missing")
