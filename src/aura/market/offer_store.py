"""Offer store: submission and listing of competing offers.

Offers are appended PENDING. Only the commit coordinator moves them to
ACCEPTED or REJECTED. Submitting the first offer advances the session
to OFFERS_AVAILABLE (through MARKET_FORMING if the session was still
CREATED), in the same unit as the offer write.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from aura.errors import NotFoundError, StateConflictError, ValidationError
from aura.ids import new_id
from aura.market.registry import BeaconRegistry
from aura.market.session_state_machine import SessionStateMachine
from aura.market.sessions import SessionLifecycle
from aura.models.audit import EntityType
from aura.models.market import BeaconStatus, Offer, OfferState, SessionState
from aura.persistence.audit_log import AuditLog
from aura.persistence.store import MarketStore
from aura.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class OfferView:
    """A pending offer joined with its beacon's display data."""
    offer: Offer
    beacon_name: str
    beacon_external_id: str


class OfferStore:
    """Usage:
        offers = OfferStore(store, sessions, registry, audit_log, resolver)
        offer = offers.submit(session_id, beacon_id, product="widgets",
                              unit_price=Decimal("4.50"), quantity=20)
        pending = offers.list_pending(session_id)
    """

    def __init__(
        self,
        store: MarketStore,
        sessions: SessionLifecycle,
        registry: BeaconRegistry,
        audit_log: AuditLog,
        resolver: PolicyResolver,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._registry = registry
        self._audit = audit_log
        self._ttl = resolver.offer_ttl()
        self._default_currency = resolver.default_currency()

    def submit(
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
    ) -> Offer:
        """Record a PENDING offer against an open session."""
        if not beacon_id:
            raise ValidationError("beacon_id is required")
        if not isinstance(product, str) or not product.strip():
            raise ValidationError("product is required")
        if terms is not None and not isinstance(terms, dict):
            raise ValidationError("terms must be an object")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        unit, qty, total = _price_offer(unit_price, quantity, total_price)

        now = now or datetime.now(timezone.utc)
        with self._store.transaction():
            session = self._sessions.load(session_id)
            self._sessions.ensure_live(session, now)
            if not SessionStateMachine.accepts_offers(session.state):
                raise StateConflictError(
                    f"Session {session_id} is not accepting offers "
                    f"(state: {session.state.value})"
                )

            beacon = self._registry.get(beacon_id)
            if beacon is None:
                raise NotFoundError(f"Beacon not found: {beacon_id}")
            if beacon.status != BeaconStatus.ACTIVE:
                raise StateConflictError(
                    f"Beacon {beacon.beacon_id} is not active "
                    f"(status: {beacon.status.value})"
                )

            offer = Offer(
                offer_id=new_id("ofr"),
                session_id=session_id,
                beacon_id=beacon.beacon_id,
                product=product,
                total_price=total,
                unit_price=unit,
                quantity=qty,
                currency=(currency or self._default_currency).upper(),
                state=OfferState.PENDING,
                delivery_date=delivery_date,
                terms=dict(terms or {}),
                metadata=dict(metadata or {}),
                created_utc=now,
                expires_utc=now + self._ttl,
            )
            self._store.insert_offer(offer)
            self._audit.append(
                EntityType.OFFER, offer.offer_id, "submitted",
                None,
                {
                    "state": offer.state.value,
                    "session_id": session_id,
                    "total_price": str(offer.total_price),
                    "currency": offer.currency,
                },
                actor=beacon.beacon_id, now=now,
            )
            self._sessions.advance_to(
                session, SessionState.OFFERS_AVAILABLE, actor=beacon.beacon_id, now=now,
            )
        return offer

    def get(self, offer_id: str) -> Offer:
        offer = self._store.get_offer(offer_id)
        if offer is None:
            raise NotFoundError(f"Offer not found: {offer_id}")
        return offer

    def list_pending(self, session_id: str) -> list[OfferView]:
        """Pending offers for a session, most recent first."""
        self._sessions.load(session_id)
        views: list[OfferView] = []
        for offer in self._store.list_offers(session_id, OfferState.PENDING):
            beacon = self._store.get_beacon(offer.beacon_id)
            views.append(OfferView(
                offer=offer,
                beacon_name=beacon.name if beacon else "",
                beacon_external_id=beacon.external_id if beacon else "",
            ))
        views.reverse()
        views.sort(key=lambda v: v.offer.created_utc, reverse=True)
        return views


def _price_offer(
    unit_price: Any, quantity: Any, total_price: Any,
) -> tuple[Optional[Decimal], Optional[int], Decimal]:
    """Validate pricing inputs and compute total = unit_price × quantity
    when no total is supplied."""
    unit = _to_decimal(unit_price, "unit_price") if unit_price is not None else None
    if unit is not None and unit < 0:
        raise ValidationError("unit_price must not be negative")

    qty: Optional[int] = None
    if quantity is not None:
        if isinstance(quantity, bool):
            raise ValidationError("quantity must be a positive integer")
        try:
            qty = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError("quantity must be a positive integer") from None
        if qty != quantity and not (isinstance(quantity, str) and quantity.strip() == str(qty)):
            raise ValidationError("quantity must be a positive integer")
        if qty <= 0:
            raise ValidationError("quantity must be a positive integer")

    if total_price is not None:
        total = _to_decimal(total_price, "total_price")
    elif unit is not None and qty is not None:
        total = unit * qty
    else:
        raise ValidationError("Provide total_price, or both unit_price and quantity")

    if total < 0:
        raise ValidationError("total_price must not be negative")
    return unit, qty, total


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number") from None
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result
