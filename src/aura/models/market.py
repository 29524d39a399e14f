"""Marketplace models: sessions, beacons, offers, and transactions.

A scout opens a session describing a need, active beacons are ranked
against the session's request tokens, beacons submit offers, and the
scout commits to exactly one offer, producing a single transaction.

Session lifecycle: CREATED → MARKET_FORMING → OFFERS_AVAILABLE → COMMITTED
Offer lifecycle: PENDING → ACCEPTED / REJECTED
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


class SessionState(str, enum.Enum):
    """Lifecycle state of a scout session."""
    CREATED = "created"
    MARKET_FORMING = "market_forming"
    OFFERS_AVAILABLE = "offers_available"
    COMMITTED = "committed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"


class BeaconStatus(str, enum.Enum):
    """Participation status of a beacon. Only ACTIVE beacons are scored."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class OfferState(str, enum.Enum):
    """Lifecycle state of an offer."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class TransactionStatus(str, enum.Enum):
    """Status of a committed transaction."""
    COMMITTED = "committed"


class NegotiationProtocol(str, enum.Enum):
    """How the winning offer of a session is chosen.

    Only DIRECT (the scout accepts one offer outright) is wired into the
    commit path. AUCTION and RFQ are recognised so sessions can carry
    them, but committing such a session is rejected.
    """
    DIRECT = "direct"
    AUCTION = "auction"
    RFQ = "rfq"


@dataclass(frozen=True)
class RequestTokens:
    """The keyword/constraint set derived from a scout's raw request."""
    keywords: tuple[str, ...] = ()
    category: Optional[str] = None

    def distinct_keywords(self) -> list[str]:
        """Keywords lower-cased and de-duplicated, first occurrence wins."""
        seen: set[str] = set()
        result: list[str] = []
        for kw in self.keywords:
            if not isinstance(kw, str):
                continue
            norm = kw.strip().lower()
            if norm and norm not in seen:
                seen.add(norm)
                result.append(norm)
        return result

    def is_empty(self) -> bool:
        return not self.distinct_keywords() and not self.category

    def to_dict(self) -> dict[str, Any]:
        return {"keywords": list(self.keywords), "category": self.category}

    @staticmethod
    def from_dict(data: Optional[dict[str, Any]]) -> RequestTokens:
        if not data:
            return RequestTokens()
        return RequestTokens(
            keywords=tuple(data.get("keywords") or ()),
            category=data.get("category"),
        )


@dataclass
class Session:
    """One scout request, from submission to outcome."""
    session_id: str
    raw_request: str
    tokens: RequestTokens = field(default_factory=RequestTokens)
    requester_id: Optional[str] = None
    state: SessionState = SessionState.CREATED
    protocol: NegotiationProtocol = NegotiationProtocol.DIRECT
    constraints: dict[str, Any] = field(default_factory=dict)
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None
    expires_utc: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        if self.state == SessionState.EXPIRED:
            return True
        return self.expires_utc is not None and now >= self.expires_utc


@dataclass
class Beacon:
    """A registered seller-side responder.

    Capabilities are stored exactly as declared (string, list, nested
    object, or nothing) and normalised only at scoring time.
    """
    beacon_id: str
    external_id: str
    name: str
    status: BeaconStatus = BeaconStatus.ACTIVE
    capabilities: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    endpoint_url: Optional[str] = None
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None


@dataclass
class Offer:
    """A beacon's priced proposal against a session."""
    offer_id: str
    session_id: str
    beacon_id: str
    product: str
    total_price: Decimal
    unit_price: Optional[Decimal] = None
    quantity: Optional[int] = None
    currency: str = "USD"
    state: OfferState = OfferState.PENDING
    delivery_date: Optional[str] = None
    terms: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_utc: Optional[datetime] = None
    expires_utc: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_utc is not None and now >= self.expires_utc

    def terms_snapshot(self) -> dict[str, Any]:
        """Freeze the offer's commercial terms for a transaction record.

        Money is captured as strings so the snapshot survives any JSON
        round-trip without float drift.
        """
        return {
            "product": self.product,
            "unit_price": str(self.unit_price) if self.unit_price is not None else None,
            "quantity": self.quantity,
            "total_price": str(self.total_price),
            "currency": self.currency,
            "delivery_date": self.delivery_date,
            "terms": dict(self.terms),
        }


@dataclass(frozen=True)
class Transaction:
    """The single committed outcome of a session."""
    transaction_id: str
    session_id: str
    offer_id: str
    beacon_id: str
    final_terms: dict[str, Any]
    status: TransactionStatus = TransactionStatus.COMMITTED
    requester_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_utc: Optional[datetime] = None


@dataclass(frozen=True)
class BeaconMatch:
    """A ranked candidate returned by the market matcher."""
    beacon_id: str
    name: str
    score: int
    capabilities: Any = None
