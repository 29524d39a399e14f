"""Core data models for the AURA marketplace."""

from aura.models.audit import AuditEntry, EntityType
from aura.models.market import (
    Beacon,
    BeaconMatch,
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

__all__ = [
    "AuditEntry",
    "EntityType",
    "Beacon",
    "BeaconMatch",
    "BeaconStatus",
    "NegotiationProtocol",
    "Offer",
    "OfferState",
    "RequestTokens",
    "Session",
    "SessionState",
    "Transaction",
    "TransactionStatus",
]
