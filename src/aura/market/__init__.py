"""Marketplace core: beacons, sessions, offers, and the commit path."""

from aura.market.commit_coordinator import CommitCoordinator, CommitOutcome
from aura.market.offer_store import OfferStore, OfferView
from aura.market.registry import BeaconRegistry
from aura.market.session_state_machine import SessionStateMachine
from aura.market.sessions import SessionLifecycle

__all__ = [
    "BeaconRegistry",
    "CommitCoordinator",
    "CommitOutcome",
    "OfferStore",
    "OfferView",
    "SessionLifecycle",
    "SessionStateMachine",
]
