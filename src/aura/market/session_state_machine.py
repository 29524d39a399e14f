"""Session state machine: enforces valid session lifecycle transitions.

Session lifecycle:
    CREATED → MARKET_FORMING → OFFERS_AVAILABLE → COMMITTED → COMPLETED
    CREATED | MARKET_FORMING | OFFERS_AVAILABLE → CANCELLED
    CREATED | MARKET_FORMING | OFFERS_AVAILABLE → EXPIRED
    CREATED | MARKET_FORMING → FAILED

State semantics:
- CREATED: session stored, request tokens not yet usable for matching.
- MARKET_FORMING: candidates are being discovered, no offers yet.
- OFFERS_AVAILABLE: at least one pending offer has been recorded.
- COMMITTED: exactly one offer accepted, transaction created.
- COMPLETED: terminal, fulfilment finished downstream.
- CANCELLED: terminal, withdrawn by the scout before commit.
- EXPIRED: terminal, time-to-live elapsed before commit.
- FAILED: terminal, the request could not be interpreted.

No transition moves backward. Invalid transitions are reported, never
silently ignored.
"""

from __future__ import annotations

from aura.models.market import Session, SessionState


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CREATED: {
        SessionState.MARKET_FORMING,
        SessionState.CANCELLED,
        SessionState.EXPIRED,
        SessionState.FAILED,
    },
    SessionState.MARKET_FORMING: {
        SessionState.OFFERS_AVAILABLE,
        SessionState.CANCELLED,
        SessionState.EXPIRED,
        SessionState.FAILED,
    },
    SessionState.OFFERS_AVAILABLE: {
        SessionState.COMMITTED,
        SessionState.CANCELLED,
        SessionState.EXPIRED,
    },
    SessionState.COMMITTED: {SessionState.COMPLETED},
    SessionState.COMPLETED: set(),
    SessionState.CANCELLED: set(),
    SessionState.EXPIRED: set(),
    SessionState.FAILED: set(),
}

_OPEN_STATES = frozenset({
    SessionState.CREATED,
    SessionState.MARKET_FORMING,
    SessionState.OFFERS_AVAILABLE,
})


class SessionStateMachine:
    """Validates and applies session state transitions.

    Pure computation: validates transitions only. Persistence and audit
    are handled by the caller.
    """

    @staticmethod
    def validate_transition(
        session: Session,
        target: SessionState,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = session.state
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid session transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(
        session: Session,
        target: SessionState,
    ) -> list[str]:
        """Validate and apply a state transition.

        Returns errors if transition is invalid. On success,
        mutates session.state and returns empty list.
        """
        errors = SessionStateMachine.validate_transition(session, target)
        if errors:
            return errors
        session.state = target
        return []

    @staticmethod
    def path_to(current: SessionState, target: SessionState) -> list[SessionState]:
        """Forward-only chain of states from current to target (exclusive
        of current). Empty if target is current or unreachable."""
        order = [
            SessionState.CREATED,
            SessionState.MARKET_FORMING,
            SessionState.OFFERS_AVAILABLE,
            SessionState.COMMITTED,
        ]
        if current not in order or target not in order:
            return []
        start, end = order.index(current), order.index(target)
        return order[start + 1:end + 1] if end > start else []

    @staticmethod
    def accepts_offers(state: SessionState) -> bool:
        return state in _OPEN_STATES

    @staticmethod
    def is_open(state: SessionState) -> bool:
        return state in _OPEN_STATES

