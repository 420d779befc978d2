"""
Holdfast - Session State Machine

A session's state is derived from its fields rather than stored:
``end_time`` set means ENDED, otherwise ``is_paused`` decides between
PAUSED and ACTIVE.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from holdfast.persistence.models import Session


class SessionState(Enum):
    """
    Possible states for a restriction session.

    State transitions:
    ACTIVE -> PAUSED (pause)
    PAUSED -> ACTIVE (resume)
    ACTIVE | PAUSED -> ENDED (end or emergency unlock)
    ENDED is terminal
    """

    ACTIVE = auto()  # Running, time counts
    PAUSED = auto()  # Temporarily suspended, time excluded
    ENDED = auto()  # Terminal; variant recorded in end_reason


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.ACTIVE: {SessionState.PAUSED, SessionState.ENDED},
    SessionState.PAUSED: {SessionState.ACTIVE, SessionState.ENDED},
    SessionState.ENDED: set(),  # Terminal state
}


def state_of(session: Session) -> SessionState:
    """Derive the state of a session from its fields."""
    if session.end_time is not None:
        return SessionState.ENDED
    if session.is_paused:
        return SessionState.PAUSED
    return SessionState.ACTIVE


def can_transition(from_state: SessionState, to_state: SessionState) -> bool:
    """Check if a transition is allowed by the table."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def require_transition(from_state: SessionState, to_state: SessionState) -> None:
    """
    Validate a transition, raising if it is not in the table.

    Use this where failure indicates a bug in the lifecycle logic rather
    than a caller mistake (caller mistakes get the more specific
    NotFound/InvalidState errors first).

    Raises:
        StateTransitionError: If the transition is not valid
    """
    from holdfast.exceptions import StateTransitionError

    if not can_transition(from_state, to_state):
        valid_targets = VALID_TRANSITIONS.get(from_state, set())
        valid_names = ", ".join(sorted(s.name for s in valid_targets)) or "none"
        raise StateTransitionError(
            f"Invalid state transition: {from_state.name} -> {to_state.name}. "
            f"Valid transitions from {from_state.name}: {valid_names}",
            from_state=from_state.name,
            to_state=to_state.name,
        )
