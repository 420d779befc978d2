"""Tests for state module - session state machine."""

from datetime import datetime, timezone

import pytest

from holdfast.exceptions import StateTransitionError
from holdfast.persistence.models import Session
from holdfast.state import (
    VALID_TRANSITIONS,
    SessionState,
    can_transition,
    require_transition,
    state_of,
)

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class TestSessionState:
    """Tests for SessionState enum and transitions."""

    def test_all_states_have_transitions(self):
        """Every state should have defined transitions."""
        for state in SessionState:
            assert state in VALID_TRANSITIONS

    def test_ended_is_terminal(self):
        """ENDED state should have no outgoing transitions."""
        assert VALID_TRANSITIONS[SessionState.ENDED] == set()

    def test_open_states_can_end(self):
        assert can_transition(SessionState.ACTIVE, SessionState.ENDED)
        assert can_transition(SessionState.PAUSED, SessionState.ENDED)

    def test_pause_resume_pair(self):
        assert can_transition(SessionState.ACTIVE, SessionState.PAUSED)
        assert can_transition(SessionState.PAUSED, SessionState.ACTIVE)
        assert not can_transition(SessionState.PAUSED, SessionState.PAUSED)


class TestStateOf:
    """Tests for deriving state from session fields."""

    def test_new_session_is_active(self):
        assert state_of(Session(owner_id="alice", start_time=NOW)) is SessionState.ACTIVE

    def test_paused_session(self):
        session = Session(owner_id="alice", start_time=NOW, is_paused=True, pause_start_time=NOW)
        assert state_of(session) is SessionState.PAUSED

    def test_end_time_wins(self):
        """A session with end_time is ENDED whatever the pause flag says."""
        session = Session(owner_id="alice", start_time=NOW, end_time=NOW, is_paused=True)
        assert state_of(session) is SessionState.ENDED


class TestRequireTransition:
    """Tests for require_transition."""

    def test_valid_transition_passes(self):
        require_transition(SessionState.ACTIVE, SessionState.PAUSED)

    def test_invalid_transition_raises(self):
        with pytest.raises(StateTransitionError) as exc_info:
            require_transition(SessionState.ENDED, SessionState.ACTIVE)

        assert exc_info.value.from_state == "ENDED"
        assert exc_info.value.to_state == "ACTIVE"
        assert "none" in exc_info.value.message

    def test_error_lists_valid_targets(self):
        with pytest.raises(StateTransitionError) as exc_info:
            require_transition(SessionState.ACTIVE, SessionState.ACTIVE)

        assert "ENDED, PAUSED" in exc_info.value.message
