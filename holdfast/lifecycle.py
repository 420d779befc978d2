"""
Session Lifecycle Manager

Owns the session state machine: start, pause, resume and end. Each
operation reads the session, takes the owner's guard entry, validates the
transition, writes the session and then appends an audit event.

Audit writes and goal tracking are secondary: their failures are logged
and suppressed, never rolled back into the committed session change.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime

from holdfast.exceptions import (
    AlreadyInStateError,
    ConflictError,
    CooldownError,
    HoldfastError,
    InvalidStateError,
    NotFoundError,
)
from holdfast.goals import GoalProgressTracker
from holdfast.guard import OperationGuard, OperationType
from holdfast.logging import LifecycleLogEntry, lifecycle_logger, now_iso
from holdfast.persistence.models import (
    EndReason,
    EventDetails,
    EventFilter,
    EventType,
    Goal,
    PauseDetails,
    PauseReason,
    ResumeDetails,
    Session,
    SessionEndDetails,
    SessionStartDetails,
)
from holdfast.persistence.stores import AuditLog, SessionStore
from holdfast.policies import CooldownDecision, PauseCooldownPolicy
from holdfast.state import SessionState, require_transition, state_of
from holdfast.timing import (
    Clock,
    GoalProgress,
    SessionTimeStats,
    current_pause_span,
    effective_time,
    goal_progress,
    session_time_stats,
    system_clock,
    total_elapsed,
    total_pause_time,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndResult:
    """Outcome of ending a session."""

    session: Session
    total_duration: int
    effective_duration: int
    completed_goals: list[Goal] = field(default_factory=list)


@dataclass(frozen=True)
class PauseStatus:
    """Pause view of a session for display."""

    is_paused: bool
    can_pause: bool
    current_pause_duration: int
    total_pause_time: int
    pause_start_time: datetime | None = None
    cooldown: CooldownDecision | None = None


@dataclass(frozen=True)
class PauseRecord:
    """One pause of a session, matched with its resume when there is one."""

    event_id: str
    pause_time: datetime
    resume_time: datetime | None = None
    duration: int | None = None
    reason: str | None = None
    custom_reason: str | None = None
    notes: str | None = None


def _journal(entry: LifecycleLogEntry) -> None:
    try:
        lifecycle_logger.info(entry.to_json())
    except Exception as e:
        logger.debug(f"Could not write lifecycle log entry: {e}")


class SessionLifecycleManager:
    """
    State machine for restriction sessions.

    Usage:
        manager = SessionLifecycleManager(sessions, events, guard, pause_policy, tracker)
        session = await manager.start("alice", goal_duration=3600)
        await manager.pause(session.id, reason=PauseReason.EXERCISE)
        await manager.resume(session.id)
        result = await manager.end(session.id)
    """

    def __init__(
        self,
        sessions: SessionStore,
        events: AuditLog,
        guard: OperationGuard,
        pause_policy: PauseCooldownPolicy,
        goal_tracker: GoalProgressTracker,
        clock: Clock = system_clock,
    ):
        self._sessions = sessions
        self._events = events
        self._guard = guard
        self._pause_policy = pause_policy
        self._goal_tracker = goal_tracker
        self._clock = clock

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _require(self, session_id: str) -> Session:
        session = await self._sessions.find_by_id(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", "session", session_id)
        return session

    @contextmanager
    def _tracked(
        self,
        owner_id: str,
        operation: OperationType,
        session_id: str | None = None,
    ) -> Generator[None, None, None]:
        """
        Hold the guard for the block and journal any domain failure.

        State checks belong inside the block, on a session read after the
        guard is taken; a snapshot read before it may already be stale.
        """
        try:
            with self._guard.hold(owner_id, operation, session_id):
                yield
        except HoldfastError as e:
            logger.warning(f"{operation.value} failed for owner {owner_id}: {e.message}")
            _journal(
                LifecycleLogEntry(
                    timestamp=now_iso(),
                    owner_id=owner_id,
                    session_id=session_id or "",
                    event_type="error",
                    reason=operation.value,
                    error=e.message,
                    error_type=type(e).__name__,
                )
            )
            raise

    async def _audit(
        self,
        session: Session,
        event_type: EventType,
        details: EventDetails,
        timestamp: datetime,
    ) -> None:
        try:
            await self._events.append(
                session.owner_id,
                event_type,
                details,
                session_id=session.id,
                timestamp=timestamp,
            )
        except Exception:
            logger.exception(
                f"Failed to record {event_type.value} event for session {session.id[:8]}"
            )

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def start(
        self,
        owner_id: str,
        goal_duration: int | None = None,
        is_hardcore_mode: bool = False,
        keyholder_approval_required: bool = False,
        notes: str | None = None,
    ) -> Session:
        """
        Open a new session for the owner.

        Raises:
            ConflictError: If the owner already has an open session or an
                operation in progress
        """
        with self._tracked(owner_id, OperationType.START):
            existing = await self._sessions.find_open_by_owner(owner_id)
            if existing is not None:
                raise ConflictError(
                    f"Owner {owner_id} already has an open session {existing.id}",
                    conflict_type="duplicate_session",
                    owner_id=owner_id,
                )

            now = self._clock()
            session = await self._sessions.create(
                Session(
                    owner_id=owner_id,
                    start_time=now,
                    is_paused=False,
                    accumulated_pause_time=0,
                    goal_duration=goal_duration,
                    is_hardcore_mode=is_hardcore_mode,
                    keyholder_approval_required=keyholder_approval_required,
                    notes=notes,
                    last_modified=now,
                )
            )

        await self._audit(
            session,
            EventType.SESSION_START,
            SessionStartDetails(
                goal_duration=goal_duration,
                is_hardcore_mode=is_hardcore_mode,
                keyholder_approval_required=keyholder_approval_required,
                notes=notes,
            ),
            now,
        )

        logger.info(f"Started session {session.id[:8]} for owner {owner_id}")
        _journal(
            LifecycleLogEntry(
                timestamp=now_iso(),
                owner_id=owner_id,
                session_id=session.id,
                event_type="start",
                to_state=SessionState.ACTIVE.name,
            )
        )
        return session

    async def pause(
        self,
        session_id: str,
        reason: PauseReason | str = PauseReason.OTHER,
        custom_reason: str | None = None,
        notes: str | None = None,
    ) -> Session:
        """
        Pause an active session.

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If the session has ended
            AlreadyInStateError: If the session is already paused
            CooldownError: If the last pause was less than 4 hours ago
            ConflictError: If another operation is in progress for the owner
        """
        owner_id = (await self._require(session_id)).owner_id

        with self._tracked(owner_id, OperationType.PAUSE, session_id):
            session = await self._require(session_id)
            current = state_of(session)
            if current is SessionState.ENDED:
                raise InvalidStateError("Cannot pause an ended session", session_id, current.name)
            if current is SessionState.PAUSED:
                raise AlreadyInStateError("Session is already paused", session_id, current.name)

            decision = await self._pause_policy.can_pause(session.owner_id)
            if not decision.allowed:
                if decision.reason == "no_open_session":
                    raise InvalidStateError(
                        "Session is no longer open", session_id, SessionState.ENDED.name
                    )
                raise CooldownError(
                    f"Pause cooldown active. {decision.message}",
                    next_available=decision.next_available,
                    remaining_seconds=decision.remaining_seconds,
                )

            require_transition(current, SessionState.PAUSED)
            now = self._clock()
            updated = await self._sessions.update(
                session_id, {"is_paused": True, "pause_start_time": now, "last_modified": now}
            )

        reason_value = reason.value if isinstance(reason, PauseReason) else str(reason)
        await self._audit(
            updated,
            EventType.SESSION_PAUSE,
            PauseDetails(reason=reason_value, custom_reason=custom_reason, notes=notes),
            now,
        )

        logger.info(f"Paused session {session_id[:8]} ({reason_value})")
        _journal(
            LifecycleLogEntry(
                timestamp=now_iso(),
                owner_id=updated.owner_id,
                session_id=session_id,
                event_type="pause",
                from_state=SessionState.ACTIVE.name,
                to_state=SessionState.PAUSED.name,
                reason=reason_value,
            )
        )
        return updated

    async def resume(self, session_id: str, notes: str | None = None) -> Session:
        """
        Resume a paused session, folding the pause into accumulated_pause_time.

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If the session has ended or is not paused
            ConflictError: If another operation is in progress for the owner
        """
        owner_id = (await self._require(session_id)).owner_id

        with self._tracked(owner_id, OperationType.RESUME, session_id):
            session = await self._require(session_id)
            current = state_of(session)
            if current is SessionState.ENDED:
                raise InvalidStateError("Cannot resume an ended session", session_id, current.name)
            if current is not SessionState.PAUSED or session.pause_start_time is None:
                raise InvalidStateError("Session is not paused", session_id, current.name)

            require_transition(current, SessionState.ACTIVE)
            now = self._clock()
            pause_duration = current_pause_span(session, now)
            accumulated = session.accumulated_pause_time + pause_duration
            updated = await self._sessions.update(
                session_id,
                {
                    "is_paused": False,
                    "pause_start_time": None,
                    "accumulated_pause_time": accumulated,
                    "last_modified": now,
                },
            )

        await self._audit(
            updated,
            EventType.SESSION_RESUME,
            ResumeDetails(duration=pause_duration, notes=notes),
            now,
        )

        logger.info(
            f"Resumed session {session_id[:8]} after {pause_duration}s (total paused {accumulated}s)"
        )
        _journal(
            LifecycleLogEntry(
                timestamp=now_iso(),
                owner_id=updated.owner_id,
                session_id=session_id,
                event_type="resume",
                from_state=SessionState.PAUSED.name,
                to_state=SessionState.ACTIVE.name,
                pause_duration=pause_duration,
                accumulated_pause_time=accumulated,
            )
        )
        return updated

    async def end(self, session_id: str, end_reason: EndReason | str | None = None) -> EndResult:
        """
        End an open session and feed it to the goal tracker.

        A session ended while paused has its trailing pause folded into
        accumulated_pause_time first, so its effective time matches a
        resume followed by an end at the same instant.

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If the session has already ended
            ConflictError: If another operation is in progress for the owner
        """
        owner_id = (await self._require(session_id)).owner_id
        reason_value = end_reason.value if isinstance(end_reason, EndReason) else end_reason

        with self._tracked(owner_id, OperationType.END, session_id):
            session = await self._require(session_id)
            current = state_of(session)
            if current is SessionState.ENDED:
                raise InvalidStateError("Session already ended", session_id, current.name)

            require_transition(current, SessionState.ENDED)
            now = self._clock()
            closed = replace(
                session,
                end_time=now,
                is_paused=False,
                pause_start_time=None,
                accumulated_pause_time=total_pause_time(session, now),
            )
            total = total_elapsed(closed, now)
            effective = effective_time(closed, now)

            updated = await self._sessions.update(
                session_id,
                {
                    "end_time": now,
                    "is_paused": False,
                    "pause_start_time": None,
                    "accumulated_pause_time": closed.accumulated_pause_time,
                    "end_reason": reason_value,
                    "final_duration": total,
                    "final_effective_duration": effective,
                    "last_modified": now,
                },
            )

        await self._audit(
            updated,
            EventType.SESSION_END,
            SessionEndDetails(
                end_reason=reason_value,
                total_duration=total,
                effective_duration=effective,
                accumulated_pause_time=updated.accumulated_pause_time,
            ),
            now,
        )

        completed: list[Goal] = []
        try:
            completed = await self._goal_tracker.track_session_completion(updated)
        except Exception:
            logger.exception(f"Goal tracking failed for session {session_id[:8]}")

        logger.info(
            f"Ended session {session_id[:8]} after {total}s ({effective}s effective), "
            f"reason={reason_value}"
        )
        _journal(
            LifecycleLogEntry(
                timestamp=now_iso(),
                owner_id=updated.owner_id,
                session_id=session_id,
                event_type="end",
                from_state=current.name,
                to_state=SessionState.ENDED.name,
                reason=reason_value,
                accumulated_pause_time=updated.accumulated_pause_time,
                total_duration=total,
                effective_duration=effective,
            )
        )
        return EndResult(
            session=updated,
            total_duration=total,
            effective_duration=effective,
            completed_goals=completed,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_current_session(self, owner_id: str) -> Session | None:
        """The owner's open session, if any."""
        return await self._sessions.find_open_by_owner(owner_id)

    async def get_effective_time(self, session_id: str) -> int:
        """Effective seconds of the session as of now."""
        session = await self._require(session_id)
        return effective_time(session, self._clock())

    async def get_goal_progress(self, session_id: str) -> GoalProgress | None:
        """Progress toward the session's own goal_duration, None if it has none."""
        session = await self._require(session_id)
        if session.goal_duration is None:
            return None
        return goal_progress(session, session.goal_duration, self._clock())

    async def get_session_stats(self, session_id: str) -> SessionTimeStats:
        """All timing figures for the session as of now."""
        session = await self._require(session_id)
        return session_time_stats(session, self._clock())

    async def get_pause_status(self, session_id: str) -> PauseStatus:
        """Pause state and cooldown for a session."""
        session = await self._require(session_id)
        now = self._clock()

        decision = None
        can_pause = False
        if state_of(session) is SessionState.ACTIVE:
            decision = await self._pause_policy.can_pause(session.owner_id)
            can_pause = decision.allowed

        return PauseStatus(
            is_paused=session.is_paused,
            can_pause=can_pause,
            current_pause_duration=current_pause_span(session, now),
            total_pause_time=total_pause_time(session, now),
            pause_start_time=session.pause_start_time,
            cooldown=decision if decision is not None and not decision.allowed else None,
        )

    async def get_pause_history(self, session_id: str) -> list[PauseRecord]:
        """Pauses of a session paired with their resumes, newest first."""
        pauses = await self._events.query_recent(
            EventFilter(session_id=session_id, type=EventType.SESSION_PAUSE)
        )
        resumes = await self._events.query_recent(
            EventFilter(session_id=session_id, type=EventType.SESSION_RESUME)
        )

        # Walk both oldest-first; each resume closes at most one pause
        remaining = sorted(resumes, key=lambda e: e.timestamp)
        history = []
        for pause in sorted(pauses, key=lambda e: e.timestamp):
            resume = next((r for r in remaining if r.timestamp >= pause.timestamp), None)
            if resume is not None:
                remaining.remove(resume)

            details = pause.details
            history.append(
                PauseRecord(
                    event_id=pause.id,
                    pause_time=pause.timestamp,
                    resume_time=resume.timestamp if resume else None,
                    duration=resume.details.duration if resume else None,  # type: ignore[union-attr]
                    reason=getattr(details, "reason", None),
                    custom_reason=getattr(details, "custom_reason", None),
                    notes=getattr(details, "notes", None),
                )
            )

        history.sort(key=lambda record: record.pause_time, reverse=True)
        return history
