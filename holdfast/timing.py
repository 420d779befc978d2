"""
Effective-Time Calculator

Pure functions converting a session's timestamps into elapsed, paused and
effective durations. Every function takes ``now`` explicitly; none reads an
ambient clock. Results are whole seconds, never negative; a malformed
timestamp yields 0.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from holdfast.persistence.models import Session, utcnow

logger = logging.getLogger(__name__)

# Injectable time source used by the stateful components
Clock = Callable[[], datetime]
system_clock: Clock = utcnow


def _whole_seconds(start: datetime | None, end: datetime | None) -> int:
    """Floor of seconds from start to end, clamped at 0. Bad input gives 0."""
    if start is None or end is None:
        return 0
    try:
        seconds = math.floor((end - start).total_seconds())
    except (TypeError, AttributeError, OverflowError, ValueError) as e:
        logger.error(f"Malformed timestamps ({start!r}, {end!r}): {e}")
        return 0
    return max(0, seconds)


def total_elapsed(session: Session, now: datetime) -> int:
    """Seconds between start_time and (end_time or now)."""
    return _whole_seconds(session.start_time, session.end_time or now)


def current_pause_span(session: Session, now: datetime) -> int:
    """Seconds of the pause in progress, or 0 when not paused or ended."""
    if not session.is_paused or session.end_time is not None:
        return 0
    return _whole_seconds(session.pause_start_time, now)


def total_pause_time(session: Session, now: datetime) -> int:
    """Accumulated pause time plus the pause in progress."""
    return max(0, session.accumulated_pause_time or 0) + current_pause_span(session, now)


def effective_time(session: Session, now: datetime) -> int:
    """Elapsed time minus all pause time."""
    effective = max(0, total_elapsed(session, now) - total_pause_time(session, now))
    logger.debug(
        f"Effective time for session {session.id[:8]}: {effective}s "
        f"(paused={session.is_paused}, ended={session.end_time is not None})"
    )
    return effective


@dataclass(frozen=True)
class GoalProgress:
    """Progress of one session toward a duration goal."""

    effective_time: int
    goal_time: int
    progress: float  # percentage, 0-100
    is_completed: bool
    time_remaining: int


def goal_progress(session: Session, goal_seconds: int, now: datetime) -> GoalProgress:
    """Progress of the session's effective time toward goal_seconds."""
    effective = effective_time(session, now)
    if goal_seconds <= 0:
        return GoalProgress(
            effective_time=effective,
            goal_time=goal_seconds,
            progress=0.0,
            is_completed=False,
            time_remaining=0,
        )

    return GoalProgress(
        effective_time=effective,
        goal_time=goal_seconds,
        progress=min(100.0, effective / goal_seconds * 100),
        is_completed=effective >= goal_seconds,
        time_remaining=max(0, goal_seconds - effective),
    )


@dataclass(frozen=True)
class SessionTimeStats:
    """Snapshot of every timing figure for a session."""

    total_duration: int
    effective_time: int
    accumulated_pause_time: int
    current_pause_duration: int
    total_pause_time: int
    pause_percentage: float
    is_active: bool
    is_paused: bool


def session_time_stats(session: Session, now: datetime) -> SessionTimeStats:
    """Collect all timing figures for a session at ``now``."""
    total = total_elapsed(session, now)
    paused = total_pause_time(session, now)
    return SessionTimeStats(
        total_duration=total,
        effective_time=effective_time(session, now),
        accumulated_pause_time=session.accumulated_pause_time,
        current_pause_duration=current_pause_span(session, now),
        total_pause_time=paused,
        pause_percentage=(paused / total * 100) if total > 0 else 0.0,
        is_active=session.end_time is None,
        is_paused=session.is_paused,
    )


def format_duration(seconds: int) -> str:
    """Render seconds as e.g. '1d 2h 3m 4s'; zero components are omitted."""
    if seconds <= 0:
        return "0s"

    days, rest = divmod(int(seconds), 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_time_remaining(seconds: int) -> str:
    """Compact countdown, e.g. '1h 1m 5s', '2m 5s', '45s'."""
    if seconds <= 0:
        return "0s"

    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
