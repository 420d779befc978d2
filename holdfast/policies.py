"""
Cooldown Policies

Two lookback policies gate repeated actions using the audit log:

- PauseCooldownPolicy: a new pause needs 4 hours since the session's last
  pause. Pausing is a privilege, so an unreadable history denies.
- EmergencyCooldownPolicy: an emergency unlock needs the owner's configured
  hours since their last emergency unlock. It is a safety valve, so an
  unreadable history allows.

The posture on lookup failure is the ``failure_mode`` attribute of each
policy. Both use the same boundary: allowed iff ``now - last >= window``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from holdfast.persistence.models import EventFilter, EventType
from holdfast.persistence.stores import AuditLog, SessionStore, SettingsProvider
from holdfast.timing import Clock, format_time_remaining, system_clock

logger = logging.getLogger(__name__)

PAUSE_COOLDOWN_SECONDS = 4 * 60 * 60
DEFAULT_EMERGENCY_COOLDOWN_HOURS = 24.0
EMERGENCY_LOOKBACK_DAYS = 7


class FailureMode(str, Enum):
    """What a policy answers when it cannot read its history."""

    OPEN = "open"  # allow
    CLOSED = "closed"  # deny


@dataclass(frozen=True)
class CooldownDecision:
    """Outcome of a cooldown check."""

    allowed: bool
    reason: str  # "first_use", "window_elapsed", "cooling_down", "no_open_session", ...
    last_occurrence: datetime | None = None
    next_available: datetime | None = None
    remaining_seconds: int | None = None
    error: str | None = None

    @property
    def message(self) -> str:
        """User-facing explanation of a denial."""
        if self.allowed:
            return "Available now"
        if self.remaining_seconds is not None:
            return f"Next available in {format_time_remaining(self.remaining_seconds)}"
        if self.reason == "no_open_session":
            return "No open session"
        return "Unavailable: cooldown state could not be verified"


class CooldownPolicy:
    """Shared lookback arithmetic and failure handling."""

    failure_mode: FailureMode = FailureMode.CLOSED

    def __init__(self, clock: Clock = system_clock):
        self._clock = clock

    def _evaluate(self, last: datetime, window_seconds: float) -> CooldownDecision:
        now = self._clock()
        elapsed = math.floor((now - last).total_seconds())
        next_available = last + timedelta(seconds=window_seconds)
        if elapsed >= window_seconds:
            return CooldownDecision(
                allowed=True,
                reason="window_elapsed",
                last_occurrence=last,
            )
        return CooldownDecision(
            allowed=False,
            reason="cooling_down",
            last_occurrence=last,
            next_available=next_available,
            remaining_seconds=math.ceil(window_seconds - elapsed),
        )

    def _on_lookup_failure(self, owner_id: str, error: Exception) -> CooldownDecision:
        allowed = self.failure_mode is FailureMode.OPEN
        logger.error(
            f"{type(self).__name__} lookup failed for owner {owner_id}; "
            f"failing {self.failure_mode.value}: {error}"
        )
        return CooldownDecision(allowed=allowed, reason="check_failed", error=str(error))


class PauseCooldownPolicy(CooldownPolicy):
    """Fixed 4-hour window between pauses of the owner's open session."""

    failure_mode = FailureMode.CLOSED

    def __init__(
        self,
        sessions: SessionStore,
        events: AuditLog,
        clock: Clock = system_clock,
    ):
        super().__init__(clock)
        self._sessions = sessions
        self._events = events

    @staticmethod
    def cooldown_hours() -> int:
        """Length of the pause window in hours."""
        return PAUSE_COOLDOWN_SECONDS // 3600

    async def can_pause(self, owner_id: str) -> CooldownDecision:
        """Decide whether the owner may pause their open session now."""
        try:
            session = await self._sessions.find_open_by_owner(owner_id)
            if session is None:
                return CooldownDecision(allowed=False, reason="no_open_session")

            recent = await self._events.query_recent(
                EventFilter(session_id=session.id, type=EventType.SESSION_PAUSE, limit=1)
            )
        except Exception as e:
            return self._on_lookup_failure(owner_id, e)

        if not recent:
            return CooldownDecision(allowed=True, reason="first_use")

        decision = self._evaluate(recent[0].timestamp, PAUSE_COOLDOWN_SECONDS)
        if not decision.allowed:
            logger.debug(
                f"Pause cooldown active for {owner_id}: {decision.remaining_seconds}s remaining"
            )
        return decision

    async def cooldown_info(self, owner_id: str) -> str:
        """One-line pause availability for display."""
        decision = await self.can_pause(owner_id)
        if decision.allowed:
            return "Pause available now"
        if decision.remaining_seconds is not None:
            return f"Next pause available in {format_time_remaining(decision.remaining_seconds)}"
        return decision.message


class EmergencyCooldownPolicy(CooldownPolicy):
    """Owner-configurable window between emergency unlocks."""

    failure_mode = FailureMode.OPEN

    def __init__(
        self,
        events: AuditLog,
        settings: SettingsProvider,
        clock: Clock = system_clock,
        default_hours: float = DEFAULT_EMERGENCY_COOLDOWN_HOURS,
        lookback_days: int = EMERGENCY_LOOKBACK_DAYS,
    ):
        super().__init__(clock)
        self._events = events
        self._settings = settings
        self.default_hours = default_hours
        self.lookback_days = lookback_days

    async def cooldown_hours_for(self, owner_id: str) -> float | None:
        """Owner's configured hours; the default when they have no settings."""
        settings = await self._settings.get_settings(owner_id)
        if settings is None:
            return self.default_hours
        return settings.emergency_unlock_cooldown_hours

    async def check(self, owner_id: str) -> CooldownDecision:
        """Decide whether the owner may perform an emergency unlock now."""
        try:
            hours = await self.cooldown_hours_for(owner_id)
            if not hours:
                return CooldownDecision(allowed=True, reason="disabled")

            since = self._clock() - timedelta(days=self.lookback_days)
            recent = await self._events.query_recent(
                EventFilter(
                    owner_id=owner_id,
                    type=EventType.EMERGENCY_UNLOCK,
                    since=since,
                    limit=1,
                )
            )
        except Exception as e:
            return self._on_lookup_failure(owner_id, e)

        if not recent:
            return CooldownDecision(allowed=True, reason="first_use")

        return self._evaluate(recent[0].timestamp, hours * 3600)
