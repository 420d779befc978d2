"""
Emergency Unlock Coordinator

Safety-valve termination path. Ends a session immediately, bypassing the
normal end restrictions, subject only to its own per-owner cooldown.

Caller mistakes (unknown session, wrong owner, already ended) raise.
A cooldown denial is a normal outcome and comes back as a failed
EmergencyUnlockResult. Once the session is ended, the audit write and
restriction clearing are best effort: their failures are logged and
never undo the unlock.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from holdfast.exceptions import InvalidStateError, NotFoundError, OwnershipError
from holdfast.guard import OperationGuard, OperationType
from holdfast.logging import EmergencyLogEntry, emergency_logger, now_iso
from holdfast.persistence.models import (
    EmergencyReason,
    EmergencyUnlockDetails,
    EndReason,
    EventFilter,
    EventType,
    Session,
)
from holdfast.persistence.stores import AuditLog, RestrictionController, SessionStore
from holdfast.policies import EmergencyCooldownPolicy
from holdfast.timing import Clock, effective_time, system_clock, total_elapsed, total_pause_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmergencyUnlockResult:
    """Outcome of an emergency unlock attempt."""

    success: bool
    message: str
    session_id: str | None = None
    cooldown_until: datetime | None = None


@dataclass(frozen=True)
class EmergencyUnlockStats:
    """Emergency unlock usage over a trailing period."""

    total_unlocks: int
    last_unlock: datetime | None = None
    reason_breakdown: dict[str, int] = field(default_factory=dict)
    is_on_cooldown: bool = False
    cooldown_until: datetime | None = None


def _journal(entry: EmergencyLogEntry) -> None:
    try:
        emergency_logger.info(entry.to_json())
    except Exception as e:
        logger.debug(f"Could not write emergency log entry: {e}")


class EmergencyUnlockCoordinator:
    """Ends sessions through the emergency path with a full audit trail."""

    def __init__(
        self,
        sessions: SessionStore,
        events: AuditLog,
        restrictions: RestrictionController,
        policy: EmergencyCooldownPolicy,
        guard: OperationGuard | None = None,
        clock: Clock = system_clock,
    ):
        self._sessions = sessions
        self._events = events
        self._restrictions = restrictions
        self._policy = policy
        self._guard = guard or OperationGuard()
        self._clock = clock

    async def perform_emergency_unlock(
        self,
        session_id: str,
        owner_id: str,
        reason: EmergencyReason | str,
        notes: str | None = None,
    ) -> EmergencyUnlockResult:
        """
        End the owner's session immediately.

        Args:
            session_id: Session to end
            owner_id: Owner requesting the unlock; must own the session
            reason: Why the unlock was needed
            notes: Free-form explanation

        Returns:
            EmergencyUnlockResult; success is False when on cooldown

        Raises:
            NotFoundError: If the session does not exist
            OwnershipError: If the session belongs to another owner
            InvalidStateError: If the session has already ended
            ConflictError: If another operation is in progress for the owner
        """
        reason_value = reason.value if isinstance(reason, EmergencyReason) else str(reason)
        logger.info(f"Emergency unlock requested for session {session_id[:8]} ({reason_value})")

        await self._validate(session_id, owner_id)

        with self._guard.hold(owner_id, OperationType.EMERGENCY_UNLOCK, session_id):
            session = await self._validate(session_id, owner_id)
            decision = await self._policy.check(owner_id)
            if not decision.allowed:
                until = decision.next_available
                logger.warning(f"Emergency unlock blocked by cooldown for {owner_id} until {until}")
                message = (
                    f"Emergency unlock on cooldown until {until:%Y-%m-%d %H:%M:%S %Z}"
                    if until
                    else "Emergency unlock on cooldown"
                )
                _journal(
                    EmergencyLogEntry(
                        timestamp=now_iso(),
                        owner_id=owner_id,
                        session_id=session_id,
                        reason=reason_value,
                        success=False,
                        message=message,
                        cooldown_until=until.isoformat() if until else None,
                    )
                )
                return EmergencyUnlockResult(
                    success=False,
                    message=message,
                    session_id=session_id,
                    cooldown_until=until,
                )

            now = self._clock()
            # A trailing pause is folded in, same as a normal end
            closed = replace(
                session,
                end_time=now,
                is_paused=False,
                pause_start_time=None,
                accumulated_pause_time=total_pause_time(session, now),
            )
            updated = await self._sessions.update(
                session_id,
                {
                    "end_time": now,
                    "end_reason": EndReason.EMERGENCY_UNLOCK.value,
                    "is_emergency_unlock": True,
                    "emergency_reason": reason_value,
                    "emergency_notes": notes,
                    "is_paused": False,
                    "pause_start_time": None,
                    "accumulated_pause_time": closed.accumulated_pause_time,
                    "final_duration": total_elapsed(closed, now),
                    "final_effective_duration": effective_time(closed, now),
                    "last_modified": now,
                },
            )

            # Unlock event is written while the guard is still held
            bookkeeping_errors = []
            cleared: list[str] = []
            try:
                cleared = await self._restrictions.clear_restrictions(owner_id)
            except Exception as e:
                logger.exception(f"Failed to clear restrictions for {owner_id}")
                bookkeeping_errors.append(f"clear_restrictions: {e}")

            try:
                await self._record_unlock(updated, session, reason_value, notes, cleared, now)
            except Exception as e:
                logger.exception(f"Failed to record emergency unlock for session {session_id[:8]}")
                bookkeeping_errors.append(f"audit: {e}")

        duration = updated.final_duration or 0
        logger.info(
            f"Emergency unlock completed for session {session_id[:8]} after {duration}s"
        )
        message = "Emergency unlock successful. Session ended immediately."
        _journal(
            EmergencyLogEntry(
                timestamp=now_iso(),
                owner_id=owner_id,
                session_id=session_id,
                reason=reason_value,
                success=True,
                message=message,
                session_duration_seconds=duration,
                was_hardcore_mode=session.is_hardcore_mode,
                was_keyholder_controlled=session.keyholder_approval_required,
                bookkeeping_errors=bookkeeping_errors or None,
            )
        )
        return EmergencyUnlockResult(success=True, message=message, session_id=session_id)

    async def _validate(self, session_id: str, owner_id: str) -> Session:
        session = await self._sessions.find_by_id(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", "session", session_id)
        if session.owner_id != owner_id:
            raise OwnershipError("Session does not belong to owner", session_id, owner_id)
        if session.end_time is not None:
            raise InvalidStateError("Session is already ended", session_id, "ENDED")
        return session

    async def _record_unlock(
        self,
        ended: Session,
        before: Session,
        reason: str,
        notes: str | None,
        cleared: list[str],
        timestamp: datetime,
    ) -> None:
        await self._events.append(
            ended.owner_id,
            EventType.EMERGENCY_UNLOCK,
            EmergencyUnlockDetails(
                reason=reason,
                notes=notes,
                session_duration=ended.final_duration or 0,
                effective_duration=ended.final_effective_duration or 0,
                was_hardcore_mode=before.is_hardcore_mode,
                was_keyholder_controlled=before.keyholder_approval_required,
                accumulated_pause_time=ended.accumulated_pause_time,
                restrictions_cleared=cleared,
            ),
            session_id=ended.id,
            timestamp=timestamp,
        )

    async def get_emergency_unlock_stats(
        self, owner_id: str, days: int = 30
    ) -> EmergencyUnlockStats:
        """Count the owner's emergency unlocks over the last ``days`` days."""
        since = self._clock() - timedelta(days=days)
        unlocks = await self._events.query_recent(
            EventFilter(owner_id=owner_id, type=EventType.EMERGENCY_UNLOCK, since=since)
        )

        breakdown = Counter(
            getattr(event.details, "reason", None) or "Unknown" for event in unlocks
        )
        decision = await self._policy.check(owner_id)

        return EmergencyUnlockStats(
            total_unlocks=len(unlocks),
            last_unlock=unlocks[0].timestamp if unlocks else None,
            reason_breakdown=dict(breakdown),
            is_on_cooldown=not decision.allowed,
            cooldown_until=decision.next_available if not decision.allowed else None,
        )
