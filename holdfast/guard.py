"""
Concurrent-Operation Guard

Advisory, in-process, per-owner tracker of in-flight lifecycle operations.
It does not block or queue: ``start`` overwrites whatever is tracked, and
callers are expected to check ``is_in_progress`` first and reject the
request if it is true (``hold`` does exactly that).

Entries older than the timeout are treated as stale and cleared on the
next check, so a crashed operation never needs an explicit release.

This provides no exclusion across processes or devices. A multi-process
deployment would replace the map with a persisted lease record
(owner -> type, expires_at) written by compare-and-swap.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from holdfast.exceptions import ConflictError
from holdfast.persistence.models import Session

logger = logging.getLogger(__name__)

OPERATION_TIMEOUT_SECONDS = 30.0


class OperationType(str, Enum):
    """Lifecycle operations tracked by the guard."""

    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    END = "end"
    EMERGENCY_UNLOCK = "emergency_unlock"


@dataclass(frozen=True)
class PendingOperation:
    """One tracked in-flight operation."""

    type: OperationType
    started_at: float  # guard clock reading
    session_id: str | None = None


@dataclass
class GuardStats:
    """Counters for guard activity."""

    started: int = 0
    completed: int = 0
    expired: int = 0
    overwritten: int = 0
    rejected: int = 0


class OperationGuard:
    """
    Per-owner pending-operation map with bounded expiry.

    The clock is injectable so tests can move time; it must be monotonic
    seconds (``time.monotonic`` by default).
    """

    def __init__(
        self,
        timeout_seconds: float = OPERATION_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize guard.

        Args:
            timeout_seconds: Age after which an entry is stale
            clock: Monotonic seconds source
        """
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._pending: dict[str, PendingOperation] = {}
        self._stats = GuardStats()

    @property
    def stats(self) -> GuardStats:
        """Get guard statistics."""
        return self._stats

    def _is_stale(self, pending: PendingOperation, now: float) -> bool:
        return now - pending.started_at > self.timeout_seconds

    def is_in_progress(self, owner_id: str, operation_type: OperationType | None = None) -> bool:
        """
        Check whether the owner has a live tracked operation.

        Args:
            owner_id: Owner to check
            operation_type: If given, only an operation of this type counts

        Returns:
            True if a non-stale matching entry exists
        """
        pending = self._pending.get(owner_id)
        if pending is None:
            return False

        now = self._clock()
        if self._is_stale(pending, now):
            logger.warning(
                f"Clearing timed out {pending.type.value} operation for owner {owner_id} "
                f"(age {now - pending.started_at:.1f}s)"
            )
            del self._pending[owner_id]
            self._stats.expired += 1
            return False

        if operation_type is not None and pending.type != operation_type:
            return False
        return True

    def start(
        self,
        owner_id: str,
        operation_type: OperationType,
        session_id: str | None = None,
    ) -> None:
        """Track an operation as started, overwriting any live entry."""
        if self.is_in_progress(owner_id):
            existing = self._pending[owner_id]
            logger.warning(
                f"Starting {operation_type.value} for owner {owner_id} while "
                f"{existing.type.value} is still in progress"
            )
            self._stats.overwritten += 1

        self._pending[owner_id] = PendingOperation(
            type=operation_type,
            started_at=self._clock(),
            session_id=session_id,
        )
        self._stats.started += 1
        logger.debug(f"Operation {operation_type.value} started for owner {owner_id}")

    def complete(self, owner_id: str, operation_type: OperationType) -> None:
        """Remove the owner's tracked operation."""
        pending = self._pending.get(owner_id)
        if pending is None:
            logger.debug(f"No pending operation to complete for owner {owner_id}")
            return

        if pending.type != operation_type:
            logger.warning(
                f"Completing {operation_type.value} for owner {owner_id} but "
                f"{pending.type.value} was tracked"
            )

        del self._pending[owner_id]
        self._stats.completed += 1
        logger.debug(f"Operation {operation_type.value} completed for owner {owner_id}")

    def sweep_expired(self) -> int:
        """Drop every stale entry. Returns how many were removed."""
        now = self._clock()
        stale = [owner for owner, op in self._pending.items() if self._is_stale(op, now)]
        for owner_id in stale:
            del self._pending[owner_id]

        if stale:
            self._stats.expired += len(stale)
            logger.info(f"Cleared {len(stale)} stale operation(s)")
        return len(stale)

    def pending_operations(self) -> dict[str, PendingOperation]:
        """Snapshot of the tracked operations."""
        return dict(self._pending)

    def clear_all(self) -> None:
        """Forget every tracked operation."""
        self._pending.clear()
        logger.debug("All pending operations cleared")

    @contextmanager
    def hold(
        self,
        owner_id: str,
        operation_type: OperationType,
        session_id: str | None = None,
    ) -> Generator[None, None, None]:
        """
        Check, start and always complete an operation around a block.

        Raises:
            ConflictError: If the owner already has an operation in progress
        """
        if self.is_in_progress(owner_id):
            existing = self._pending[owner_id]
            self._stats.rejected += 1
            raise ConflictError(
                f"A {existing.type.value} operation is already in progress",
                conflict_type="operation_in_progress",
                owner_id=owner_id,
            )

        self.start(owner_id, operation_type, session_id)
        try:
            yield
        finally:
            self.complete(owner_id, operation_type)


# =========================================================================
# OPTIMISTIC CONFLICT DETECTION
# =========================================================================


class ConflictType(str, Enum):
    """Ways an in-hand session snapshot can disagree with fresh state."""

    STALE_DATA = "stale_data"
    SESSION_ENDED = "session_ended"
    PAUSE_STATE_MISMATCH = "pause_state_mismatch"


@dataclass(frozen=True)
class ExpectedState:
    """
    What a caller believes about a session before writing.

    ``last_modified`` is the version the caller read; ``expect_open`` says
    the caller assumes the session has not ended; ``is_paused`` is checked
    only when not None.
    """

    last_modified: datetime | None = None
    expect_open: bool = True
    is_paused: bool | None = None

    @classmethod
    def from_snapshot(cls, session: Session) -> ExpectedState:
        """Expect exactly what a previously read snapshot showed."""
        return cls(
            last_modified=session.last_modified,
            expect_open=session.end_time is None,
            is_paused=session.is_paused,
        )


@dataclass(frozen=True)
class ConflictReport:
    """Result of detect_conflict."""

    has_conflict: bool
    conflict_type: ConflictType | None = None
    message: str | None = None


def detect_conflict(current: Session | None, expected: ExpectedState) -> ConflictReport:
    """
    Compare freshly read session state against what the caller expected.

    Checks run in order: stale version, unexpected end, pause flag.
    A missing session is not a conflict (NotFound is the caller's concern).
    """
    if current is None:
        return ConflictReport(has_conflict=False)

    if (
        expected.last_modified is not None
        and current.last_modified is not None
        and expected.last_modified < current.last_modified
    ):
        return ConflictReport(
            has_conflict=True,
            conflict_type=ConflictType.STALE_DATA,
            message="Session was modified elsewhere. Refresh and try again.",
        )

    if expected.expect_open and current.end_time is not None:
        return ConflictReport(
            has_conflict=True,
            conflict_type=ConflictType.SESSION_ENDED,
            message="Session has already ended. Cannot perform this operation.",
        )

    if expected.is_paused is not None and current.is_paused != expected.is_paused:
        wanted = "paused" if expected.is_paused else "active"
        found = "paused" if current.is_paused else "active"
        return ConflictReport(
            has_conflict=True,
            conflict_type=ConflictType.PAUSE_STATE_MISMATCH,
            message=f"Session pause state has changed. Expected {wanted}, but found {found}.",
        )

    return ConflictReport(has_conflict=False)
