"""
Holdfast Collaborator Interfaces

Abstract persistence seams consumed by the engine. The SQLite repository
implements all of them; tests and alternative backends may implement any
subset.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from holdfast.persistence.models import (
    AuditEvent,
    EventDetails,
    EventFilter,
    EventType,
    Goal,
    OwnerSettings,
    Session,
)


class SessionStore(ABC):
    """Storage for Session entities."""

    @abstractmethod
    async def create(self, session: Session) -> Session:
        """Persist a new session. Raises ConflictError if the owner already has an open one."""

    @abstractmethod
    async def find_by_id(self, session_id: str) -> Session | None:
        """Fetch a session by id."""

    @abstractmethod
    async def find_open_by_owner(self, owner_id: str) -> Session | None:
        """Fetch the owner's session without an end_time, if any."""

    @abstractmethod
    async def update(self, session_id: str, changes: dict[str, Any]) -> Session:
        """
        Apply a partial update and return the fresh row.

        last_modified is taken from ``changes`` when given, else stamped now.
        An update that sets end_time only applies to a session that is still
        open; on an ended session it raises InvalidStateError.
        """

    @abstractmethod
    async def list_by_owner(self, owner_id: str, limit: int = 50) -> list[Session]:
        """List the owner's sessions, most recent start first."""


class GoalStore(ABC):
    """Storage for Goal entities."""

    @abstractmethod
    async def create(self, goal: Goal) -> Goal:
        """Persist a new goal."""

    @abstractmethod
    async def find_incomplete_by_owner(self, owner_id: str) -> list[Goal]:
        """List the owner's goals that are not completed."""

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[Goal]:
        """List all of the owner's goals."""

    @abstractmethod
    async def update_progress(
        self,
        goal_id: str,
        current_value: float,
        completed_at: datetime | None = None,
    ) -> None:
        """Set current_value; a completed_at marks the goal completed."""


class AuditLog(ABC):
    """Append-only audit event log."""

    @abstractmethod
    async def append(
        self,
        owner_id: str,
        event_type: EventType,
        details: EventDetails,
        session_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> str:
        """Append an event and return its id."""

    @abstractmethod
    async def query_recent(self, event_filter: EventFilter) -> list[AuditEvent]:
        """Return matching events sorted newest-first."""


class SettingsProvider(ABC):
    """Read access to owner settings."""

    @abstractmethod
    async def get_settings(self, owner_id: str) -> OwnerSettings | None:
        """Fetch owner settings, or None if the owner never saved any."""


class RestrictionController(ABC):
    """Clears restriction flags after an emergency unlock."""

    @abstractmethod
    async def clear_restrictions(self, owner_id: str) -> list[str]:
        """Clear all active restriction flags and return the ones cleared."""
