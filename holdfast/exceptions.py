"""
Holdfast - Exception Hierarchy

All Holdfast-specific exceptions inherit from HoldfastError and carry a
``details`` dict so callers can surface structured metadata (remaining
cooldown, conflicting state, ...) without parsing messages.
"""

from datetime import datetime
from typing import Any


class HoldfastError(Exception):
    """Base exception for all Holdfast errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Configuration and Storage Errors
class ConfigError(HoldfastError):
    """Raised when configuration is invalid or missing."""

    pass


class StorageError(HoldfastError):
    """Raised when the persistence layer fails."""

    pass


# Lookup Errors
class NotFoundError(HoldfastError):
    """Raised when a referenced session or goal does not exist."""

    def __init__(self, message: str, entity: str, entity_id: str):
        super().__init__(message, {"entity": entity, "entity_id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


# State Errors
class InvalidStateError(HoldfastError):
    """Raised when an operation is illegal for the session's current state."""

    def __init__(self, message: str, session_id: str, state: str):
        super().__init__(message, {"session_id": session_id, "state": state})
        self.session_id = session_id
        self.state = state


class AlreadyInStateError(InvalidStateError):
    """Raised when a transition would leave the session where it already is."""

    pass


class StateTransitionError(HoldfastError):
    """Raised when an invalid state transition is attempted.

    Includes the current state and the attempted target state for debugging.
    """

    def __init__(self, message: str, from_state: str, to_state: str):
        super().__init__(message, {"from_state": from_state, "to_state": to_state})
        self.from_state = from_state
        self.to_state = to_state


# Policy Errors
class CooldownError(HoldfastError):
    """Raised when a cooldown policy denies an action.

    ``next_available`` and ``remaining_seconds`` are None when the policy
    could not be evaluated and denied by default.
    """

    def __init__(
        self,
        message: str,
        next_available: datetime | None = None,
        remaining_seconds: int | None = None,
    ):
        super().__init__(
            message,
            {
                "next_available": next_available.isoformat() if next_available else None,
                "remaining_seconds": remaining_seconds,
            },
        )
        self.next_available = next_available
        self.remaining_seconds = remaining_seconds


class ConflictError(HoldfastError):
    """Raised for a duplicate open session or a concurrent operation."""

    def __init__(self, message: str, conflict_type: str, owner_id: str | None = None):
        super().__init__(message, {"conflict_type": conflict_type, "owner_id": owner_id})
        self.conflict_type = conflict_type
        self.owner_id = owner_id


class OwnershipError(HoldfastError):
    """Raised when an owner acts on a session belonging to someone else.

    Named to avoid shadowing the built-in PermissionError.
    """

    def __init__(self, message: str, session_id: str, owner_id: str):
        super().__init__(message, {"session_id": session_id, "owner_id": owner_id})
        self.session_id = session_id
        self.owner_id = owner_id
