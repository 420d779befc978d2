"""
Log Entry Data Structures for Holdfast.

Structured entries for session lifecycle transitions and emergency unlocks.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass
class LifecycleLogEntry:
    """Log entry for session lifecycle events."""

    timestamp: str  # ISO 8601
    owner_id: str
    session_id: str
    event_type: str  # "start", "pause", "resume", "end", "error"

    # Transition
    from_state: str | None = None
    to_state: str | None = None
    reason: str | None = None

    # Timing (seconds)
    pause_duration: int | None = None
    accumulated_pause_time: int | None = None
    total_duration: int | None = None
    effective_duration: int | None = None

    # Error info (populated on "error" event)
    error: str | None = None
    error_type: str | None = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LifecycleLogEntry":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class EmergencyLogEntry:
    """Log entry for emergency unlock attempts."""

    timestamp: str  # ISO 8601
    owner_id: str
    session_id: str
    reason: str

    success: bool = False
    message: str = ""
    cooldown_until: str | None = None

    # Session snapshot at unlock
    session_duration_seconds: int = 0
    was_hardcore_mode: bool = False
    was_keyholder_controlled: bool = False

    # Secondary step failures (audit write, restriction clearing)
    bookkeeping_errors: list[str] | None = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmergencyLogEntry":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def now_iso() -> str:
    """Get current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
