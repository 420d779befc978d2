"""
Holdfast Persistence Models

Dataclasses that map to SQLite tables for the session engine.
Designed for:
- Type safety with enums and Optional types
- Easy serialization to/from database rows
- Typed audit payloads keyed by event type instead of open dicts
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union


# ============================================================================
# ENUMS - Type-safe values matching SQL schema
# ============================================================================


class EventType(str, Enum):
    """Audit event types produced and consumed by the engine."""

    SESSION_START = "session_start"
    SESSION_PAUSE = "session_pause"
    SESSION_RESUME = "session_resume"
    SESSION_END = "session_end"
    EMERGENCY_UNLOCK = "emergency_unlock"
    ACHIEVEMENT = "achievement"


class EndReason(str, Enum):
    """Well-known end reasons. Callers may store any other string."""

    MANUAL = "manual"
    GOAL_REACHED = "goal_reached"
    KEYHOLDER = "keyholder"
    EMERGENCY_UNLOCK = "emergency_unlock"


class PauseReason(str, Enum):
    """Reason categories offered for a pause."""

    CLEANING = "Cleaning"
    MEDICAL = "Medical"
    EXERCISE = "Exercise"
    OTHER = "Other"


class EmergencyReason(str, Enum):
    """Reason categories offered for an emergency unlock."""

    MEDICAL_EMERGENCY = "Medical Emergency"
    SAFETY_CONCERN = "Safety Concern"
    EQUIPMENT_MALFUNCTION = "Equipment Malfunction"
    URGENT_SITUATION = "Urgent Situation"
    OTHER = "Other"


class GoalType(str, Enum):
    """Goal categories. Only DURATION goals are advanced by sessions."""

    DURATION = "duration"
    TASK_COMPLETION = "task_completion"
    BEHAVIORAL = "behavioral"
    MILESTONE = "milestone"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def generate_id() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO datetime string to datetime object."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None


def format_datetime(value: datetime | None) -> str | None:
    """Format a datetime for storage.

    Aware values are normalized to UTC with fixed microsecond precision so
    stored strings sort chronologically.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def parse_json_or_dict(value: str | dict | None) -> dict:
    """Parse JSON string to dict, or return empty dict."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    try:
        result = json.loads(value)
        return result if isinstance(result, dict) else {}
    except (json.JSONDecodeError, TypeError):
        return {}


def parse_json_or_list(value: str | list | None) -> list:
    """Parse JSON string to list, or return empty list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    try:
        result = json.loads(value)
        return result if isinstance(result, list) else []
    except (json.JSONDecodeError, TypeError):
        return []


def to_json(value: list | dict | None) -> str | None:
    """Convert list or dict to JSON string."""
    if value is None:
        return None
    return json.dumps(value, default=str)


# ============================================================================
# EVENT PAYLOADS - one concrete shape per EventType
# ============================================================================


class _Details:
    """Shared (de)serialization for event payload dataclasses."""

    event_type: ClassVar[EventType]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Any:
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SessionStartDetails(_Details):
    event_type: ClassVar[EventType] = EventType.SESSION_START

    goal_duration: int | None = None
    is_hardcore_mode: bool = False
    keyholder_approval_required: bool = False
    notes: str | None = None


@dataclass
class PauseDetails(_Details):
    event_type: ClassVar[EventType] = EventType.SESSION_PAUSE

    reason: str = PauseReason.OTHER.value
    custom_reason: str | None = None
    notes: str | None = None


@dataclass
class ResumeDetails(_Details):
    event_type: ClassVar[EventType] = EventType.SESSION_RESUME

    duration: int = 0  # Length of the pause just closed, seconds
    notes: str | None = None


@dataclass
class SessionEndDetails(_Details):
    event_type: ClassVar[EventType] = EventType.SESSION_END

    end_reason: str | None = None
    total_duration: int = 0
    effective_duration: int = 0
    accumulated_pause_time: int = 0


@dataclass
class EmergencyUnlockDetails(_Details):
    event_type: ClassVar[EventType] = EventType.EMERGENCY_UNLOCK

    reason: str = EmergencyReason.OTHER.value
    notes: str | None = None
    session_duration: int = 0
    effective_duration: int = 0
    was_hardcore_mode: bool = False
    was_keyholder_controlled: bool = False
    accumulated_pause_time: int = 0
    restrictions_cleared: list[str] = field(default_factory=list)


@dataclass
class AchievementDetails(_Details):
    event_type: ClassVar[EventType] = EventType.ACHIEVEMENT

    action: str = "goal_completed"
    title: str = ""
    description: str = ""
    goal_id: str = ""
    goal_type: str = GoalType.DURATION.value
    target_value: float = 0
    unit: str = "seconds"


EventDetails = Union[
    SessionStartDetails,
    PauseDetails,
    ResumeDetails,
    SessionEndDetails,
    EmergencyUnlockDetails,
    AchievementDetails,
]

EVENT_DETAIL_TYPES: dict[EventType, type] = {
    cls.event_type: cls
    for cls in (
        SessionStartDetails,
        PauseDetails,
        ResumeDetails,
        SessionEndDetails,
        EmergencyUnlockDetails,
        AchievementDetails,
    )
}


def decode_details(event_type: EventType | str, data: str | dict | None) -> EventDetails:
    """Rebuild the typed payload for an event type from stored JSON."""
    detail_cls = EVENT_DETAIL_TYPES[EventType(event_type)]
    return detail_cls.from_dict(parse_json_or_dict(data))


# ============================================================================
# CORE ENTITIES
# ============================================================================


@dataclass
class Session:
    """
    A single restriction interval for one owner.

    Maps to: sessions table
    ``end_time`` set means terminal; ``is_paused`` and ``pause_start_time``
    are always set together.
    """

    id: str = field(default_factory=generate_id)
    owner_id: str = ""
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    is_paused: bool = False
    pause_start_time: datetime | None = None
    accumulated_pause_time: int = 0  # seconds
    goal_duration: int | None = None  # seconds
    is_hardcore_mode: bool = False
    keyholder_approval_required: bool = False
    notes: str | None = None
    end_reason: str | None = None
    is_emergency_unlock: bool = False
    emergency_reason: str | None = None
    emergency_notes: str | None = None
    final_duration: int | None = None  # seconds, set on end
    final_effective_duration: int | None = None  # seconds, set on end
    last_modified: datetime = field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        """True while the session has not ended."""
        return self.end_time is None

    @classmethod
    def from_row(cls, row: Any) -> Session:
        """Create from database row (sqlite3.Row)."""
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            start_time=parse_datetime(row["start_time"]) or utcnow(),
            end_time=parse_datetime(row["end_time"]),
            is_paused=bool(row["is_paused"]),
            pause_start_time=parse_datetime(row["pause_start_time"]),
            accumulated_pause_time=row["accumulated_pause_time"] or 0,
            goal_duration=row["goal_duration"],
            is_hardcore_mode=bool(row["is_hardcore_mode"]),
            keyholder_approval_required=bool(row["keyholder_approval_required"]),
            notes=row["notes"],
            end_reason=row["end_reason"],
            is_emergency_unlock=bool(row["is_emergency_unlock"]),
            emergency_reason=row["emergency_reason"],
            emergency_notes=row["emergency_notes"],
            final_duration=row["final_duration"],
            final_effective_duration=row["final_effective_duration"],
            last_modified=parse_datetime(row["last_modified"]) or utcnow(),
        )

    def to_row(self) -> dict[str, Any]:
        """Convert to named parameters for INSERT/UPDATE."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "start_time": format_datetime(self.start_time),
            "end_time": format_datetime(self.end_time),
            "is_paused": 1 if self.is_paused else 0,
            "pause_start_time": format_datetime(self.pause_start_time),
            "accumulated_pause_time": self.accumulated_pause_time,
            "goal_duration": self.goal_duration,
            "is_hardcore_mode": 1 if self.is_hardcore_mode else 0,
            "keyholder_approval_required": 1 if self.keyholder_approval_required else 0,
            "notes": self.notes,
            "end_reason": self.end_reason,
            "is_emergency_unlock": 1 if self.is_emergency_unlock else 0,
            "emergency_reason": self.emergency_reason,
            "emergency_notes": self.emergency_notes,
            "final_duration": self.final_duration,
            "final_effective_duration": self.final_effective_duration,
            "last_modified": format_datetime(self.last_modified),
        }


@dataclass
class Goal:
    """
    A target/progress pair owned by a user.

    Maps to: goals table
    """

    id: str = field(default_factory=generate_id)
    owner_id: str = ""
    goal_type: GoalType = GoalType.DURATION
    title: str = ""
    description: str | None = None
    target_value: float = 0
    current_value: float = 0
    unit: str = "seconds"
    is_completed: bool = False
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Any) -> Goal:
        """Create from database row (sqlite3.Row)."""
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            goal_type=GoalType(row["goal_type"]),
            title=row["title"],
            description=row["description"],
            target_value=row["target_value"],
            current_value=row["current_value"],
            unit=row["unit"] or "seconds",
            is_completed=bool(row["is_completed"]),
            completed_at=parse_datetime(row["completed_at"]),
            created_at=parse_datetime(row["created_at"]) or utcnow(),
        )

    def to_row(self) -> dict[str, Any]:
        """Convert to named parameters for INSERT."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "goal_type": self.goal_type.value,
            "title": self.title,
            "description": self.description,
            "target_value": self.target_value,
            "current_value": self.current_value,
            "unit": self.unit,
            "is_completed": 1 if self.is_completed else 0,
            "completed_at": format_datetime(self.completed_at),
            "created_at": format_datetime(self.created_at),
        }


@dataclass
class AuditEvent:
    """
    An append-only audit record.

    Maps to: events table
    Also the lookback source for cooldown decisions.
    """

    id: str = field(default_factory=generate_id)
    owner_id: str = ""
    session_id: str | None = None
    type: EventType = EventType.SESSION_START
    timestamp: datetime = field(default_factory=utcnow)
    details: EventDetails = field(default_factory=SessionStartDetails)

    @classmethod
    def from_row(cls, row: Any) -> AuditEvent:
        """Create from database row (sqlite3.Row)."""
        event_type = EventType(row["type"])
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            session_id=row["session_id"],
            type=event_type,
            timestamp=parse_datetime(row["timestamp"]) or utcnow(),
            details=decode_details(event_type, row["details"]),
        )


@dataclass
class OwnerSettings:
    """
    Read-only owner preferences consumed by the engine.

    Maps to: owner_settings table
    A cooldown of None or 0 hours disables the emergency cooldown.
    """

    owner_id: str = ""
    emergency_unlock_cooldown_hours: float | None = 24.0
    is_hardcore_mode: bool = False
    active_restrictions: list[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Any) -> OwnerSettings:
        """Create from database row (sqlite3.Row)."""
        return cls(
            owner_id=row["owner_id"],
            emergency_unlock_cooldown_hours=row["emergency_unlock_cooldown_hours"],
            is_hardcore_mode=bool(row["is_hardcore_mode"]),
            active_restrictions=parse_json_or_list(row["active_restrictions"]),
        )

    def to_row(self) -> dict[str, Any]:
        """Convert to named parameters for INSERT/UPDATE."""
        return {
            "owner_id": self.owner_id,
            "emergency_unlock_cooldown_hours": self.emergency_unlock_cooldown_hours,
            "is_hardcore_mode": 1 if self.is_hardcore_mode else 0,
            "active_restrictions": to_json(self.active_restrictions),
        }


@dataclass
class EventFilter:
    """Query filter for AuditLog.query_recent."""

    owner_id: str | None = None
    session_id: str | None = None
    type: EventType | None = None
    since: datetime | None = None
    limit: int | None = None
