"""
Holdfast Persistence Layer

Entity models, the collaborator interfaces the engine consumes, and a
SQLite implementation of all of them.
"""

from holdfast.persistence.models import (
    AchievementDetails,
    # Audit
    AuditEvent,
    EmergencyReason,
    EmergencyUnlockDetails,
    EndReason,
    EventDetails,
    EventFilter,
    # Enums
    EventType,
    Goal,
    GoalType,
    OwnerSettings,
    PauseDetails,
    PauseReason,
    ResumeDetails,
    # Core entities
    Session,
    SessionEndDetails,
    SessionStartDetails,
)
from holdfast.persistence.repository import HoldfastRepository
from holdfast.persistence.stores import (
    AuditLog,
    GoalStore,
    RestrictionController,
    SessionStore,
    SettingsProvider,
)

__all__ = [
    # Enums
    "EventType",
    "EndReason",
    "PauseReason",
    "EmergencyReason",
    "GoalType",
    # Core entities
    "Session",
    "Goal",
    "OwnerSettings",
    # Audit
    "AuditEvent",
    "EventFilter",
    "EventDetails",
    "SessionStartDetails",
    "PauseDetails",
    "ResumeDetails",
    "SessionEndDetails",
    "EmergencyUnlockDetails",
    "AchievementDetails",
    # Interfaces
    "SessionStore",
    "GoalStore",
    "AuditLog",
    "SettingsProvider",
    "RestrictionController",
    # Repository
    "HoldfastRepository",
]
