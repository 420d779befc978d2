"""
Holdfast Engine

Wires the collaborators and the core components together and exposes the
caller-facing surface used by the CLI (or any other front end).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from holdfast.config import HoldfastConfig
from holdfast.emergency import EmergencyUnlockCoordinator, EmergencyUnlockResult
from holdfast.exceptions import NotFoundError
from holdfast.goals import GoalProgressTracker
from holdfast.guard import OperationGuard
from holdfast.lifecycle import EndResult, SessionLifecycleManager
from holdfast.persistence.models import (
    EmergencyReason,
    EndReason,
    Goal,
    GoalType,
    OwnerSettings,
    PauseReason,
    Session,
)
from holdfast.persistence.repository import HoldfastRepository
from holdfast.policies import EmergencyCooldownPolicy, PauseCooldownPolicy
from holdfast.timing import Clock, GoalProgress, system_clock

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """All wired components for one repository."""

    repository: HoldfastRepository
    config: HoldfastConfig
    guard: OperationGuard
    pause_policy: PauseCooldownPolicy
    emergency_policy: EmergencyCooldownPolicy
    goal_tracker: GoalProgressTracker
    lifecycle: SessionLifecycleManager
    emergency: EmergencyUnlockCoordinator

    # -------------------------------------------------------------------------
    # Session operations
    # -------------------------------------------------------------------------

    async def start_session(
        self,
        owner_id: str,
        goal_duration: int | None = None,
        is_hardcore_mode: bool = False,
        keyholder_approval_required: bool = False,
        notes: str | None = None,
    ) -> Session:
        return await self.lifecycle.start(
            owner_id,
            goal_duration=goal_duration,
            is_hardcore_mode=is_hardcore_mode,
            keyholder_approval_required=keyholder_approval_required,
            notes=notes,
        )

    async def pause_session(
        self,
        session_id: str,
        reason: PauseReason | str = PauseReason.OTHER,
        custom_reason: str | None = None,
        notes: str | None = None,
    ) -> Session:
        return await self.lifecycle.pause(
            session_id, reason=reason, custom_reason=custom_reason, notes=notes
        )

    async def resume_session(self, session_id: str, notes: str | None = None) -> Session:
        return await self.lifecycle.resume(session_id, notes=notes)

    async def end_session(
        self, session_id: str, end_reason: EndReason | str | None = None
    ) -> EndResult:
        return await self.lifecycle.end(session_id, end_reason=end_reason)

    async def perform_emergency_unlock(
        self,
        session_id: str,
        owner_id: str,
        reason: EmergencyReason | str,
        notes: str | None = None,
    ) -> EmergencyUnlockResult:
        return await self.emergency.perform_emergency_unlock(session_id, owner_id, reason, notes)

    async def get_effective_time(self, session_id: str) -> int:
        return await self.lifecycle.get_effective_time(session_id)

    async def get_goal_progress(self, session_id: str) -> GoalProgress | None:
        return await self.lifecycle.get_goal_progress(session_id)

    async def require_open_session(self, owner_id: str) -> Session:
        """
        The owner's open session.

        Raises:
            NotFoundError: If the owner has no open session
        """
        session = await self.lifecycle.get_current_session(owner_id)
        if session is None:
            raise NotFoundError(f"No open session for owner {owner_id}", "session", owner_id)
        return session

    # -------------------------------------------------------------------------
    # Goals and settings
    # -------------------------------------------------------------------------

    async def add_duration_goal(
        self,
        owner_id: str,
        title: str,
        target_seconds: int,
        description: str | None = None,
    ) -> Goal:
        goal = await self.repository.goals.create(
            Goal(
                owner_id=owner_id,
                goal_type=GoalType.DURATION,
                title=title,
                description=description,
                target_value=target_seconds,
                unit="seconds",
            )
        )
        logger.info(f"Added duration goal {goal.id[:8]} for owner {owner_id}: {target_seconds}s")
        return goal

    async def get_settings(self, owner_id: str) -> OwnerSettings:
        """Stored settings, or defaults built from config."""
        settings = await self.repository.settings.get_settings(owner_id)
        if settings is None:
            return OwnerSettings(
                owner_id=owner_id,
                emergency_unlock_cooldown_hours=self.config.default_emergency_cooldown_hours,
            )
        return settings

    async def save_settings(self, settings: OwnerSettings) -> None:
        await self.repository.settings.save_settings(settings)
        logger.info(f"Saved settings for owner {settings.owner_id}")


def create_engine(
    repository: HoldfastRepository,
    config: HoldfastConfig | None = None,
    clock: Clock = system_clock,
) -> Engine:
    """
    Build an Engine over a repository.

    Args:
        repository: Initialized (or lazily initializing) repository
        config: Settings; defaults when None
        clock: Wall-clock source shared by every component
    """
    config = config or HoldfastConfig()
    guard = OperationGuard(timeout_seconds=config.operation_timeout_seconds)

    pause_policy = PauseCooldownPolicy(repository.sessions, repository.events, clock=clock)
    emergency_policy = EmergencyCooldownPolicy(
        repository.events,
        repository.settings,
        clock=clock,
        default_hours=config.default_emergency_cooldown_hours,
        lookback_days=config.emergency_lookback_days,
    )
    goal_tracker = GoalProgressTracker(repository.goals, repository.events, clock=clock)

    lifecycle = SessionLifecycleManager(
        repository.sessions,
        repository.events,
        guard,
        pause_policy,
        goal_tracker,
        clock=clock,
    )
    emergency = EmergencyUnlockCoordinator(
        repository.sessions,
        repository.events,
        repository.settings,
        emergency_policy,
        guard=guard,
        clock=clock,
    )

    return Engine(
        repository=repository,
        config=config,
        guard=guard,
        pause_policy=pause_policy,
        emergency_policy=emergency_policy,
        goal_tracker=goal_tracker,
        lifecycle=lifecycle,
        emergency=emergency,
    )
