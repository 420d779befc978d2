"""
Goal Progress Tracker

Advances the owner's duration goals when a session closes and emits an
achievement event the first time a goal reaches its target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from holdfast.persistence.models import AchievementDetails, EventType, Goal, GoalType, Session
from holdfast.persistence.stores import AuditLog, GoalStore
from holdfast.timing import Clock, effective_time, system_clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoalStatistics:
    """Aggregate view of an owner's goals."""

    total: int
    active: int
    completed: int
    completion_rate: float  # percentage, one decimal
    average_progress: float  # mean progress of active goals, one decimal


class GoalProgressTracker:
    """Feeds finished sessions into the owner's duration goals."""

    def __init__(self, goals: GoalStore, events: AuditLog, clock: Clock = system_clock):
        self._goals = goals
        self._events = events
        self._clock = clock

    @staticmethod
    def calculate_progress(goal: Goal) -> float:
        """Percentage toward target, clamped to [0, 100]; 0 for a non-positive target."""
        if goal.target_value <= 0:
            return 0.0
        return min(100.0, max(0.0, goal.current_value / goal.target_value * 100))

    @staticmethod
    def is_goal_completed(goal: Goal) -> bool:
        return goal.is_completed or goal.current_value >= goal.target_value

    async def track_session_completion(self, session: Session) -> list[Goal]:
        """
        Add the session's effective time to each open duration goal.

        Goals already marked complete are skipped, so repeated calls never
        award the same goal twice.

        Args:
            session: A session with end_time set

        Returns:
            Goals that were completed by this session
        """
        if session.end_time is None:
            logger.warning(f"Session {session.id[:8]} has no end time, skipping goal tracking")
            return []

        contribution = effective_time(session, session.end_time)
        if contribution <= 0:
            logger.debug(f"Session {session.id[:8]} has no effective time, skipping goal tracking")
            return []

        candidates = [
            goal
            for goal in await self._goals.find_incomplete_by_owner(session.owner_id)
            if goal.goal_type == GoalType.DURATION and not goal.is_completed
        ]
        if not candidates:
            logger.debug(f"No active duration goals for owner {session.owner_id}")
            return []

        completed = []
        for goal in candidates:
            updated = await self._advance(goal, contribution, session.id)
            if updated.is_completed:
                completed.append(updated)

        logger.info(
            f"Session {session.id[:8]} added {contribution}s to {len(candidates)} goal(s), "
            f"{len(completed)} completed"
        )
        return completed

    async def _advance(self, goal: Goal, seconds: int, session_id: str) -> Goal:
        new_value = goal.current_value + seconds

        if new_value < goal.target_value:
            await self._goals.update_progress(goal.id, new_value)
            logger.debug(f"Goal {goal.id[:8]} progress {goal.current_value} -> {new_value}")
            return replace(goal, current_value=new_value)

        completed_at = self._clock()
        await self._goals.update_progress(goal.id, new_value, completed_at=completed_at)
        done = replace(goal, current_value=new_value, is_completed=True, completed_at=completed_at)
        logger.info(f"Goal completed: {goal.title!r} ({goal.id[:8]}) for owner {goal.owner_id}")
        await self._emit_achievement(done, session_id)
        return done

    async def _emit_achievement(self, goal: Goal, session_id: str) -> None:
        # The goal is already stored as completed; a lost event must not undo that.
        try:
            await self._events.append(
                goal.owner_id,
                EventType.ACHIEVEMENT,
                AchievementDetails(
                    title=f"Goal Completed: {goal.title}",
                    description=goal.description or f"Completed {goal.title} successfully!",
                    goal_id=goal.id,
                    goal_type=goal.goal_type.value,
                    target_value=goal.target_value,
                    unit=goal.unit,
                ),
                session_id=session_id,
                timestamp=goal.completed_at,
            )
        except Exception:
            logger.exception(f"Failed to record achievement for goal {goal.id[:8]}")

    async def get_goal_statistics(self, owner_id: str) -> GoalStatistics:
        """Summarize the owner's goals."""
        goals = await self._goals.list_by_owner(owner_id)
        active = [g for g in goals if not g.is_completed]
        completed = [g for g in goals if g.is_completed]

        average = (
            sum(self.calculate_progress(g) for g in active) / len(active) if active else 0.0
        )
        rate = len(completed) / len(goals) * 100 if goals else 0.0

        return GoalStatistics(
            total=len(goals),
            active=len(active),
            completed=len(completed),
            completion_rate=round(rate, 1),
            average_progress=round(average, 1),
        )
