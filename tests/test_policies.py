"""Tests for the pause and emergency cooldown policies."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from holdfast.persistence.models import (
    EmergencyUnlockDetails,
    EventType,
    OwnerSettings,
    PauseDetails,
    Session,
)
from holdfast.policies import (
    PAUSE_COOLDOWN_SECONDS,
    EmergencyCooldownPolicy,
    FailureMode,
    PauseCooldownPolicy,
)

T0 = datetime(2026, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


async def open_session(repo, owner="alice") -> Session:
    return await repo.sessions.create(Session(owner_id=owner, start_time=T0))


class TestPauseCooldownPolicy:
    """Tests for PauseCooldownPolicy."""

    def test_fails_closed(self):
        assert PauseCooldownPolicy.failure_mode is FailureMode.CLOSED
        assert PauseCooldownPolicy.cooldown_hours() == 4

    @pytest.mark.asyncio
    async def test_no_open_session_denies(self, repo, clock):
        policy = PauseCooldownPolicy(repo.sessions, repo.events, clock=clock)
        decision = await policy.can_pause("alice")
        assert not decision.allowed
        assert decision.reason == "no_open_session"

    @pytest.mark.asyncio
    async def test_first_pause_is_free(self, repo, clock):
        await open_session(repo)
        policy = PauseCooldownPolicy(repo.sessions, repo.events, clock=clock)

        decision = await policy.can_pause("alice")
        assert decision.allowed
        assert decision.reason == "first_use"

    @pytest.mark.asyncio
    async def test_boundary(self, repo, clock):
        """Denied at T0+W-1, allowed at T0+W."""
        session = await open_session(repo)
        await repo.events.append(
            "alice", EventType.SESSION_PAUSE, PauseDetails(), session_id=session.id, timestamp=T0
        )
        policy = PauseCooldownPolicy(repo.sessions, repo.events, clock=clock)

        clock.now = T0 + timedelta(seconds=PAUSE_COOLDOWN_SECONDS - 1)
        denied = await policy.can_pause("alice")
        assert not denied.allowed
        assert denied.remaining_seconds == 1
        assert denied.next_available == T0 + timedelta(seconds=PAUSE_COOLDOWN_SECONDS)
        assert denied.last_occurrence == T0

        clock.now = T0 + timedelta(seconds=PAUSE_COOLDOWN_SECONDS)
        assert (await policy.can_pause("alice")).allowed

    @pytest.mark.asyncio
    async def test_only_current_session_pauses_count(self, repo, clock):
        """A pause recorded against an older session does not apply."""
        session = await open_session(repo)
        await repo.events.append(
            "alice", EventType.SESSION_PAUSE, PauseDetails(), session_id="older", timestamp=T0
        )
        clock.advance(60)
        policy = PauseCooldownPolicy(repo.sessions, repo.events, clock=clock)

        decision = await policy.can_pause("alice")
        assert decision.allowed
        assert session.id != "older"

    @pytest.mark.asyncio
    async def test_lookup_failure_denies(self, clock):
        sessions = MagicMock()
        sessions.find_open_by_owner = AsyncMock(side_effect=RuntimeError("db down"))
        policy = PauseCooldownPolicy(sessions, MagicMock(), clock=clock)

        decision = await policy.can_pause("alice")
        assert not decision.allowed
        assert decision.reason == "check_failed"
        assert decision.error == "db down"

    @pytest.mark.asyncio
    async def test_cooldown_info(self, repo, clock):
        session = await open_session(repo)
        policy = PauseCooldownPolicy(repo.sessions, repo.events, clock=clock)
        assert await policy.cooldown_info("alice") == "Pause available now"

        await repo.events.append(
            "alice", EventType.SESSION_PAUSE, PauseDetails(), session_id=session.id, timestamp=T0
        )
        clock.now = T0 + timedelta(seconds=PAUSE_COOLDOWN_SECONDS - 3665)
        assert await policy.cooldown_info("alice") == "Next pause available in 1h 1m 5s"


class TestEmergencyCooldownPolicy:
    """Tests for EmergencyCooldownPolicy."""

    def test_fails_open(self):
        assert EmergencyCooldownPolicy.failure_mode is FailureMode.OPEN

    async def record_unlock(self, repo, when):
        await repo.events.append(
            "alice",
            EventType.EMERGENCY_UNLOCK,
            EmergencyUnlockDetails(reason="Other"),
            session_id="s1",
            timestamp=when,
        )

    @pytest.mark.asyncio
    async def test_default_window_for_owner_without_settings(self, repo, clock):
        await self.record_unlock(repo, T0)
        policy = EmergencyCooldownPolicy(repo.events, repo.settings, clock=clock)

        clock.now = T0 + timedelta(hours=1)
        decision = await policy.check("alice")
        assert not decision.allowed
        assert decision.next_available == T0 + timedelta(hours=24)

        clock.now = T0 + timedelta(hours=24)
        assert (await policy.check("alice")).allowed

    @pytest.mark.asyncio
    async def test_owner_configured_hours(self, repo, clock):
        await repo.settings.save_settings(
            OwnerSettings(owner_id="alice", emergency_unlock_cooldown_hours=2)
        )
        await self.record_unlock(repo, T0)
        policy = EmergencyCooldownPolicy(repo.events, repo.settings, clock=clock)

        clock.now = T0 + timedelta(hours=2)
        assert (await policy.check("alice")).allowed

    @pytest.mark.asyncio
    async def test_zero_hours_disables(self, repo, clock):
        await repo.settings.save_settings(
            OwnerSettings(owner_id="alice", emergency_unlock_cooldown_hours=0)
        )
        await self.record_unlock(repo, T0)
        policy = EmergencyCooldownPolicy(repo.events, repo.settings, clock=clock)

        decision = await policy.check("alice")
        assert decision.allowed
        assert decision.reason == "disabled"

    @pytest.mark.asyncio
    async def test_unlocks_outside_lookback_ignored(self, repo, clock):
        await repo.settings.save_settings(
            OwnerSettings(owner_id="alice", emergency_unlock_cooldown_hours=24 * 30)
        )
        await self.record_unlock(repo, T0)
        policy = EmergencyCooldownPolicy(repo.events, repo.settings, clock=clock)

        clock.now = T0 + timedelta(days=8)
        decision = await policy.check("alice")
        assert decision.allowed
        assert decision.reason == "first_use"

    @pytest.mark.asyncio
    async def test_lookup_failure_allows(self, clock):
        settings = MagicMock()
        settings.get_settings = AsyncMock(side_effect=RuntimeError("db down"))
        policy = EmergencyCooldownPolicy(MagicMock(), settings, clock=clock)

        decision = await policy.check("alice")
        assert decision.allowed
        assert decision.reason == "check_failed"
