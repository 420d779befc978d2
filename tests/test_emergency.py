"""Tests for the emergency unlock coordinator."""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from holdfast.exceptions import InvalidStateError, NotFoundError, OwnershipError
from holdfast.persistence.models import (
    EmergencyReason,
    EventFilter,
    EventType,
    OwnerSettings,
)


class TestPerformEmergencyUnlock:
    """Tests for perform_emergency_unlock."""

    @pytest.mark.asyncio
    async def test_unlock_ends_session(self, engine, clock):
        session = await engine.start_session("alice", is_hardcore_mode=True)
        clock.advance(500)

        result = await engine.perform_emergency_unlock(
            session.id, "alice", EmergencyReason.MEDICAL_EMERGENCY, notes="ER visit"
        )

        assert result.success
        assert result.session_id == session.id
        stored = await engine.repository.sessions.find_by_id(session.id)
        assert stored.end_time == clock.now
        assert stored.end_reason == "emergency_unlock"
        assert stored.is_emergency_unlock
        assert stored.emergency_reason == "Medical Emergency"
        assert stored.emergency_notes == "ER visit"
        assert stored.final_duration == 500

    @pytest.mark.asyncio
    async def test_unlock_records_rich_event(self, engine, clock):
        session = await engine.start_session("alice", keyholder_approval_required=True)
        clock.advance(100)
        await engine.pause_session(session.id)
        clock.advance(40)

        await engine.perform_emergency_unlock(session.id, "alice", "Safety Concern")

        events = await engine.repository.events.query_recent(
            EventFilter(session_id=session.id, type=EventType.EMERGENCY_UNLOCK)
        )
        assert len(events) == 1
        details = events[0].details
        assert details.reason == "Safety Concern"
        assert details.session_duration == 140
        assert details.accumulated_pause_time == 40
        assert details.effective_duration == 100
        assert details.was_keyholder_controlled
        assert not details.was_hardcore_mode

    @pytest.mark.asyncio
    async def test_cooldown_scenario(self, engine, clock):
        """Second unlock an hour later is denied until T0 + 24h."""
        t0 = clock.now
        first = await engine.start_session("alice")
        assert (await engine.perform_emergency_unlock(first.id, "alice", "Other")).success

        clock.advance(3600)
        second = await engine.start_session("alice")
        result = await engine.perform_emergency_unlock(second.id, "alice", "Other")

        assert not result.success
        assert result.cooldown_until == t0 + timedelta(seconds=86400)
        assert "cooldown" in result.message
        stored = await engine.repository.sessions.find_by_id(second.id)
        assert stored.is_open

    @pytest.mark.asyncio
    async def test_cooldown_disabled(self, engine, clock):
        await engine.save_settings(
            OwnerSettings(owner_id="alice", emergency_unlock_cooldown_hours=0)
        )
        first = await engine.start_session("alice")
        await engine.perform_emergency_unlock(first.id, "alice", "Other")

        clock.advance(60)
        second = await engine.start_session("alice")
        assert (await engine.perform_emergency_unlock(second.id, "alice", "Other")).success

    @pytest.mark.asyncio
    async def test_missing_session_raises(self, engine):
        with pytest.raises(NotFoundError):
            await engine.perform_emergency_unlock("missing", "alice", "Other")

    @pytest.mark.asyncio
    async def test_wrong_owner_raises(self, engine):
        session = await engine.start_session("alice")
        with pytest.raises(OwnershipError):
            await engine.perform_emergency_unlock(session.id, "mallory", "Other")

    @pytest.mark.asyncio
    async def test_already_ended_raises(self, engine):
        session = await engine.start_session("alice")
        await engine.end_session(session.id)
        with pytest.raises(InvalidStateError):
            await engine.perform_emergency_unlock(session.id, "alice", "Other")

    @pytest.mark.asyncio
    async def test_cooldown_lookup_failure_allows(self, engine):
        session = await engine.start_session("alice")
        with patch.object(
            engine.repository.settings,
            "get_settings",
            AsyncMock(side_effect=RuntimeError("db down")),
        ):
            result = await engine.perform_emergency_unlock(session.id, "alice", "Other")
        assert result.success

    @pytest.mark.asyncio
    async def test_clears_restrictions(self, engine):
        await engine.save_settings(
            OwnerSettings(owner_id="alice", active_restrictions=["hardcore_lock", "keyholder"])
        )
        session = await engine.start_session("alice")

        await engine.perform_emergency_unlock(session.id, "alice", "Other")

        settings = await engine.get_settings("alice")
        assert settings.active_restrictions == []
        events = await engine.repository.events.query_recent(
            EventFilter(owner_id="alice", type=EventType.EMERGENCY_UNLOCK)
        )
        assert events[0].details.restrictions_cleared == ["hardcore_lock", "keyholder"]

    @pytest.mark.asyncio
    async def test_bookkeeping_failures_swallowed(self, engine, isolated_logs):
        session = await engine.start_session("alice")

        with patch.object(
            engine.repository.settings,
            "clear_restrictions",
            AsyncMock(side_effect=RuntimeError("locked")),
        ), patch.object(
            engine.repository.events,
            "append",
            AsyncMock(side_effect=RuntimeError("disk full")),
        ):
            result = await engine.perform_emergency_unlock(session.id, "alice", "Other")

        assert result.success
        stored = await engine.repository.sessions.find_by_id(session.id)
        assert not stored.is_open

        entry = json.loads((isolated_logs / "emergency.jsonl").read_text().splitlines()[-1])
        assert entry["success"] is True
        assert len(entry["bookkeeping_errors"]) == 2


class TestEmergencyStats:
    """Tests for get_emergency_unlock_stats."""

    @pytest.mark.asyncio
    async def test_stats(self, engine, clock):
        await engine.save_settings(
            OwnerSettings(owner_id="alice", emergency_unlock_cooldown_hours=1)
        )
        for reason in ("Other", "Medical Emergency", "Other"):
            session = await engine.start_session("alice")
            await engine.perform_emergency_unlock(session.id, "alice", reason)
            last = clock.now
            clock.advance(hours=2)

        stats = await engine.emergency.get_emergency_unlock_stats("alice")

        assert stats.total_unlocks == 3
        assert stats.last_unlock == last
        assert stats.reason_breakdown == {"Other": 2, "Medical Emergency": 1}
        assert not stats.is_on_cooldown

    @pytest.mark.asyncio
    async def test_stats_on_cooldown(self, engine, clock):
        session = await engine.start_session("alice")
        await engine.perform_emergency_unlock(session.id, "alice", "Other")
        t0 = clock.now
        clock.advance(60)

        stats = await engine.emergency.get_emergency_unlock_stats("alice")
        assert stats.is_on_cooldown
        assert stats.cooldown_until == t0 + timedelta(hours=24)


class TestConcurrentUnlock:
    """Tests for unlocks racing on the same session."""

    @pytest.mark.asyncio
    async def test_second_unlock_sees_ended_session(self, engine, clock):
        session = await engine.start_session("alice")
        clock.advance(60)

        sessions = engine.repository.sessions
        original = sessions.find_by_id
        calls = 0

        async def find_by_id(session_id):
            nonlocal calls
            calls += 1
            snapshot = await original(session_id)
            if calls == 1:
                for _ in range(20):
                    await asyncio.sleep(0)
            return snapshot

        with patch.object(sessions, "find_by_id", find_by_id):
            results = await asyncio.gather(
                engine.perform_emergency_unlock(session.id, "alice", "Other"),
                engine.perform_emergency_unlock(session.id, "alice", "Other"),
                return_exceptions=True,
            )

        assert isinstance(results[0], InvalidStateError)
        assert results[1].success
        events = await engine.repository.events.query_recent(
            EventFilter(session_id=session.id, type=EventType.EMERGENCY_UNLOCK)
        )
        assert len(events) == 1
