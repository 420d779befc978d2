"""Tests for the SQLite repository."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from holdfast.exceptions import ConflictError, InvalidStateError, NotFoundError, StorageError
from holdfast.persistence.models import (
    EventFilter,
    EventType,
    OwnerSettings,
    PauseDetails,
    ResumeDetails,
    Session,
)
from holdfast.persistence.repository import HoldfastRepository

T0 = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class TestRepositoryLifecycle:
    """Tests for opening and closing the database."""

    def test_context_manager(self, tmp_path):
        db = tmp_path / "nested" / "holdfast.db"
        with HoldfastRepository(db) as repo:
            assert repo.conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert db.exists()

    def test_schema_idempotent(self, tmp_path):
        db = tmp_path / "holdfast.db"
        with HoldfastRepository(db):
            pass
        with HoldfastRepository(db) as repo:
            tables = {
                row[0]
                for row in repo.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        assert {"sessions", "goals", "events", "owner_settings"} <= tables

    def test_transaction_rolls_back(self, repo):
        with pytest.raises(sqlite3.IntegrityError):
            with repo.transaction() as cursor:
                cursor.execute(
                    "INSERT INTO owner_settings (owner_id, is_hardcore_mode) VALUES ('a', 0)"
                )
                cursor.execute(
                    "INSERT INTO owner_settings (owner_id, is_hardcore_mode) VALUES ('a', 0)"
                )

        assert repo.conn.execute("SELECT COUNT(*) FROM owner_settings").fetchone()[0] == 0

    def test_execute_wraps_errors(self, repo):
        with pytest.raises(StorageError):
            repo.execute("SELECT * FROM no_such_table")


class TestSessionStore:
    """Tests for SqliteSessionStore."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, repo):
        session = await repo.sessions.create(
            Session(owner_id="alice", start_time=T0, goal_duration=60, is_hardcore_mode=True)
        )

        found = await repo.sessions.find_by_id(session.id)
        assert found.start_time == T0
        assert found.goal_duration == 60
        assert found.is_hardcore_mode
        assert (await repo.sessions.find_open_by_owner("alice")).id == session.id

    @pytest.mark.asyncio
    async def test_one_open_session_per_owner(self, repo):
        await repo.sessions.create(Session(owner_id="alice", start_time=T0))

        with pytest.raises(ConflictError):
            await repo.sessions.create(Session(owner_id="alice", start_time=T0))

    @pytest.mark.asyncio
    async def test_update_stamps_last_modified(self, repo):
        session = await repo.sessions.create(
            Session(owner_id="alice", start_time=T0, last_modified=T0)
        )

        updated = await repo.sessions.update(
            session.id, {"is_paused": True, "pause_start_time": T0 + timedelta(seconds=5)}
        )

        assert updated.is_paused
        assert updated.pause_start_time == T0 + timedelta(seconds=5)
        assert updated.last_modified > T0

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_columns(self, repo):
        session = await repo.sessions.create(Session(owner_id="alice", start_time=T0))
        with pytest.raises(StorageError):
            await repo.sessions.update(session.id, {"owner_id": "mallory"})

    @pytest.mark.asyncio
    async def test_update_missing(self, repo):
        with pytest.raises(NotFoundError):
            await repo.sessions.update("missing", {"notes": "x"})

    @pytest.mark.asyncio
    async def test_pause_flag_requires_start_time(self, repo):
        session = await repo.sessions.create(Session(owner_id="alice", start_time=T0))
        with pytest.raises(StorageError):
            await repo.sessions.update(session.id, {"is_paused": True})

    @pytest.mark.asyncio
    async def test_list_by_owner_newest_first(self, repo):
        first = await repo.sessions.create(Session(owner_id="alice", start_time=T0))
        await repo.sessions.update(first.id, {"end_time": T0 + timedelta(hours=1)})
        second = await repo.sessions.create(
            Session(owner_id="alice", start_time=T0 + timedelta(hours=2))
        )

        listed = await repo.sessions.list_by_owner("alice")
        assert [s.id for s in listed] == [second.id, first.id]


class TestAuditLog:
    """Tests for SqliteAuditLog."""

    @pytest.mark.asyncio
    async def test_typed_details_round_trip(self, repo):
        await repo.events.append(
            "alice", EventType.SESSION_RESUME, ResumeDetails(duration=42), session_id="s1", timestamp=T0
        )

        events = await repo.events.query_recent(EventFilter(session_id="s1"))
        assert isinstance(events[0].details, ResumeDetails)
        assert events[0].details.duration == 42
        assert events[0].timestamp == T0

    @pytest.mark.asyncio
    async def test_query_filters_and_order(self, repo):
        for minutes in (0, 10, 20):
            await repo.events.append(
                "alice",
                EventType.SESSION_PAUSE,
                PauseDetails(notes=str(minutes)),
                session_id="s1",
                timestamp=T0 + timedelta(minutes=minutes),
            )
        await repo.events.append("bob", EventType.SESSION_PAUSE, PauseDetails(), timestamp=T0)

        recent = await repo.events.query_recent(
            EventFilter(owner_id="alice", type=EventType.SESSION_PAUSE, limit=2)
        )
        assert [e.details.notes for e in recent] == ["20", "10"]

        since = await repo.events.query_recent(
            EventFilter(owner_id="alice", since=T0 + timedelta(minutes=10))
        )
        assert len(since) == 2


class TestSettingsStore:
    """Tests for SqliteSettingsStore."""

    @pytest.mark.asyncio
    async def test_missing_settings(self, repo):
        assert await repo.settings.get_settings("alice") is None

    @pytest.mark.asyncio
    async def test_save_and_update(self, repo):
        await repo.settings.save_settings(
            OwnerSettings(owner_id="alice", emergency_unlock_cooldown_hours=12)
        )
        await repo.settings.save_settings(
            OwnerSettings(owner_id="alice", emergency_unlock_cooldown_hours=None)
        )

        settings = await repo.settings.get_settings("alice")
        assert settings.emergency_unlock_cooldown_hours is None

    @pytest.mark.asyncio
    async def test_clear_restrictions(self, repo):
        await repo.settings.save_settings(
            OwnerSettings(owner_id="alice", active_restrictions=["lock"])
        )

        assert await repo.settings.clear_restrictions("alice") == ["lock"]
        assert await repo.settings.clear_restrictions("alice") == []
        assert await repo.settings.clear_restrictions("nobody") == []


class TestSessionUpdateGuards:
    """Tests for stamping and terminal writes in SqliteSessionStore.update."""

    @pytest.mark.asyncio
    async def test_update_uses_given_last_modified(self, repo):
        session = await repo.sessions.create(Session(owner_id="alice", start_time=T0))
        stamp = T0 + timedelta(minutes=3)

        updated = await repo.sessions.update(session.id, {"notes": "x", "last_modified": stamp})

        assert updated.last_modified == stamp

    @pytest.mark.asyncio
    async def test_closing_an_ended_session_rejected(self, repo):
        session = await repo.sessions.create(Session(owner_id="alice", start_time=T0))
        first_end = T0 + timedelta(hours=1)
        await repo.sessions.update(session.id, {"end_time": first_end})

        with pytest.raises(InvalidStateError):
            await repo.sessions.update(session.id, {"end_time": T0 + timedelta(hours=2)})

        stored = await repo.sessions.find_by_id(session.id)
        assert stored.end_time == first_end

    @pytest.mark.asyncio
    async def test_closing_missing_session(self, repo):
        with pytest.raises(NotFoundError):
            await repo.sessions.update("missing", {"end_time": T0})
