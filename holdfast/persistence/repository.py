"""
Holdfast Repository - Database access layer

SQLite implementation of every collaborator interface the engine consumes.
Single connection per repository instance, with context manager support.

Thread Safety:
- SQLite in WAL mode for concurrent reads
- Write operations are serialized
- Use separate HoldfastRepository instances per thread

The store methods are coroutines so the engine can swap in a networked
backend; against a local SQLite file they complete without suspending.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from holdfast.exceptions import ConflictError, InvalidStateError, NotFoundError, StorageError
from holdfast.persistence.models import (
    AuditEvent,
    EventDetails,
    EventFilter,
    EventType,
    Goal,
    OwnerSettings,
    Session,
    format_datetime,
    generate_id,
    to_json,
    utcnow,
)
from holdfast.persistence.stores import (
    AuditLog,
    GoalStore,
    RestrictionController,
    SessionStore,
    SettingsProvider,
)

logger = logging.getLogger(__name__)

# Default database location
DEFAULT_DB_PATH = Path.home() / ".config" / "holdfast" / "holdfast.db"

# Columns a partial session update may touch
SESSION_MUTABLE_COLUMNS = frozenset(
    {
        "end_time",
        "is_paused",
        "pause_start_time",
        "accumulated_pause_time",
        "goal_duration",
        "notes",
        "end_reason",
        "is_emergency_unlock",
        "emergency_reason",
        "emergency_notes",
        "final_duration",
        "final_effective_duration",
        "last_modified",
    }
)


def _to_column(value: Any) -> Any:
    """Convert a Python value to its SQLite column representation."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return format_datetime(value)
    return value


class HoldfastRepository:
    """
    Repository for all Holdfast persistence operations.

    Usage:
        repo = HoldfastRepository()
        repo.initialize()

        session = await repo.sessions.find_open_by_owner("alice")

        # Use in context manager for auto-cleanup
        with repo:
            ...

        # Or close manually
        repo.close()
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file. If None, uses default location.
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._conn: sqlite3.Connection | None = None
        self._initialized = False

        self.sessions = SqliteSessionStore(self)
        self.goals = SqliteGoalStore(self)
        self.events = SqliteAuditLog(self)
        self.settings = SqliteSettingsStore(self)

    def __enter__(self) -> HoldfastRepository:
        """Context manager entry."""
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get database connection, initializing if needed."""
        if self._conn is None:
            self.initialize()
        return self._conn  # type: ignore

    def initialize(self) -> None:
        """
        Initialize database connection and schema.

        Creates database file and parent directories if they don't exist.
        Applies schema if not already present.
        """
        if self._initialized and self._conn:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,  # We handle thread safety manually
                isolation_level=None,  # Autocommit mode, we use explicit transactions
            )
            self._conn.row_factory = sqlite3.Row

            # Enable WAL mode for concurrent reads
            self._conn.execute("PRAGMA journal_mode=WAL")
            # Faster writes (data still durable with WAL)
            self._conn.execute("PRAGMA synchronous=NORMAL")

            self._apply_schema()
        except sqlite3.Error as e:
            raise StorageError(
                f"Could not open database at {self.db_path}",
                {"error": str(e)},
            ) from e

        self._initialized = True
        logger.info(f"Initialized Holdfast database at {self.db_path}")

    def _apply_schema(self) -> None:
        """Apply the database schema from schema.sql."""
        schema_path = Path(__file__).parent / "schema.sql"

        if not schema_path.exists():
            logger.error(f"Schema file not found: {schema_path}")
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        with open(schema_path) as f:
            schema_sql = f.read()

        # CREATE IF NOT EXISTS makes this idempotent
        self._conn.executescript(schema_sql)  # type: ignore
        logger.debug("Database schema applied")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            self._initialized = False

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """
        Execute operations in a transaction.

        Usage:
            with repo.transaction() as cursor:
                cursor.execute(...)
        """
        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    def execute(self, sql: str, params: Any = ()) -> sqlite3.Cursor:
        """Run a single statement, wrapping driver errors in StorageError."""
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise StorageError("Database operation failed", {"error": str(e), "sql": sql}) from e


# =========================================================================
# SESSION OPERATIONS
# =========================================================================


class SqliteSessionStore(SessionStore):
    """Session storage backed by the sessions table."""

    def __init__(self, repo: HoldfastRepository):
        self._repo = repo

    async def create(self, session: Session) -> Session:
        row = session.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        try:
            self._repo.execute(f"INSERT INTO sessions ({columns}) VALUES ({placeholders})", row)
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Owner {session.owner_id} already has an open session",
                conflict_type="duplicate_session",
                owner_id=session.owner_id,
            ) from e

        logger.debug(f"Inserted session {session.id[:8]} for owner {session.owner_id}")
        return session

    async def find_by_id(self, session_id: str) -> Session | None:
        row = self._repo.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return Session.from_row(row) if row else None

    async def find_open_by_owner(self, owner_id: str) -> Session | None:
        row = self._repo.execute(
            """SELECT * FROM sessions
               WHERE owner_id = ? AND end_time IS NULL
               ORDER BY start_time DESC LIMIT 1""",
            (owner_id,),
        ).fetchone()
        return Session.from_row(row) if row else None

    async def update(self, session_id: str, changes: dict[str, Any]) -> Session:
        unknown = set(changes) - SESSION_MUTABLE_COLUMNS
        if unknown:
            raise StorageError(
                "Refusing to update immutable or unknown session columns",
                {"columns": sorted(unknown)},
            )

        params = {name: _to_column(value) for name, value in changes.items()}
        params["last_modified"] = format_datetime(changes.get("last_modified") or utcnow())
        params["session_id"] = session_id
        assignments = ", ".join(f"{name} = :{name}" for name in params if name != "session_id")
        where = "id = :session_id"
        closing = changes.get("end_time") is not None
        if closing:
            where += " AND end_time IS NULL"

        try:
            cursor = self._repo.execute(f"UPDATE sessions SET {assignments} WHERE {where}", params)
        except sqlite3.IntegrityError as e:
            raise StorageError(
                "Session update violates a constraint",
                {"session_id": session_id, "error": str(e)},
            ) from e

        if cursor.rowcount == 0:
            if closing and await self.find_by_id(session_id) is not None:
                raise InvalidStateError("Session already ended", session_id, "ENDED")
            raise NotFoundError(f"Session {session_id} not found", "session", session_id)

        session = await self.find_by_id(session_id)
        assert session is not None
        return session

    async def list_by_owner(self, owner_id: str, limit: int = 50) -> list[Session]:
        rows = self._repo.execute(
            "SELECT * FROM sessions WHERE owner_id = ? ORDER BY start_time DESC LIMIT ?",
            (owner_id, limit),
        ).fetchall()
        return [Session.from_row(row) for row in rows]


# =========================================================================
# GOAL OPERATIONS
# =========================================================================


class SqliteGoalStore(GoalStore):
    """Goal storage backed by the goals table."""

    def __init__(self, repo: HoldfastRepository):
        self._repo = repo

    async def create(self, goal: Goal) -> Goal:
        row = goal.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        self._repo.execute(f"INSERT INTO goals ({columns}) VALUES ({placeholders})", row)
        logger.info(f"Created goal {goal.title!r} for owner {goal.owner_id}")
        return goal

    async def find_incomplete_by_owner(self, owner_id: str) -> list[Goal]:
        rows = self._repo.execute(
            "SELECT * FROM goals WHERE owner_id = ? AND is_completed = 0 ORDER BY created_at",
            (owner_id,),
        ).fetchall()
        return [Goal.from_row(row) for row in rows]

    async def list_by_owner(self, owner_id: str) -> list[Goal]:
        rows = self._repo.execute(
            "SELECT * FROM goals WHERE owner_id = ? ORDER BY created_at",
            (owner_id,),
        ).fetchall()
        return [Goal.from_row(row) for row in rows]

    async def update_progress(
        self,
        goal_id: str,
        current_value: float,
        completed_at: datetime | None = None,
    ) -> None:
        if completed_at is None:
            cursor = self._repo.execute(
                "UPDATE goals SET current_value = ? WHERE id = ?",
                (current_value, goal_id),
            )
        else:
            cursor = self._repo.execute(
                """UPDATE goals SET current_value = ?, is_completed = 1, completed_at = ?
                   WHERE id = ?""",
                (current_value, format_datetime(completed_at), goal_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Goal {goal_id} not found", "goal", goal_id)


# =========================================================================
# AUDIT EVENT OPERATIONS
# =========================================================================


class SqliteAuditLog(AuditLog):
    """Append-only audit log backed by the events table."""

    def __init__(self, repo: HoldfastRepository):
        self._repo = repo

    async def append(
        self,
        owner_id: str,
        event_type: EventType,
        details: EventDetails,
        session_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> str:
        event_id = generate_id()
        self._repo.execute(
            """INSERT INTO events (id, owner_id, session_id, type, timestamp, details)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                event_id,
                owner_id,
                session_id,
                EventType(event_type).value,
                format_datetime(timestamp or utcnow()),
                to_json(details.to_dict()),
            ),
        )
        logger.debug(f"Appended {EventType(event_type).value} event {event_id[:8]} for {owner_id}")
        return event_id

    async def query_recent(self, event_filter: EventFilter) -> list[AuditEvent]:
        clauses: list[str] = []
        params: list[Any] = []
        if event_filter.owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(event_filter.owner_id)
        if event_filter.session_id is not None:
            clauses.append("session_id = ?")
            params.append(event_filter.session_id)
        if event_filter.type is not None:
            clauses.append("type = ?")
            params.append(EventType(event_filter.type).value)
        if event_filter.since is not None:
            clauses.append("timestamp >= ?")
            params.append(format_datetime(event_filter.since))

        sql = "SELECT * FROM events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp DESC, rowid DESC"
        if event_filter.limit is not None:
            sql += " LIMIT ?"
            params.append(event_filter.limit)

        rows = self._repo.execute(sql, params).fetchall()
        return [AuditEvent.from_row(row) for row in rows]


# =========================================================================
# SETTINGS / RESTRICTION OPERATIONS
# =========================================================================


class SqliteSettingsStore(SettingsProvider, RestrictionController):
    """Owner settings and restriction flags backed by the owner_settings table."""

    def __init__(self, repo: HoldfastRepository):
        self._repo = repo

    async def get_settings(self, owner_id: str) -> OwnerSettings | None:
        row = self._repo.execute(
            "SELECT * FROM owner_settings WHERE owner_id = ?", (owner_id,)
        ).fetchone()
        return OwnerSettings.from_row(row) if row else None

    async def save_settings(self, settings: OwnerSettings) -> None:
        """Insert or replace the owner's settings row."""
        self._repo.execute(
            """INSERT INTO owner_settings
               (owner_id, emergency_unlock_cooldown_hours, is_hardcore_mode, active_restrictions)
               VALUES (:owner_id, :emergency_unlock_cooldown_hours, :is_hardcore_mode,
                       :active_restrictions)
               ON CONFLICT(owner_id) DO UPDATE SET
                   emergency_unlock_cooldown_hours = excluded.emergency_unlock_cooldown_hours,
                   is_hardcore_mode = excluded.is_hardcore_mode,
                   active_restrictions = excluded.active_restrictions""",
            settings.to_row(),
        )

    async def clear_restrictions(self, owner_id: str) -> list[str]:
        try:
            with self._repo.transaction() as cursor:
                cursor.execute("SELECT * FROM owner_settings WHERE owner_id = ?", (owner_id,))
                row = cursor.fetchone()
                if row is None:
                    return []
                cleared = OwnerSettings.from_row(row).active_restrictions
                if cleared:
                    cursor.execute(
                        "UPDATE owner_settings SET active_restrictions = ? WHERE owner_id = ?",
                        (to_json([]), owner_id),
                    )
        except sqlite3.Error as e:
            raise StorageError(
                "Could not clear restrictions", {"owner_id": owner_id, "error": str(e)}
            ) from e

        if cleared:
            logger.info(f"Cleared {len(cleared)} restriction(s) for owner {owner_id}")
        return cleared
