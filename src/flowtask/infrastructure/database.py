"""Database infrastructure using SQLite with WAL mode."""

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite
from aiosqlite import Connection

from flowtask.domain.models import (
    DEFAULT_WORKSPACE_COLOR,
    Task,
    Workspace,
    new_id,
)
from flowtask.infrastructure.connection_guard import ConnectionGuard
from flowtask.infrastructure.exceptions import (
    ConnectionGuardError,
    SchemaInitializationError,
)
from flowtask.infrastructure.logger import get_logger

logger = get_logger(__name__)

TASK_COLUMNS = (
    "id, task_id, title, description, status, priority, task_type, workspace_id, "
    "tags, progress, is_ai_linked, is_deleted, created_at, updated_at"
)

# Stored timestamps have microsecond resolution
_CLOCK_TICK = timedelta(microseconds=1)

# Columns added by later releases; older databases get them via ALTER TABLE
_WORKSPACE_MIGRATIONS: tuple[tuple[str, str], ...] = (
    ("color", f"TEXT NOT NULL DEFAULT '{DEFAULT_WORKSPACE_COLOR}'"),
    ("icon", "TEXT"),
)
_TASK_MIGRATIONS: tuple[tuple[str, str], ...] = (
    ("tags", "TEXT DEFAULT '[]'"),
    ("progress", "INTEGER DEFAULT 0"),
    ("is_ai_linked", "INTEGER DEFAULT 0"),
    ("is_deleted", "INTEGER DEFAULT 0"),
)


def _casefold(value: Any) -> str | None:
    """SQL function used by search; SQLite's own lower() only folds ASCII."""
    if value is None:
        return None
    return str(value).casefold()


def format_timestamp(value: datetime) -> str:
    """Persisted timestamp form: UTC ISO-8601 with fixed microsecond precision.

    The fixed width keeps lexicographic order equal to chronological order.
    """
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Database:
    """SQLite database owning one connection behind a ConnectionGuard.

    initialize() opens the connection, ensures the schema and bootstraps the
    default workspace. Stores reach the connection only through ``guard``.
    """

    def __init__(
        self,
        db_path: Path,
        busy_timeout_ms: int = 5000,
        default_workspace_name: str = "Development",
        default_workspace_color: str = DEFAULT_WORKSPACE_COLOR,
    ) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file (or ``:memory:``)
            busy_timeout_ms: How long SQLite waits on a locked database file
            default_workspace_name: Name of the workspace bootstrapped into an empty store
            default_workspace_color: Color of the bootstrapped workspace
        """
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.default_workspace_name = default_workspace_name
        self.default_workspace_color = default_workspace_color
        self._guard: ConnectionGuard | None = None
        self._last_timestamp: datetime | None = None

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    @property
    def guard(self) -> ConnectionGuard:
        """The guard serializing access to the connection.

        Raises:
            ConnectionGuardError: If initialize() has not run or close() has
        """
        if self._guard is None:
            raise ConnectionGuardError("Database is not initialized")
        return self._guard

    def now(self) -> datetime:
        """Current UTC time, strictly later than the last value handed out.

        Stores call this while holding the guard, so stamp order matches
        commit order even if the wall clock steps back.
        """
        current = datetime.now(timezone.utc)
        if self._last_timestamp is not None and current <= self._last_timestamp:
            current = self._last_timestamp + _CLOCK_TICK
        self._last_timestamp = current
        return current

    async def initialize(self) -> None:
        """Open the connection and ensure the schema exists.

        Raises:
            SchemaInitializationError: If the schema cannot be created or the
                default workspace cannot be written. Fatal.
        """
        if self._guard is not None:
            return

        conn: Connection | None = None
        try:
            if not self.is_memory:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            # Autocommit mode; multi-statement work uses explicit transactions
            conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
            conn.row_factory = aiosqlite.Row
            await self._configure_connection(conn)

            await conn.execute("BEGIN IMMEDIATE")
            await self._run_migrations(conn)
            await self._create_tables(conn)
            await self._create_indexes(conn)
            await self._bootstrap_default_workspace(conn)
            await conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.error("schema_initialization_failed", db_path=str(self.db_path), error=str(e))
            if conn is not None:
                await conn.close()
            raise SchemaInitializationError(
                f"Failed to initialize database at {self.db_path}: {e}",
                operation="initialize schema",
            ) from e

        self._guard = ConnectionGuard(conn)
        logger.info("database_initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the connection. The Database cannot be used afterwards."""
        if self._guard is not None:
            guard, self._guard = self._guard, None
            await guard.close()

    async def _configure_connection(self, conn: Connection) -> None:
        # CRITICAL: SQLite defaults to foreign_keys=OFF
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        if not self.is_memory:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.create_function("casefold", 1, _casefold, deterministic=True)

    async def _column_names(self, conn: Connection, table: str) -> set[str]:
        cursor = await conn.execute(f"PRAGMA table_info({table})")
        return {row["name"] for row in await cursor.fetchall()}

    async def _run_migrations(self, conn: Connection) -> None:
        """Add columns missing from databases written by older tooling."""
        for table, migrations in (
            ("workspaces", _WORKSPACE_MIGRATIONS),
            ("tasks", _TASK_MIGRATIONS),
        ):
            existing = await self._column_names(conn, table)
            if not existing:
                continue
            for column, decl in migrations:
                if column not in existing:
                    await conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
                    logger.info("schema_migrated", table=table, added_column=column)

    async def _create_tables(self, conn: Connection) -> None:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                color TEXT NOT NULL DEFAULT '{DEFAULT_WORKSPACE_COLOR}',
                icon TEXT,
                created_at TEXT NOT NULL
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL DEFAULT 'BACKLOG',
                priority INTEGER NOT NULL DEFAULT 2,
                task_type TEXT NOT NULL DEFAULT 'feat',
                workspace_id TEXT REFERENCES workspaces(id),
                tags TEXT DEFAULT '[]',
                progress INTEGER DEFAULT 0,
                is_ai_linked INTEGER DEFAULT 0,
                is_deleted INTEGER DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

    async def _create_indexes(self, conn: Connection) -> None:
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_workspace ON tasks(workspace_id)")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")

    async def _bootstrap_default_workspace(self, conn: Connection) -> None:
        """Insert the default workspace when the table is empty."""
        cursor = await conn.execute("SELECT COUNT(*) FROM workspaces")
        row = await cursor.fetchone()
        if row is not None and row[0] > 0:
            return

        workspace = Workspace(
            id=new_id(),
            name=self.default_workspace_name,
            color=self.default_workspace_color,
            created_at=self.now(),
        )
        await conn.execute(
            "INSERT INTO workspaces (id, name, color, icon, created_at) VALUES (?, ?, ?, ?, ?)",
            (
                workspace.id,
                workspace.name,
                workspace.color,
                workspace.icon,
                format_timestamp(workspace.created_at),
            ),
        )
        logger.info("default_workspace_created", workspace_id=workspace.id, name=workspace.name)

    async def get_index_usage(self) -> dict[str, Any]:
        """Report which indexes exist.

        Returns:
            Dictionary with index information
        """
        async with self.guard.acquire() as conn:
            cursor = await conn.execute(
                "SELECT name, tbl_name FROM sqlite_master "
                "WHERE type='index' AND name NOT LIKE 'sqlite_%' ORDER BY tbl_name, name"
            )
            indexes = list(await cursor.fetchall())
            return {
                "index_count": len(indexes),
                "indexes": [{"name": row[0], "table": row[1]} for row in indexes],
            }

    @staticmethod
    def row_to_task(row: aiosqlite.Row) -> Task:
        """Convert database row to Task model.

        Unknown status / task_type strings and malformed tags decode leniently.
        """
        return Task.model_validate(dict(row))

    @staticmethod
    def row_to_workspace(row: aiosqlite.Row) -> Workspace:
        """Convert database row (with a computed task_count column) to Workspace."""
        row_dict = dict(row)
        row_dict.setdefault("task_count", 0)
        return Workspace.model_validate(row_dict)
