"""Unit tests for schema creation, bootstrap and migration."""

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from flowtask.domain.models import TaskStatus, TaskType
from flowtask.infrastructure.database import Database, format_timestamp
from flowtask.infrastructure.exceptions import SchemaInitializationError
from flowtask.services.task_store import TaskStore
from flowtask.services.workspace_store import WorkspaceStore


async def _columns(database: Database, table: str) -> set[str]:
    async with database.guard.acquire() as conn:
        cursor = await conn.execute(f"PRAGMA table_info({table})")
        return {row["name"] for row in await cursor.fetchall()}


class TestSchemaCreation:
    """Tests for table and index creation."""

    @pytest.mark.asyncio
    async def test_tables_and_columns(self, memory_db: Database) -> None:
        assert await _columns(memory_db, "workspaces") == {"id", "name", "color", "icon", "created_at"}
        assert await _columns(memory_db, "tasks") == {
            "id",
            "task_id",
            "title",
            "description",
            "status",
            "priority",
            "task_type",
            "workspace_id",
            "tags",
            "progress",
            "is_ai_linked",
            "is_deleted",
            "created_at",
            "updated_at",
        }

    @pytest.mark.asyncio
    async def test_indexes(self, memory_db: Database) -> None:
        info = await memory_db.get_index_usage()

        names = {index["name"] for index in info["indexes"]}
        assert {"idx_tasks_workspace", "idx_tasks_status"} <= names

    @pytest.mark.asyncio
    async def test_foreign_keys_enabled(self, memory_db: Database) -> None:
        async with memory_db.guard.acquire() as conn:
            cursor = await conn.execute("PRAGMA foreign_keys")
            row = await cursor.fetchone()
        assert row[0] == 1

    @pytest.mark.asyncio
    async def test_file_database_uses_wal(self, file_db: Database) -> None:
        async with file_db.guard.acquire() as conn:
            cursor = await conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
        assert row[0].lower() == "wal"

    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "flowtask.db"
        database = Database(db_path)

        await database.initialize()
        await database.close()

        assert db_path.exists()


class TestBootstrap:
    """Tests for the default workspace."""

    @pytest.mark.asyncio
    async def test_default_workspace_created(self, memory_db: Database) -> None:
        workspaces = await WorkspaceStore(memory_db).list()

        assert len(workspaces) == 1
        assert workspaces[0].name == "Development"
        assert workspaces[0].color == "#3b82f6"
        assert workspaces[0].task_count == 0

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, temp_db_path: Path) -> None:
        for _ in range(3):
            database = Database(temp_db_path)
            await database.initialize()
            await database.initialize()
            await database.close()

        database = Database(temp_db_path)
        await database.initialize()
        try:
            workspaces = await WorkspaceStore(database).list()
        finally:
            await database.close()
        assert [w.name for w in workspaces] == ["Development"]

    @pytest.mark.asyncio
    async def test_custom_default_workspace(self) -> None:
        database = Database(Path(":memory:"), default_workspace_name="Inbox", default_workspace_color="#10b981")
        await database.initialize()
        try:
            workspaces = await WorkspaceStore(database).list()
        finally:
            await database.close()

        assert [(w.name, w.color) for w in workspaces] == [("Inbox", "#10b981")]

    @pytest.mark.asyncio
    async def test_no_rebootstrap_while_workspaces_exist(self, temp_db_path: Path) -> None:
        database = Database(temp_db_path)
        await database.initialize()
        store = WorkspaceStore(database)
        await store.create("Personal")
        development = next(w for w in await store.list() if w.name == "Development")
        await store.delete(development.id)
        await database.close()

        database = Database(temp_db_path)
        await database.initialize()
        try:
            names = [w.name for w in await WorkspaceStore(database).list()]
        finally:
            await database.close()
        assert names == ["Personal"]


class TestMigrations:
    """Tests for additive migrations of databases written by older tooling."""

    def _create_legacy_database(self, path: Path) -> None:
        conn = sqlite3.connect(path)
        conn.executescript(
            """
            CREATE TABLE workspaces (id TEXT PRIMARY KEY, name TEXT NOT NULL UNIQUE, created_at TEXT NOT NULL);
            CREATE TABLE tasks (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL DEFAULT 'BACKLOG',
                priority INTEGER NOT NULL DEFAULT 2,
                task_type TEXT NOT NULL DEFAULT 'feat',
                workspace_id TEXT REFERENCES workspaces(id),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            INSERT INTO workspaces VALUES ('ws-legacy', 'Legacy', '2024-01-01T00:00:00.000Z');
            INSERT INTO tasks VALUES (
                't-1', 'bug-abcd', 'Old bug', NULL, 'READY', 1, 'bug', 'ws-legacy',
                '2024-01-01T00:00:00.000Z', '2024-01-01T00:00:00.000Z'
            );
            """
        )
        conn.commit()
        conn.close()

    @pytest.mark.asyncio
    async def test_missing_columns_added(self, temp_db_path: Path) -> None:
        self._create_legacy_database(temp_db_path)
        database = Database(temp_db_path)

        await database.initialize()
        try:
            workspace_columns = await _columns(database, "workspaces")
            task_columns = await _columns(database, "tasks")
            workspaces = await WorkspaceStore(database).list()
            task = await TaskStore(database).get("bug-abcd")
        finally:
            await database.close()

        assert {"color", "icon"} <= workspace_columns
        assert {"tags", "progress", "is_ai_linked", "is_deleted"} <= task_columns
        # Existing rows are kept; no default workspace is bootstrapped
        assert [(w.name, w.color, w.task_count) for w in workspaces] == [("Legacy", "#3b82f6", 1)]
        assert task is not None
        assert task.status is TaskStatus.READY
        assert task.task_type is TaskType.BUG
        assert task.tags == []
        assert task.progress == 0
        assert task.is_deleted is False


class TestInitializationFailure:
    """Schema failures are fatal and typed."""

    @pytest.mark.asyncio
    async def test_unusable_path(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        database = Database(blocker / "flowtask.db")

        with pytest.raises(SchemaInitializationError):
            await database.initialize()

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path: Path) -> None:
        db_path = tmp_path / "corrupt.db"
        db_path.write_bytes(b"this is not a sqlite database" * 100)
        database = Database(db_path)

        with pytest.raises(SchemaInitializationError) as exc_info:
            await database.initialize()

        assert exc_info.value.operation == "initialize schema"


class TestClock:
    """Tests for the monotonic timestamp source."""

    def test_never_goes_backwards(self) -> None:
        database = Database(Path(":memory:"))
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        database._last_timestamp = future

        first = database.now()
        second = database.now()

        assert first == future + timedelta(microseconds=1)
        assert second == first + timedelta(microseconds=1)

    def test_strictly_increasing(self) -> None:
        database = Database(Path(":memory:"))

        stamps = [database.now() for _ in range(50)]

        assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))

    def test_timestamps_sort_lexicographically(self) -> None:
        early = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
        later = early + timedelta(microseconds=1)

        assert format_timestamp(early) < format_timestamp(later)
        assert format_timestamp(early) == "2024-01-01T00:00:00.000000+00:00"
