"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
from flowtask.application.commands import CommandHandler
from flowtask.infrastructure.database import Database
from flowtask.services.task_store import TaskStore
from flowtask.services.workspace_store import WorkspaceStore


# Database fixtures
@pytest.fixture
def temp_db_path(tmp_path: Path) -> Generator[Path, None, None]:
    """Database file path inside a per-test temporary directory."""
    yield tmp_path / "flowtask.db"


@pytest.fixture
async def memory_db() -> AsyncGenerator[Database, None]:
    """Create in-memory database for fast tests."""
    db = Database(Path(":memory:"))
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def file_db(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create file-based database for persistence tests."""
    db = Database(temp_db_path)
    await db.initialize()
    yield db
    await db.close()


# Service fixtures
@pytest.fixture
def task_store(memory_db: Database) -> TaskStore:
    """TaskStore over the in-memory database."""
    return TaskStore(memory_db)


@pytest.fixture
def workspace_store(memory_db: Database) -> WorkspaceStore:
    """WorkspaceStore over the in-memory database."""
    return WorkspaceStore(memory_db)


@pytest.fixture
def commands(memory_db: Database) -> CommandHandler:
    """CommandHandler over the in-memory database."""
    return CommandHandler(memory_db)


@pytest.fixture
async def default_workspace_id(workspace_store: WorkspaceStore) -> str:
    """Id of the workspace bootstrapped by initialize()."""
    workspaces = await workspace_store.list()
    return workspaces[0].id


# CLI fixtures
@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at an isolated data directory and database.

    Returns:
        Path of the database file the CLI will use
    """
    db_path = tmp_path / "data" / "flowtask.db"
    monkeypatch.setenv("FLOWTASK_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("FLOWTASK_DB_PATH", str(db_path))
    monkeypatch.setenv("FLOWTASK_LOG_LEVEL", "ERROR")
    monkeypatch.chdir(tmp_path)
    return db_path
