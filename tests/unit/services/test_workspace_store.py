"""Unit tests for WorkspaceStore."""

import pytest
from flowtask.infrastructure.database import Database
from flowtask.infrastructure.exceptions import (
    DuplicateWorkspaceError,
    StorageError,
    WorkspaceNotFoundError,
)
from flowtask.services.task_store import TaskStore
from flowtask.services.workspace_store import WORKSPACE_PALETTE, WorkspaceStore


class TestCreateAndList:
    """Tests for create() and list()."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, workspace_store: WorkspaceStore) -> None:
        workspace = await workspace_store.create("Backend")

        assert workspace.color == "#3b82f6"
        assert workspace.icon is None
        assert workspace.task_count == 0

    @pytest.mark.asyncio
    async def test_list_ordered_by_name(self, workspace_store: WorkspaceStore) -> None:
        await workspace_store.create("Zeta", "#ef4444")
        await workspace_store.create("Alpha", "#10b981")

        names = [w.name for w in await workspace_store.list()]

        assert names == ["Alpha", "Development", "Zeta"]

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, workspace_store: WorkspaceStore) -> None:
        await workspace_store.create("Backend")

        with pytest.raises(DuplicateWorkspaceError):
            await workspace_store.create("Backend")

        assert [w.name for w in await workspace_store.list()].count("Backend") == 1

    @pytest.mark.asyncio
    async def test_get(self, workspace_store: WorkspaceStore) -> None:
        created = await workspace_store.create("Lookup")

        fetched = await workspace_store.get(created.id)

        assert fetched == created
        assert await workspace_store.get("missing") is None


class TestTaskCount:
    """task_count reflects non-deleted tasks only."""

    @pytest.mark.asyncio
    async def test_counts_follow_lifecycle(self, workspace_store: WorkspaceStore, task_store: TaskStore) -> None:
        workspace = await workspace_store.create("Counted")
        tasks = [await task_store.create(f"t{i}", workspace_id=workspace.id) for i in range(3)]
        await task_store.create("unassigned")

        async def count() -> int:
            fetched = await workspace_store.get(workspace.id)
            assert fetched is not None
            return fetched.task_count

        assert await count() == 3
        await task_store.soft_delete(tasks[0].id)
        assert await count() == 2
        await task_store.restore(tasks[0].id)
        assert await count() == 3
        await task_store.permanent_delete(tasks[1].id)
        assert await count() == 2


class TestDelete:
    """Tests for cascading delete()."""

    @pytest.mark.asyncio
    async def test_deletes_all_tasks_including_trashed(
        self, workspace_store: WorkspaceStore, task_store: TaskStore, default_workspace_id: str
    ) -> None:
        doomed = await workspace_store.create("Doomed")
        active = await task_store.create("active", workspace_id=doomed.id)
        trashed = await task_store.create("trashed", workspace_id=doomed.id)
        await task_store.soft_delete(trashed.id)
        survivor = await task_store.create("survivor", workspace_id=default_workspace_id)

        await workspace_store.delete(doomed.id)

        assert await workspace_store.get(doomed.id) is None
        assert await task_store.get(active.id) is None
        assert await task_store.get(trashed.id) is None
        assert await task_store.get(survivor.id) is not None

    @pytest.mark.asyncio
    async def test_missing_workspace(self, workspace_store: WorkspaceStore) -> None:
        with pytest.raises(WorkspaceNotFoundError):
            await workspace_store.delete("missing")

    @pytest.mark.asyncio
    async def test_failure_rolls_back_task_deletion(
        self, memory_db: Database, workspace_store: WorkspaceStore, task_store: TaskStore
    ) -> None:
        """If the workspace row cannot be deleted, its tasks survive too."""
        workspace = await workspace_store.create("Protected")
        task = await task_store.create("still here", workspace_id=workspace.id)
        async with memory_db.guard.acquire() as conn:
            await conn.execute(
                """
                CREATE TRIGGER protect_workspace BEFORE DELETE ON workspaces
                BEGIN SELECT RAISE(ABORT, 'workspace is protected'); END
                """
            )

        with pytest.raises(StorageError):
            await workspace_store.delete(workspace.id)

        assert await task_store.get(task.id) is not None
        fetched = await workspace_store.get(workspace.id)
        assert fetched is not None
        assert fetched.task_count == 1

    @pytest.mark.asyncio
    async def test_missing_workspace_leaves_unassigned_tasks(
        self, workspace_store: WorkspaceStore, task_store: TaskStore
    ) -> None:
        task = await task_store.create("unassigned")

        with pytest.raises(WorkspaceNotFoundError):
            await workspace_store.delete("missing")

        assert await task_store.get(task.id) is not None

    @pytest.mark.asyncio
    async def test_deleting_last_workspace_is_allowed(self, workspace_store: WorkspaceStore) -> None:
        (only,) = await workspace_store.list()

        await workspace_store.delete(only.id)

        assert await workspace_store.list() == []


class TestGetOrCreate:
    """Tests for get_or_create_by_name() and find_by_name()."""

    @pytest.mark.asyncio
    async def test_existing_matched_case_insensitively(self, workspace_store: WorkspaceStore) -> None:
        existing = await workspace_store.get_or_create_by_name("development")

        assert existing.name == "Development"
        assert len(await workspace_store.list()) == 1

    @pytest.mark.asyncio
    async def test_creates_with_palette_color(self, workspace_store: WorkspaceStore) -> None:
        created = await workspace_store.get_or_create_by_name("  my-project  ")

        assert created.name == "my-project"
        assert created.color in WORKSPACE_PALETTE
        again = await workspace_store.get_or_create_by_name("MY-PROJECT")
        assert again.id == created.id

    @pytest.mark.asyncio
    async def test_explicit_color(self, workspace_store: WorkspaceStore) -> None:
        created = await workspace_store.get_or_create_by_name("Design", color="#123456")
        assert created.color == "#123456"

    @pytest.mark.asyncio
    async def test_find_by_name(self, workspace_store: WorkspaceStore) -> None:
        found = await workspace_store.find_by_name("DEVELOPMENT")

        assert found is not None
        assert found.name == "Development"
        assert await workspace_store.find_by_name("nope") is None
