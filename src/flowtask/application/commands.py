"""Command facade exposing the store operations as boundary-serialized data."""

from datetime import datetime
from typing import Any

from flowtask.domain.models import DEFAULT_WORKSPACE_COLOR, TaskStatus, TaskType
from flowtask.infrastructure.database import Database
from flowtask.infrastructure.exceptions import TaskNotFoundError
from flowtask.services.task_store import DEFAULT_SYNC_LIMIT, TaskStore
from flowtask.services.workspace_store import WorkspaceStore


class CommandHandler:
    """Entry point for front ends.

    Every method returns plain dicts (camelCase keys) or lists of them.
    Task arguments accept either the surrogate id or the human task_id.
    Domain errors from the stores propagate unchanged.
    """

    def __init__(
        self,
        database: Database,
        default_priority: int = 2,
        sync_limit: int = DEFAULT_SYNC_LIMIT,
    ):
        """Initialize command handler.

        Args:
            database: Initialized database
            default_priority: Priority used when create_task gets none
            sync_limit: Number of tasks sync_tasks returns without ``since``
        """
        self.database = database
        self.tasks = TaskStore(database)
        self.workspaces = WorkspaceStore(database)
        self.default_priority = default_priority
        self.sync_limit = sync_limit

    # Workspaces

    async def list_workspaces(self) -> list[dict[str, Any]]:
        return [workspace.to_boundary() for workspace in await self.workspaces.list()]

    async def create_workspace(self, name: str, color: str = DEFAULT_WORKSPACE_COLOR) -> dict[str, Any]:
        workspace = await self.workspaces.create(name, color)
        return workspace.to_boundary()

    async def delete_workspace(self, workspace_id: str) -> None:
        await self.workspaces.delete(workspace_id)

    # Tasks

    async def list_tasks(
        self,
        workspace_id: str | None = None,
        include_deleted: bool = False,
        status: TaskStatus | str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        tasks = await self.tasks.list(
            workspace_id=workspace_id,
            include_deleted=include_deleted,
            status=status,
            limit=limit,
        )
        return [task.to_boundary() for task in tasks]

    async def get_task(self, task_ref: str) -> dict[str, Any]:
        """Return one task, looked up by id or task_id.

        Raises:
            TaskNotFoundError: If neither matches
        """
        task = await self.tasks.get(task_ref)
        if task is None:
            raise TaskNotFoundError(task_ref)
        return task.to_boundary()

    async def create_task(
        self,
        title: str,
        description: str | None = None,
        task_type: TaskType | str = TaskType.FEAT,
        priority: int | None = None,
        workspace_id: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> dict[str, Any]:
        task = await self.tasks.create(
            title,
            description=description,
            task_type=task_type,
            priority=self.default_priority if priority is None else priority,
            workspace_id=workspace_id,
            status=status,
        )
        return task.to_boundary()

    async def update_task(
        self,
        task_ref: str,
        title: str | None = None,
        description: str | None = None,
        status: TaskStatus | str | None = None,
        priority: int | None = None,
        progress: int | None = None,
        is_ai_linked: bool | None = None,
    ) -> None:
        await self.tasks.update(
            task_ref,
            title=title,
            description=description,
            status=status,
            priority=priority,
            progress=progress,
            is_ai_linked=is_ai_linked,
        )

    async def update_task_with_automation(
        self,
        task_ref: str,
        title: str | None = None,
        description: str | None = None,
        status: TaskStatus | str | None = None,
        priority: int | None = None,
        progress: int | None = None,
    ) -> dict[str, Any]:
        """Update a task, then apply the progress/status automation rules.

        Returns:
            ``{"task": <task after all changes>, "automation": [<change>, ...]}``
        """
        task, result = await self.tasks.update_with_automation(
            task_ref,
            title=title,
            description=description,
            status=status,
            priority=priority,
            progress=progress,
        )
        return {"task": task.to_boundary(), "automation": result.changes}

    async def update_task_status(self, task_ref: str, status: TaskStatus | str) -> None:
        await self.tasks.update_status(task_ref, status)

    async def complete_task(self, task_ref: str) -> None:
        await self.tasks.complete(task_ref)

    async def delete_task(self, task_ref: str, permanent: bool = False) -> None:
        """Move a task to the trash, or remove it outright when ``permanent``."""
        if permanent:
            await self.tasks.permanent_delete(task_ref)
        else:
            await self.tasks.soft_delete(task_ref)

    async def restore_task(self, task_ref: str) -> None:
        await self.tasks.restore(task_ref)

    async def list_trash(self) -> list[dict[str, Any]]:
        return [task.to_boundary() for task in await self.tasks.list_trash()]

    async def empty_trash(self) -> int:
        return await self.tasks.empty_trash()

    async def search_tasks(self, query: str) -> list[dict[str, Any]]:
        return [task.to_boundary() for task in await self.tasks.search(query)]

    async def sync_tasks(self, since: datetime | None = None) -> dict[str, Any]:
        """Tasks changed after ``since`` plus the stamp to pass next time."""
        tasks, checkpoint = await self.tasks.sync(since, limit=self.sync_limit)
        return {
            "tasks": [task.to_boundary() for task in tasks],
            "count": len(tasks),
            "timestamp": checkpoint.isoformat(),
        }

    async def task_stats(self, workspace_id: str | None = None) -> dict[str, Any]:
        stats = await self.tasks.stats(workspace_id)
        return stats.to_boundary()
