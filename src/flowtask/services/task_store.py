"""Task persistence: CRUD, soft-delete lifecycle, search, sync and statistics.

Every operation holds the connection guard for its full duration, and takes
its timestamp while holding it. Single statement operations rely on SQLite's
statement atomicity; anything that issues more than one statement runs
inside a guard transaction.

Operations addressing one task accept either its surrogate id or its human
task_id, resolved by the statement itself.

Unknown status or task type strings are coerced (to BACKLOG and ``feat``)
rather than rejected, with a warning logged.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from aiosqlite import Connection

from flowtask.domain.models import Task, TaskStats, TaskStatus, TaskType, encode_tags, new_id
from flowtask.infrastructure.database import TASK_COLUMNS, Database, format_timestamp
from flowtask.infrastructure.exceptions import TaskNotFoundError, storage_error
from flowtask.infrastructure.logger import get_logger
from flowtask.services.automation import AutomationResult, apply_automation
from flowtask.services.task_id_generator import generate_task_id

logger = get_logger(__name__)

DEFAULT_SYNC_LIMIT = 50

_MATCH_TASK = "(id = ? OR task_id = ?)"


def _coerce_status(raw: TaskStatus | str | None, operation: str) -> TaskStatus:
    status = TaskStatus.parse(raw)
    if status is None:
        if raw is not None:
            logger.warning("unknown_status_coerced", operation=operation, value=str(raw))
        return TaskStatus.BACKLOG
    return status


def _coerce_task_type(raw: TaskType | str | None, operation: str) -> TaskType:
    task_type = TaskType.parse(raw)
    if task_type is None:
        if raw is not None:
            logger.warning("unknown_task_type_coerced", operation=operation, value=str(raw))
        return TaskType.FEAT
    return task_type


def _field_assignments(
    title: str | None,
    description: str | None,
    status: TaskStatus | str | None,
    priority: int | None,
    progress: int | None,
    is_ai_linked: bool | None,
) -> tuple[list[str], list[Any]]:
    assignments: list[str] = []
    params: list[Any] = []

    if title is not None:
        if not title.strip():
            raise ValueError("Task title must not be empty")
        assignments.append("title = ?")
        params.append(title)
    if description is not None:
        assignments.append("description = ?")
        params.append(description)
    if status is not None:
        assignments.append("status = ?")
        params.append(_coerce_status(status, "update").value)
    if priority is not None:
        assignments.append("priority = ?")
        params.append(priority)
    if progress is not None:
        assignments.append("progress = ?")
        params.append(progress)
    if is_ai_linked is not None:
        assignments.append("is_ai_linked = ?")
        params.append(int(is_ai_linked))

    return assignments, params


class TaskStore:
    """Tasks table access."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(
        self,
        title: str,
        description: str | None = None,
        task_type: TaskType | str = TaskType.FEAT,
        priority: int = 2,
        workspace_id: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> Task:
        """Create a task with a fresh id and task_id.

        Args:
            title: Non-blank title
            description: Optional free text
            task_type: Task type, also the task_id prefix
            priority: Priority (no enforced range)
            workspace_id: Owning workspace, or None for unassigned
            status: Initial status (default BACKLOG)

        Returns:
            The stored task, with ``created_at == updated_at``

        Raises:
            ValueError: If the title is blank
            TaskIdCollisionError: If the generated task_id already exists
            ConstraintViolationError: If workspace_id references no workspace
        """
        if not title or not title.strip():
            raise ValueError("Task title must not be empty")

        resolved_type = _coerce_task_type(task_type, "create")
        resolved_status = _coerce_status(status, "create")
        task_id = generate_task_id(resolved_type)

        try:
            async with self._db.guard.acquire() as conn:
                stamp = self._db.now()
                task = Task(
                    id=new_id(),
                    task_id=task_id,
                    title=title,
                    description=description,
                    status=resolved_status,
                    priority=priority,
                    task_type=resolved_type,
                    workspace_id=workspace_id,
                    created_at=stamp,
                    updated_at=stamp,
                )
                await conn.execute(
                    f"""
                    INSERT INTO tasks ({TASK_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.id,
                        task.task_id,
                        task.title,
                        task.description,
                        task.status.value,
                        task.priority,
                        task.task_type.value,
                        task.workspace_id,
                        encode_tags(task.tags),
                        task.progress,
                        int(task.is_ai_linked),
                        int(task.is_deleted),
                        format_timestamp(task.created_at),
                        format_timestamp(task.updated_at),
                    ),
                )
        except sqlite3.Error as e:
            logger.error("task_create_failed", task_id=task_id, error=str(e))
            raise storage_error("create task", e) from e

        logger.info("task_created", id=task.id, task_id=task.task_id, workspace_id=workspace_id)
        return task

    async def list(
        self,
        workspace_id: str | None = None,
        include_deleted: bool = False,
        status: TaskStatus | str | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """List tasks, newest first.

        Args:
            workspace_id: Only tasks of this workspace
            include_deleted: Include soft-deleted tasks
            status: Only tasks with this status
            limit: Maximum number of tasks

        Returns:
            Tasks ordered by created_at descending

        Raises:
            ValueError: If ``status`` names no known status
        """
        where_clauses: list[str] = []
        params: list[Any] = []

        if workspace_id is not None:
            where_clauses.append("workspace_id = ?")
            params.append(workspace_id)
        if not include_deleted:
            where_clauses.append("is_deleted = 0")
        if status is not None:
            resolved = TaskStatus.parse(status)
            if resolved is None:
                raise ValueError(f"Unknown status: {status}")
            where_clauses.append("status = ?")
            params.append(resolved.value)

        query = f"SELECT {TASK_COLUMNS} FROM tasks"
        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        return await self._fetch_tasks("list tasks", query, params)

    async def get(self, task_ref: str) -> Task | None:
        """Fetch one task by surrogate id or human task_id, deleted or not."""
        try:
            async with self._db.guard.acquire() as conn:
                return await self._select_one(conn, task_ref)
        except sqlite3.Error as e:
            logger.error("task_query_failed", operation="get task", id=task_ref, error=str(e))
            raise storage_error("get task", e) from e

    async def update(
        self,
        task_ref: str,
        *,
        title: str | None = None,
        description: str | None = None,
        status: TaskStatus | str | None = None,
        priority: int | None = None,
        progress: int | None = None,
        is_ai_linked: bool | None = None,
    ) -> None:
        """Apply the supplied fields in a single UPDATE with one updated_at.

        Fields left as None are untouched. With no fields at all only
        updated_at is refreshed.

        Raises:
            ValueError: If ``title`` is blank
            TaskNotFoundError: If no task matches ``task_ref``
        """
        assignments, params = _field_assignments(
            title, description, status, priority, progress, is_ai_linked
        )
        await self._execute_update("update task", task_ref, assignments, params)
        logger.info("task_updated", id=task_ref, fields=len(assignments))

    async def update_with_automation(
        self,
        task_ref: str,
        *,
        title: str | None = None,
        description: str | None = None,
        status: TaskStatus | str | None = None,
        priority: int | None = None,
        progress: int | None = None,
    ) -> tuple[Task, AutomationResult]:
        """Apply an update and its automation follow-up as one transaction.

        Returns:
            The task after all changes, and the automation outcome

        Raises:
            ValueError: If ``title`` is blank
            TaskNotFoundError: If no task matches ``task_ref``
        """
        supplied = {
            "title": title,
            "description": description,
            "status": status,
            "priority": priority,
            "progress": progress,
        }
        updated_fields = {name for name, value in supplied.items() if value is not None}
        assignments, params = _field_assignments(title, description, status, priority, progress, None)

        try:
            async with self._db.guard.transaction() as conn:
                await self._write_update(conn, task_ref, assignments, params)
                task = await self._require(conn, task_ref)

                result = apply_automation(task, updated_fields)
                if result.has_changes:
                    follow_up, follow_params = _field_assignments(
                        None, None, result.status, None, result.progress, None
                    )
                    await self._write_update(conn, task.id, follow_up, follow_params)
                    task = await self._require(conn, task.id)
        except sqlite3.Error as e:
            logger.error("task_mutation_failed", operation="update task", id=task_ref, error=str(e))
            raise storage_error("update task", e) from e

        logger.info("task_updated", id=task.id, fields=len(assignments))
        if result.has_changes:
            logger.info("task_automation_applied", task_id=task.task_id, changes=result.changes)
        return task, result

    async def update_status(self, task_ref: str, status: TaskStatus | str) -> None:
        """Overwrite the status. Any status may replace any other.

        Raises:
            TaskNotFoundError: If no task matches ``task_ref``
        """
        resolved = _coerce_status(status, "update_status")
        await self._execute_update("update task status", task_ref, ["status = ?"], [resolved.value])
        logger.info("task_status_updated", id=task_ref, status=resolved.value)

    async def complete(self, task_ref: str) -> None:
        """Mark a task DONE with progress 100."""
        await self._execute_update(
            "complete task",
            task_ref,
            ["status = ?", "progress = 100"],
            [TaskStatus.DONE.value],
        )
        logger.info("task_completed", id=task_ref)

    async def soft_delete(self, task_ref: str) -> None:
        """Move a task to the trash."""
        await self._execute_update("delete task", task_ref, ["is_deleted = 1"], [])
        logger.info("task_soft_deleted", id=task_ref)

    async def restore(self, task_ref: str) -> None:
        """Bring a task back from the trash."""
        await self._execute_update("restore task", task_ref, ["is_deleted = 0"], [])
        logger.info("task_restored", id=task_ref)

    async def permanent_delete(self, task_ref: str) -> None:
        """Remove the row, whether or not it is in the trash."""
        try:
            async with self._db.guard.acquire() as conn:
                cursor = await conn.execute(
                    f"DELETE FROM tasks WHERE {_MATCH_TASK}", (task_ref, task_ref)
                )
                affected = cursor.rowcount
        except sqlite3.Error as e:
            logger.error(
                "task_mutation_failed", operation="permanently delete task", id=task_ref, error=str(e)
            )
            raise storage_error("permanently delete task", e) from e

        if affected == 0:
            raise TaskNotFoundError(task_ref)
        logger.info("task_permanently_deleted", id=task_ref)

    async def list_trash(self) -> list[Task]:
        """Soft-deleted tasks, most recently touched first."""
        return await self._fetch_tasks(
            "list trash",
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE is_deleted = 1 "
            "ORDER BY updated_at DESC, rowid DESC",
            [],
        )

    async def empty_trash(self) -> int:
        """Permanently remove every soft-deleted task.

        Returns:
            Number of tasks removed
        """
        try:
            async with self._db.guard.acquire() as conn:
                cursor = await conn.execute("DELETE FROM tasks WHERE is_deleted = 1")
                removed = cursor.rowcount
        except sqlite3.Error as e:
            logger.error("trash_empty_failed", error=str(e))
            raise storage_error("empty trash", e) from e

        logger.info("trash_emptied", removed=removed)
        return removed

    async def search(self, query: str) -> list[Task]:
        """Case-insensitive substring search over title, task_id and description.

        The query is matched literally; ``%`` and ``_`` carry no wildcard
        meaning. Soft-deleted tasks are excluded.
        """
        needle = query.casefold()
        return await self._fetch_tasks(
            "search tasks",
            f"""
            SELECT {TASK_COLUMNS} FROM tasks
            WHERE is_deleted = 0
              AND (instr(casefold(title), ?) > 0
                   OR instr(casefold(task_id), ?) > 0
                   OR instr(casefold(coalesce(description, '')), ?) > 0)
            ORDER BY created_at DESC, rowid DESC
            """,
            [needle, needle, needle],
        )

    async def updated_since(
        self, since: datetime | None = None, limit: int = DEFAULT_SYNC_LIMIT
    ) -> list[Task]:
        """Non-deleted tasks changed after ``since``, most recent first.

        Without ``since`` the ``limit`` most recently updated tasks are
        returned. Naive datetimes are taken as UTC.
        """
        tasks, _ = await self.sync(since, limit)
        return tasks

    async def sync(
        self, since: datetime | None = None, limit: int = DEFAULT_SYNC_LIMIT
    ) -> tuple[list[Task], datetime]:
        """Like updated_since(), plus the checkpoint to pass as ``since`` next time.

        The checkpoint is taken under the same guard hold as the query, so
        every write missing from this result is stamped after it.
        """
        if since is None:
            query = (
                f"SELECT {TASK_COLUMNS} FROM tasks WHERE is_deleted = 0 "
                "ORDER BY updated_at DESC, rowid DESC LIMIT ?"
            )
            params: list[Any] = [limit]
        else:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            query = (
                f"SELECT {TASK_COLUMNS} FROM tasks WHERE is_deleted = 0 AND updated_at > ? "
                "ORDER BY updated_at DESC, rowid DESC"
            )
            params = [format_timestamp(since)]

        try:
            async with self._db.guard.acquire() as conn:
                checkpoint = self._db.now()
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("task_query_failed", operation="sync tasks", error=str(e))
            raise storage_error("sync tasks", e) from e

        return [self._row_to_task(row) for row in rows], checkpoint

    async def stats(self, workspace_id: str | None = None) -> TaskStats:
        """Aggregate counters over non-deleted tasks, optionally for one workspace."""
        query = "SELECT status, task_type, priority, updated_at FROM tasks WHERE is_deleted = 0"
        params: list[Any] = []
        if workspace_id is not None:
            query += " AND workspace_id = ?"
            params.append(workspace_id)

        try:
            async with self._db.guard.acquire() as conn:
                now = self._db.now()
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("task_stats_failed", workspace_id=workspace_id, error=str(e))
            raise storage_error("compute task stats", e) from e

        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        stats = TaskStats()
        for row in rows:
            status = TaskStatus.coerce(row["status"])
            stats.total += 1
            stats.by_status[status] += 1
            stats.by_type[TaskType.coerce(row["task_type"])] += 1
            stats.by_priority[row["priority"]] = stats.by_priority.get(row["priority"], 0) + 1

            if status is not TaskStatus.DONE:
                continue
            stamp = _parse_stamp(row["updated_at"])
            if stamp is None:
                continue
            if stamp >= week_ago:
                stats.completed_this_week += 1
            if stamp >= month_ago:
                stats.completed_this_month += 1

        return stats

    async def _fetch_tasks(self, operation: str, query: str, params: list[Any]) -> list[Task]:
        try:
            async with self._db.guard.acquire() as conn:
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("task_query_failed", operation=operation, error=str(e))
            raise storage_error(operation, e) from e
        return [self._row_to_task(row) for row in rows]

    async def _select_one(self, conn: Connection, task_ref: str) -> Task | None:
        cursor = await conn.execute(
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE {_MATCH_TASK} LIMIT 1",
            (task_ref, task_ref),
        )
        row = await cursor.fetchone()
        return self._row_to_task(row) if row is not None else None

    async def _require(self, conn: Connection, task_ref: str) -> Task:
        task = await self._select_one(conn, task_ref)
        if task is None:
            raise TaskNotFoundError(task_ref)
        return task

    async def _execute_update(
        self, operation: str, task_ref: str, assignments: list[str], params: list[Any]
    ) -> None:
        try:
            async with self._db.guard.acquire() as conn:
                await self._write_update(conn, task_ref, assignments, params)
        except sqlite3.Error as e:
            logger.error("task_mutation_failed", operation=operation, id=task_ref, error=str(e))
            raise storage_error(operation, e) from e

    async def _write_update(
        self, conn: Connection, task_ref: str, assignments: list[str], params: list[Any]
    ) -> None:
        """One UPDATE of the matching task, stamped with updated_at.

        Must run under the guard. Raises TaskNotFoundError when nothing matched.
        """
        cursor = await conn.execute(
            f"UPDATE tasks SET {', '.join([*assignments, 'updated_at = ?'])} WHERE {_MATCH_TASK}",
            [*params, format_timestamp(self._db.now()), task_ref, task_ref],
        )
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task_ref)

    def _row_to_task(self, row: Any) -> Task:
        if TaskStatus.parse(row["status"]) is None:
            logger.warning("unknown_status_coerced", operation="decode", id=row["id"], value=row["status"])
        if TaskType.parse(row["task_type"]) is None:
            logger.warning(
                "unknown_task_type_coerced", operation="decode", id=row["id"], value=row["task_type"]
            )
        if _tags_malformed(row["tags"]):
            logger.warning("malformed_tags_ignored", id=row["id"], value=row["tags"])
        return self._db.row_to_task(row)


def _tags_malformed(raw: str | None) -> bool:
    if not raw:
        return False
    try:
        return not isinstance(json.loads(raw), list)
    except (TypeError, ValueError):
        return True


def _parse_stamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        stamp = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp
