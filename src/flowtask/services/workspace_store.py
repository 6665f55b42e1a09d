"""Workspace persistence: listing with live task counts, creation, cascading deletion."""

from __future__ import annotations

import random
import sqlite3

from aiosqlite import Connection

from flowtask.domain.models import DEFAULT_WORKSPACE_COLOR, Workspace
from flowtask.infrastructure.database import Database, format_timestamp
from flowtask.infrastructure.exceptions import WorkspaceNotFoundError, storage_error
from flowtask.infrastructure.logger import get_logger

logger = get_logger(__name__)

WORKSPACE_PALETTE = (
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#ec4899",
    "#06b6d4",
)

_SELECT_WORKSPACES = """
    SELECT w.id, w.name, w.color, w.icon, w.created_at,
           (SELECT COUNT(*) FROM tasks t
             WHERE t.workspace_id = w.id AND t.is_deleted = 0) AS task_count
    FROM workspaces w
"""


class WorkspaceStore:
    """CRUD over the workspaces table.

    Every method holds the connection guard for its whole duration.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def list(self) -> list[Workspace]:
        """All workspaces ordered by name, each with its non-deleted task count."""
        try:
            async with self._db.guard.acquire() as conn:
                cursor = await conn.execute(_SELECT_WORKSPACES + " ORDER BY w.name")
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("workspace_list_failed", error=str(e))
            raise storage_error("list workspaces", e) from e
        return [self._db.row_to_workspace(row) for row in rows]

    async def get(self, workspace_id: str) -> Workspace | None:
        try:
            async with self._db.guard.acquire() as conn:
                cursor = await conn.execute(_SELECT_WORKSPACES + " WHERE w.id = ?", (workspace_id,))
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            logger.error("workspace_get_failed", workspace_id=workspace_id, error=str(e))
            raise storage_error("get workspace", e) from e
        return self._db.row_to_workspace(row) if row else None

    async def find_by_name(self, name: str) -> Workspace | None:
        """Look a workspace up by name, ignoring case."""
        try:
            async with self._db.guard.acquire() as conn:
                cursor = await conn.execute(
                    _SELECT_WORKSPACES + " WHERE casefold(w.name) = ?",
                    (name.strip().casefold(),),
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            logger.error("workspace_get_failed", name=name, error=str(e))
            raise storage_error("get workspace", e) from e
        return self._db.row_to_workspace(row) if row else None

    async def create(self, name: str, color: str = DEFAULT_WORKSPACE_COLOR) -> Workspace:
        """Create a workspace.

        Args:
            name: Unique workspace name
            color: Display color

        Returns:
            The new workspace (task_count 0, no icon)

        Raises:
            DuplicateWorkspaceError: If the name is taken
            StorageError: On any other storage failure
        """
        try:
            async with self._db.guard.acquire() as conn:
                workspace = Workspace(name=name, color=color, created_at=self._db.now())
                await self._insert(conn, workspace)
        except sqlite3.Error as e:
            logger.error("workspace_create_failed", name=name, error=str(e))
            raise storage_error("create workspace", e) from e

        logger.info("workspace_created", workspace_id=workspace.id, name=name)
        return workspace

    async def get_or_create_by_name(self, name: str, color: str | None = None) -> Workspace:
        """Find a workspace by case-insensitive name, creating it when absent.

        New workspaces get ``color`` or, when omitted, a random palette color.
        """
        lookup = name.strip()
        try:
            async with self._db.guard.transaction() as conn:
                cursor = await conn.execute(
                    _SELECT_WORKSPACES + " WHERE casefold(w.name) = ?",
                    (lookup.casefold(),),
                )
                row = await cursor.fetchone()
                if row is not None:
                    return self._db.row_to_workspace(row)

                workspace = Workspace(
                    name=lookup,
                    color=color or random.choice(WORKSPACE_PALETTE),
                    created_at=self._db.now(),
                )
                await self._insert(conn, workspace)
        except sqlite3.Error as e:
            logger.error("workspace_create_failed", name=name, error=str(e))
            raise storage_error("get or create workspace", e) from e

        logger.info("workspace_created", workspace_id=workspace.id, name=workspace.name, color=workspace.color)
        return workspace

    async def delete(self, workspace_id: str) -> None:
        """Delete a workspace and every task that references it.

        Soft-deleted tasks go too. Both deletes commit together or not at all.

        Raises:
            WorkspaceNotFoundError: If no workspace has this id
            StorageError: On storage failure (nothing is deleted)
        """
        try:
            async with self._db.guard.transaction() as conn:
                cursor = await conn.execute("DELETE FROM tasks WHERE workspace_id = ?", (workspace_id,))
                deleted_tasks = cursor.rowcount
                cursor = await conn.execute("DELETE FROM workspaces WHERE id = ?", (workspace_id,))
                if cursor.rowcount == 0:
                    raise WorkspaceNotFoundError(workspace_id)
        except sqlite3.Error as e:
            logger.error("workspace_delete_failed", workspace_id=workspace_id, error=str(e))
            raise storage_error("delete workspace", e) from e

        logger.info("workspace_deleted", workspace_id=workspace_id, deleted_tasks=deleted_tasks)

    async def _insert(self, conn: Connection, workspace: Workspace) -> None:
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
