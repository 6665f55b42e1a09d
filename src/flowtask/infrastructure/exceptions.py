"""Custom exception hierarchy for FlowTask storage and lifecycle errors."""

import sqlite3


class FlowTaskError(Exception):
    """Base exception for all FlowTask errors."""

    pass


class StorageError(FlowTaskError):
    """A storage-layer operation failed.

    Attributes:
        operation: Short name of the operation that failed (e.g. "create task")
    """

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class ConstraintViolationError(StorageError):
    """A schema constraint (unique, foreign key, not null) rejected a write."""

    pass


class TaskIdCollisionError(ConstraintViolationError):
    """The generated task_id already exists.

    Identifiers carry only four hex characters of randomness, so collisions
    are possible in large task sets. Creating the task again draws a fresh
    identifier.
    """

    def __init__(self, message: str = "Generated task_id already exists", operation: str | None = None):
        super().__init__(message, operation)


class DuplicateWorkspaceError(ConstraintViolationError):
    """A workspace with the same name already exists."""

    pass


class SchemaInitializationError(StorageError):
    """The schema could not be created or bootstrapped.

    Fatal: the process must not continue with an unusable store.
    """

    pass


class NotFoundError(FlowTaskError):
    """The addressed entity does not exist."""

    pass


class TaskNotFoundError(NotFoundError):
    """Raised when a task id doesn't exist."""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class WorkspaceNotFoundError(NotFoundError):
    """Raised when a workspace id doesn't exist."""

    def __init__(self, workspace_id: str):
        super().__init__(f"Workspace {workspace_id} not found")
        self.workspace_id = workspace_id


class ConnectionGuardError(FlowTaskError):
    """The storage connection cannot be acquired.

    Raised when the guard was closed or poisoned by a failed rollback.
    Unrecoverable for the calling operation; never retried.
    """

    pass


def storage_error(operation: str, exc: sqlite3.Error) -> StorageError:
    """Translate a driver exception into the FlowTask error taxonomy.

    Args:
        operation: Short name of the failing operation, used in the message
        exc: The sqlite3 / aiosqlite exception

    Returns:
        The most specific StorageError subclass for the failure
    """
    message = f"Failed to {operation}: {exc}"
    if isinstance(exc, sqlite3.IntegrityError):
        detail = str(exc)
        if "tasks.task_id" in detail:
            return TaskIdCollisionError(message, operation)
        if "workspaces.name" in detail:
            return DuplicateWorkspaceError(message, operation)
        return ConstraintViolationError(message, operation)
    return StorageError(message, operation)
