"""Domain models for FlowTask."""

from flowtask.domain.models import (
    Task,
    TaskStats,
    TaskStatus,
    TaskType,
    Workspace,
)

__all__ = [
    "Task",
    "TaskStats",
    "TaskStatus",
    "TaskType",
    "Workspace",
]
