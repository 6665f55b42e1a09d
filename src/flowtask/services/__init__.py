"""Service layer: task and workspace stores, identifiers and automation rules."""

from flowtask.services.automation import AutomationResult, apply_automation
from flowtask.services.task_id_generator import generate_task_id
from flowtask.services.task_store import TaskStore
from flowtask.services.workspace_store import WorkspaceStore

__all__ = [
    "AutomationResult",
    "TaskStore",
    "WorkspaceStore",
    "apply_automation",
    "generate_task_id",
]
