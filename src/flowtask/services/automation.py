"""Progress/status automation applied after an interactive task update.

Rules, evaluated in order against the task as it stands after the update:

1. progress reached 100 and the task is not DONE: move it to DONE.
2. progress (but not status) was updated, 0 < progress < 100 and the task
   is still in BACKLOG, PLANNED or READY: move it to IN_PROGRESS.
3. status was explicitly set to BACKLOG while progress > 0: reset
   progress to 0.

Each rule sees the effects of the ones before it.
"""

from collections.abc import Iterable

from pydantic import BaseModel, Field

from flowtask.domain.models import Task, TaskStatus

_NOT_STARTED = frozenset({TaskStatus.BACKLOG, TaskStatus.PLANNED, TaskStatus.READY})


class AutomationResult(BaseModel):
    """Follow-up changes produced by the automation rules."""

    status: TaskStatus | None = None
    progress: int | None = None
    changes: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


def apply_automation(task: Task, updated_fields: Iterable[str]) -> AutomationResult:
    """Compute the follow-up status/progress for a freshly updated task.

    Args:
        task: The task after the caller's update was written
        updated_fields: Names of the fields the caller changed
            (``"status"``, ``"progress"``, ...)

    Returns:
        The fields to write back, with human-readable change descriptions
    """
    fields = set(updated_fields)
    status = task.status
    progress = task.progress
    result = AutomationResult()

    if progress == 100 and status is not TaskStatus.DONE:
        status = result.status = TaskStatus.DONE
        result.changes.append("Auto-completed (progress 100%)")

    if (
        "progress" in fields
        and "status" not in fields
        and 0 < progress < 100
        and status in _NOT_STARTED
    ):
        status = result.status = TaskStatus.IN_PROGRESS
        result.changes.append("Auto-moved to IN_PROGRESS")

    if "status" in fields and status is TaskStatus.BACKLOG and progress > 0:
        progress = result.progress = 0
        result.changes.append("Reset progress to 0")

    return result
