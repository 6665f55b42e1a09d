"""Human-readable task identifiers."""

import re
from uuid import uuid4

from flowtask.domain.models import TaskType

SUFFIX_LENGTH = 4

TASK_ID_PATTERN = re.compile(r"^(feat|bug|research|chore)-[0-9a-f]{4}$")


def generate_task_id(task_type: TaskType | str) -> str:
    """Build ``<prefix>-<suffix>`` from the task type and four random hex chars.

    There is no uniqueness check here; the schema rejects a duplicate at
    insert time with TaskIdCollisionError.

    Args:
        task_type: Task type (unknown strings fall back to ``feat``)

    Returns:
        Identifier such as ``bug-3f9a``
    """
    prefix = TaskType.coerce(task_type).prefix
    return f"{prefix}-{uuid4().hex[:SUFFIX_LENGTH]}"
