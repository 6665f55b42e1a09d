"""Core domain models for FlowTask."""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_WORKSPACE_COLOR = "#3b82f6"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class TaskStatus(str, Enum):
    """Kanban column a task sits in.

    Any status may replace any other; there is no enforced ordering.
    """

    BACKLOG = "BACKLOG"
    PLANNED = "PLANNED"
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    TESTING = "TESTING"
    DONE = "DONE"

    @classmethod
    def parse(cls, raw: "str | TaskStatus | None") -> "TaskStatus | None":
        """Match a status string case-insensitively, returning None when unknown."""
        if isinstance(raw, cls):
            return raw
        if not raw:
            return None
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return None

    @classmethod
    def coerce(cls, raw: "str | TaskStatus | None") -> "TaskStatus":
        """Like parse(), but unknown or missing values fall back to BACKLOG."""
        return cls.parse(raw) or cls.BACKLOG


class TaskType(str, Enum):
    """Kind of work; doubles as the task_id prefix."""

    FEAT = "feat"
    BUG = "bug"
    RESEARCH = "research"
    CHORE = "chore"

    @property
    def prefix(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: "str | TaskType | None") -> "TaskType | None":
        if isinstance(raw, cls):
            return raw
        if not raw:
            return None
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return None

    @classmethod
    def coerce(cls, raw: "str | TaskType | None") -> "TaskType":
        return cls.parse(raw) or cls.FEAT


def decode_tags(raw: Any) -> list[str]:
    """Decode the persisted tags blob.

    Malformed JSON, or JSON that is not an array, decodes to an empty list.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, (list, tuple)):
        return [str(tag) for tag in raw]
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(value, list):
        return []
    return [str(tag) for tag in value]


def encode_tags(tags: list[str] | None) -> str:
    return json.dumps(list(tags or []), ensure_ascii=False)


class _BoundaryModel(BaseModel):
    """Base for entities exposed to the command layer with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_boundary(self) -> dict[str, Any]:
        """Serialize for the external command layer.

        Keys are camelCase, booleans stay booleans, enums become their string
        values and datetimes ISO-8601 strings.
        """
        return self.model_dump(mode="json", by_alias=True)


class Task(_BoundaryModel):
    """A unit of work on the board.

    Attributes:
        id: Opaque surrogate key
        task_id: Human-readable identifier such as ``feat-a1b2``
        tags: Ordered tags, persisted as a JSON array
        is_deleted: Soft-delete flag; never serialized
    """

    id: str = Field(default_factory=new_id)
    task_id: str
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.BACKLOG
    priority: int = 2
    task_type: TaskType = TaskType.FEAT
    workspace_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    progress: int = 0
    is_ai_linked: bool = False
    is_deleted: bool = Field(default=False, exclude=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> TaskStatus:
        return TaskStatus.coerce(v)

    @field_validator("task_type", mode="before")
    @classmethod
    def validate_task_type(cls, v: Any) -> TaskType:
        return TaskType.coerce(v)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> list[str]:
        return decode_tags(v)


class Workspace(_BoundaryModel):
    """A named grouping of tasks.

    ``task_count`` is derived at read time and never stored.
    """

    id: str = Field(default_factory=new_id)
    name: str
    color: str = DEFAULT_WORKSPACE_COLOR
    icon: str | None = None
    task_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class TaskStats(_BoundaryModel):
    """Aggregate counters over non-deleted tasks."""

    total: int = 0
    by_status: dict[TaskStatus, int] = Field(
        default_factory=lambda: {status: 0 for status in TaskStatus}
    )
    by_type: dict[TaskType, int] = Field(
        default_factory=lambda: {task_type: 0 for task_type in TaskType}
    )
    by_priority: dict[int, int] = Field(default_factory=dict)
    completed_this_week: int = 0
    completed_this_month: int = 0

    @computed_field(alias="completedCount")  # type: ignore[prop-decorator]
    @property
    def completed_count(self) -> int:
        return self.by_status[TaskStatus.DONE]

    @computed_field(alias="inProgress")  # type: ignore[prop-decorator]
    @property
    def in_progress(self) -> int:
        return self.by_status[TaskStatus.IN_PROGRESS]

    @computed_field(alias="pending")  # type: ignore[prop-decorator]
    @property
    def pending(self) -> int:
        return (
            self.by_status[TaskStatus.BACKLOG]
            + self.by_status[TaskStatus.PLANNED]
            + self.by_status[TaskStatus.READY]
        )
