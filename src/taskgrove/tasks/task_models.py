# src/taskgrove/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError

RECORD_VERSION = 1
MAX_DEPTH = 2  # root=0, child=1, grandchild=2


def _norm(raw: str) -> str:
    return " ".join(raw.replace("_", " ").replace("-", " ").split()).lower()


class TaskStatus(StrEnum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    BLOCKED = "Blocked"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, raw: str | TaskStatus) -> TaskStatus:
        """Accept "in progress", "IN_PROGRESS", "in-progress", ..."""
        if isinstance(raw, cls):
            return raw
        key = _norm(str(raw))
        for member in cls:
            if _norm(member.value) == key:
                return member
        raise ValidationError(
            f"Invalid status '{raw}'. Must be one of: {', '.join(m.value for m in cls)}"
        )


class TaskPriority(StrEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        """Sort rank: Critical first."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, raw: str | TaskPriority) -> TaskPriority:
        if isinstance(raw, cls):
            return raw
        key = _norm(str(raw))
        for member in cls:
            if member.value.lower() == key:
                return member
        raise ValidationError(
            f"Invalid priority '{raw}'. Must be one of: {', '.join(m.value for m in cls)}"
        )


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}


def to_local_naive(value: datetime) -> datetime:
    """Aware datetimes become naive local time; naive ones are taken as local already."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_local_naive(value)
    try:
        return to_local_naive(datetime.fromisoformat(str(value)))
    except ValueError as e:
        raise ValidationError(f"Invalid timestamp '{value}'") from e


@dataclass(slots=True, frozen=True)
class Note:
    timestamp: datetime
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        ts = _str_to_dt(data.get("timestamp"))
        if ts is None:
            raise ValidationError(f"Note without a timestamp: {data!r}")
        return cls(timestamp=ts, content=str(data.get("content", "")))


@dataclass(slots=True)
class Task:
    """A single task record.

    `child_ids` is derived from the `parent_id` of other records and is only
    ever written by the store.
    """

    id: int
    name: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: TaskPriority | None = TaskPriority.MEDIUM
    due_date: datetime | None = None
    project: str | None = None
    notes: list[Note] = field(default_factory=list)
    parent_id: int | None = None
    child_ids: list[int] = field(default_factory=list)
    deleted: bool = False
    deleted_at: datetime | None = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def copy(self) -> Task:
        return Task(
            id=self.id,
            name=self.name,
            status=self.status,
            priority=self.priority,
            due_date=self.due_date,
            project=self.project,
            notes=list(self.notes),
            parent_id=self.parent_id,
            child_ids=list(self.child_ids),
            deleted=self.deleted,
            deleted_at=self.deleted_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "priority": self.priority.value if self.priority is not None else None,
            "due_date": _dt_to_str(self.due_date),
            "project": self.project,
            "notes": [n.to_dict() for n in self.notes],
            "parent_id": self.parent_id,
            "child_ids": list(self.child_ids),
            "deleted": self.deleted,
            "deleted_at": _dt_to_str(self.deleted_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        try:
            task_id = int(data["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Record without a valid id: {data!r}") from e

        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError(f"Record {task_id} has an empty name")

        raw_priority = data.get("priority")
        raw_parent = data.get("parent_id")
        return cls(
            id=task_id,
            name=name,
            status=TaskStatus.parse(data.get("status") or TaskStatus.NOT_STARTED),
            priority=TaskPriority.parse(raw_priority) if raw_priority else None,
            due_date=_str_to_dt(data.get("due_date")),
            project=data.get("project") or None,
            notes=[Note.from_dict(n) for n in data.get("notes") or [] if isinstance(n, dict)],
            parent_id=int(raw_parent) if raw_parent is not None else None,
            child_ids=[int(c) for c in data.get("child_ids") or []],
            deleted=bool(data.get("deleted", False)),
            deleted_at=_str_to_dt(data.get("deleted_at")),
        )

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return f"Task(id={self.id}, name={self.name!r}, status={self.status.value})"
