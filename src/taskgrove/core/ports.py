# src/taskgrove/core/ports.py

"""
Ports (interfaces) used by the core.

The task store depends on a storage Protocol instead of a concrete database.
This keeps persistence swappable (SQLite on disk, in-memory for tests/demos).
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

TaskRecord = dict[str, Any]
# Serialized task record, see Task.to_dict().


class TaskBackend(Protocol):
    """
    Durable key-value storage of task records by id, plus one scalar counter
    (the next id to hand out).
    """

    def get(self, task_id: int) -> TaskRecord | None: ...
    def all(self) -> list[TaskRecord]: ...

    def put(self, record: TaskRecord) -> None: ...
    def delete(self, task_id: int) -> None: ...

    def get_counter(self) -> int: ...
    def set_counter(self, value: int) -> None: ...

    def write_batch(
            self,
            *,
            put: Iterable[TaskRecord] = (),
            delete: Iterable[int] = (),
            counter: int | None = None,
    ) -> None:
        """Apply all writes of one store operation together."""
        ...

    def replace_all(self, records: Iterable[TaskRecord], counter: int) -> None: ...
    def close(self) -> None: ...
