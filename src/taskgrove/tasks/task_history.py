# src/taskgrove/tasks/task_history.py

"""
Undo/redo history for one TaskStore.

Every top-level store mutation is recorded as one reversible Action.
Reversing an action goes through the store's history-free mutation helpers,
so undo/redo never record new actions themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from ..core.errors import StateError

if TYPE_CHECKING:
    from .task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


@dataclass(slots=True, frozen=True)
class Action:
    task_id: int
    timestamp: datetime = field(default_factory=datetime.now, kw_only=True)

    verb: ClassVar[str] = "Changed"

    def describe(self) -> str:
        return f"{self.verb} task #{self.task_id}"

    def task_ids(self) -> set[int]:
        return {self.task_id}

    def undo(self, store: TaskStore) -> None:
        raise NotImplementedError

    def redo(self, store: TaskStore) -> None:
        raise NotImplementedError


@dataclass(slots=True, frozen=True)
class CreateAction(Action):
    verb: ClassVar[str] = "Created"

    def undo(self, store: TaskStore) -> None:
        store._soft_delete_quiet(self.task_id)

    def redo(self, store: TaskStore) -> None:
        store._restore_quiet(self.task_id)


@dataclass(slots=True, frozen=True)
class ModifyAction(Action):
    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)

    verb: ClassVar[str] = "Modified"

    def task_ids(self) -> set[int]:
        ids = {self.task_id}
        for snap in (self.before, self.after):
            if snap.get("parent_id") is not None:
                ids.add(snap["parent_id"])
        return ids

    def undo(self, store: TaskStore) -> None:
        store._apply_snapshot(self.task_id, self.before)

    def redo(self, store: TaskStore) -> None:
        store._apply_snapshot(self.task_id, self.after)


@dataclass(slots=True, frozen=True)
class DeleteAction(Action):
    affected_ids: tuple[int, ...] = ()

    verb: ClassVar[str] = "Deleted"

    def task_ids(self) -> set[int]:
        return {self.task_id, *self.affected_ids}

    def undo(self, store: TaskStore) -> None:
        store._restore_many_quiet(self.affected_ids)

    def redo(self, store: TaskStore) -> None:
        store._redelete_quiet(self.affected_ids)


@dataclass(slots=True, frozen=True)
class RestoreAction(Action):
    verb: ClassVar[str] = "Restored"

    def undo(self, store: TaskStore) -> None:
        store._soft_delete_quiet(self.task_id)

    def redo(self, store: TaskStore) -> None:
        store._restore_quiet(self.task_id)


class HistoryLog:
    """
    Bounded undo stack plus redo stack.

    - record() pushes a new action, drops the oldest past `limit`, clears redo
    - undo()/redo() move one action between the stacks; if reversing it fails,
      the action goes back where it came from and the error propagates
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be >= 1")
        self.limit = int(limit)
        self._undo: list[Action] = []
        self._redo: list[Action] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo_actions(self) -> list[Action]:
        return list(self._undo)

    def record(self, action: Action) -> None:
        self._undo.append(action)
        if len(self._undo) > self.limit:
            dropped = self._undo.pop(0)
            logger.debug("History full, dropped %s", dropped.describe())
        self._redo.clear()

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def forget(self, task_ids: Iterable[int]) -> int:
        """Drop every action that references one of `task_ids` (used after purge)."""
        gone = set(task_ids)
        if not gone:
            return 0
        before = len(self._undo) + len(self._redo)
        self._undo = [a for a in self._undo if not (a.task_ids() & gone)]
        self._redo = [a for a in self._redo if not (a.task_ids() & gone)]
        return before - len(self._undo) - len(self._redo)

    def requeue(self, action: Action, *, undone: bool) -> None:
        """Move `action` back after its undo (undone=True) or redo could not be persisted."""
        src, dst = (self._redo, self._undo) if undone else (self._undo, self._redo)
        if src and src[-1] is action:
            src.pop()
        dst.append(action)

    def undo(self, store: TaskStore) -> Action:
        if not self._undo:
            raise StateError("Nothing to undo")
        action = self._undo.pop()
        try:
            action.undo(store)
        except Exception:
            self._undo.append(action)
            raise
        self._redo.append(action)
        return action

    def redo(self, store: TaskStore) -> Action:
        if not self._redo:
            raise StateError("Nothing to redo")
        action = self._redo.pop()
        try:
            action.redo(store)
        except Exception:
            self._redo.append(action)
            raise
        self._undo.append(action)
        return action
