# src/taskgrove/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime
from typing import Any

from ..core.errors import NotFound, StateError, ValidationError
from ..core.ports import TaskBackend, TaskRecord
from .task_backend import MemoryTaskBackend
from .task_history import (
    DEFAULT_HISTORY_LIMIT,
    Action,
    CreateAction,
    DeleteAction,
    HistoryLog,
    ModifyAction,
    RestoreAction,
)
from .task_models import (
    MAX_DEPTH,
    RECORD_VERSION,
    Note,
    Task,
    TaskPriority,
    TaskStatus,
    to_local_naive,
)

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = frozenset(
    {"name", "due_date", "status", "project", "priority", "notes", "parent_id"}
)


class TaskStore:
    """
    Hierarchical task store.

    Records live in an in-memory arena indexed by id and are written through
    to a pluggable backend at the end of every top-level operation.

    Guarantees:
    - at most three tiers (root, child, grandchild), no cycles
    - `child_ids` is maintained here only, as the inverse of `parent_id`
    - a failed operation leaves the arena exactly as it was
    - every top-level mutation is one entry in `history`

    Thread-safety:
    - all public operations are serialized behind one re-entrant lock
    """

    def __init__(
        self,
        backend: TaskBackend | None = None,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._backend: TaskBackend = backend if backend is not None else MemoryTaskBackend()
        self._lock = threading.RLock()
        self.history = HistoryLog(history_limit)

        self._tasks: dict[int, Task] = {}
        self._next_id = 1

        # per-operation bookkeeping, see _transaction()
        self._depth = 0
        self._dirty: set[int] = set()
        self._purged: set[int] = set()
        self._counter_dirty = False
        self._pending: Action | None = None

        self._reload()
        logger.info(
            "TaskStore ready total=%s next_id=%s history_limit=%s",
            len(self._tasks),
            self._next_id,
            history_limit,
        )

    def close(self) -> None:
        self._backend.close()

    # ---- arena / persistence ----

    def _reload(self) -> None:
        self._tasks = self._build_arena(self._backend.all())
        stored = self._backend.get_counter()
        self._next_id = max(stored, max(self._tasks, default=0) + 1)

    @classmethod
    def _build_arena(cls, records: Iterable[TaskRecord]) -> dict[int, Task]:
        """Parse records, drop dangling parent links, rebuild child_ids, check invariants."""
        tasks: dict[int, Task] = {}
        for raw in records:
            task = Task.from_dict(raw)
            if task.id in tasks:
                raise ValidationError(f"Duplicate task id {task.id}")
            tasks[task.id] = task

        for task in tasks.values():
            if task.parent_id is not None and task.parent_id not in tasks:
                logger.warning(
                    "Task %s points at missing parent %s; promoting to root",
                    task.id,
                    task.parent_id,
                )
                task.parent_id = None

        for task in tasks.values():
            kept: list[int] = []
            for cid in task.child_ids:
                child = tasks.get(cid)
                if child is not None and child.parent_id == task.id and cid not in kept:
                    kept.append(cid)
            for child in sorted(tasks.values(), key=lambda t: t.id):
                if child.parent_id == task.id and not child.deleted and child.id not in kept:
                    kept.append(child.id)
            task.child_ids = kept

        for task in tasks.values():
            if len(cls._ancestors_in(tasks, task)) > MAX_DEPTH:
                raise ValidationError(f"Task {task.id} is nested deeper than {MAX_DEPTH} levels")
            if task.priority is None and not task.is_completed:
                raise ValidationError(f"Task {task.id} has no priority but is not completed")
        return tasks

    def _touch(self, *tasks: Task) -> None:
        for t in tasks:
            self._dirty.add(t.id)

    def _record(self, action: Action) -> None:
        self._pending = action

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[None]:
        """
        Single-writer section for one top-level operation.

        The outermost section flushes touched records to the backend in one
        batch, then records the pending history action. On error the arena is
        reloaded from the backend.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._dirty = set()
                self._purged = set()
                self._counter_dirty = False
                self._pending = None
            self._depth += 1
            try:
                yield
                if outermost:
                    self._flush()
            except BaseException:
                if outermost and (self._dirty or self._purged or self._counter_dirty):
                    logger.debug("Rolling back arena after failed operation")
                    self._reload()
                raise
            finally:
                self._depth -= 1

    def _flush(self) -> None:
        puts = [self._tasks[i].to_dict() for i in sorted(self._dirty) if i in self._tasks]
        self._backend.write_batch(
            put=puts,
            delete=sorted(self._purged),
            counter=self._next_id if self._counter_dirty else None,
        )
        if self._purged:
            dropped = self.history.forget(self._purged)
            if dropped:
                logger.debug("Forgot %d history actions for purged tasks", dropped)
        if self._pending is not None:
            self.history.record(self._pending)
        self._dirty = set()
        self._purged = set()
        self._counter_dirty = False
        self._pending = None

    # ---- tree helpers ----

    @staticmethod
    def _ancestors_in(tasks: Mapping[int, Task], task: Task) -> list[Task]:
        out: list[Task] = []
        seen = {task.id}
        pid = task.parent_id
        while pid is not None:
            if pid in seen:
                raise ValidationError(f"Cycle detected at task {pid}")
            parent = tasks.get(pid)
            if parent is None:
                break
            out.append(parent)
            seen.add(pid)
            pid = parent.parent_id
        return out

    def _ancestors(self, task: Task) -> list[Task]:
        return self._ancestors_in(self._tasks, task)

    def _depth_of(self, task: Task) -> int:
        return len(self._ancestors(task))

    def _children_of(self, task_id: int) -> list[Task]:
        """Every record pointing at task_id, deleted ones included."""
        return [t for t in self._tasks.values() if t.parent_id == task_id]

    def _height(self, task: Task, seen: set[int] | None = None) -> int:
        # Deleted descendants count too: they can be restored in place.
        seen = seen if seen is not None else set()
        seen.add(task.id)
        best = 0
        for child in self._children_of(task.id):
            if child.id in seen:
                continue
            best = max(best, 1 + self._height(child, seen))
        return best

    def _active_descendants(self, task: Task) -> list[Task]:
        """Live descendants reachable through child_ids, preorder."""
        out: list[Task] = []
        seen = {task.id}
        stack = list(reversed(task.child_ids))
        while stack:
            cid = stack.pop()
            if cid in seen:
                continue
            seen.add(cid)
            child = self._tasks.get(cid)
            if child is None or child.deleted:
                continue
            out.append(child)
            stack.extend(reversed(child.child_ids))
        return out

    def _active_children(self, task: Task) -> list[Task]:
        out = []
        for cid in task.child_ids:
            child = self._tasks.get(cid)
            if child is not None and not child.deleted:
                out.append(child)
        return out

    def _check_attach(self, task: Task | None, parent: Task) -> None:
        if task is not None:
            if parent.id == task.id or any(a.id == task.id for a in self._ancestors(parent)):
                raise ValidationError(
                    f"Cannot set parent: task {parent.id} is a descendant of task {task.id}"
                    " (would create circular reference)"
                )
        height = self._height(task) if task is not None else 0
        if self._depth_of(parent) + 1 + height > MAX_DEPTH:
            raise ValidationError(
                f"Cannot attach under task {parent.id}: hierarchy is limited to "
                f"{MAX_DEPTH + 1} levels (root, child, grandchild)"
            )

    def _detach(self, task: Task) -> None:
        if task.parent_id is None:
            return
        parent = self._tasks.get(task.parent_id)
        if parent is not None and task.id in parent.child_ids:
            parent.child_ids.remove(task.id)
            self._touch(parent)

    def _attach(self, task: Task) -> None:
        if task.parent_id is None:
            return
        parent = self._tasks.get(task.parent_id)
        if parent is not None and not parent.deleted and task.id not in parent.child_ids:
            parent.child_ids.append(task.id)
            self._touch(parent)

    def _attach_active_children(self, task: Task) -> None:
        for child in sorted(self._children_of(task.id), key=lambda t: t.id):
            if not child.deleted and child.id not in task.child_ids:
                task.child_ids.append(child.id)
        self._touch(task)

    def _require(self, task_id: int, *, allow_deleted: bool = False) -> Task:
        task = self._tasks.get(int(task_id))
        if task is None or (task.deleted and not allow_deleted):
            raise NotFound(int(task_id))
        return task

    # ---- cascades ----

    def _mark_completed(self, task: Task) -> None:
        task.status = TaskStatus.COMPLETED
        task.priority = None
        self._touch(task)

    def _complete_subtree(self, task: Task) -> None:
        self._mark_completed(task)
        for child in self._active_descendants(task):
            if not child.is_completed or child.priority is not None:
                self._mark_completed(child)

    def _auto_complete_ancestors(self, task: Task) -> None:
        seen = {task.id}
        current = task
        while current.parent_id is not None and current.parent_id not in seen:
            seen.add(current.parent_id)
            parent = self._tasks.get(current.parent_id)
            if parent is None or parent.deleted or parent.is_completed:
                return
            children = self._active_children(parent)
            if not children or not all(c.is_completed for c in children):
                return
            logger.debug("All children of task %s completed; completing it", parent.id)
            self._complete_subtree(parent)
            current = parent

    # ---- field handling ----

    @staticmethod
    def _coerce_name(raw: Any) -> str:
        name = str(raw or "").strip()
        if not name:
            raise ValidationError("Task name is required")
        return name

    @staticmethod
    def _coerce_due(raw: Any) -> datetime | None:
        if raw is None or raw == "":
            return None
        if isinstance(raw, datetime):
            return to_local_naive(raw)
        try:
            return to_local_naive(datetime.fromisoformat(str(raw)))
        except ValueError as e:
            raise ValidationError(f"Invalid due date '{raw}'") from e

    @staticmethod
    def _coerce_notes(raw: Any) -> list[Note]:
        out: list[Note] = []
        for n in raw or []:
            if isinstance(n, Note):
                out.append(n)
            elif isinstance(n, Mapping):
                out.append(Note.from_dict(dict(n)))
            else:
                raise ValidationError(f"Invalid note {n!r}")
        return out

    @staticmethod
    def _coerce_parent(raw: Any) -> int | None:
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid parent id '{raw}'") from e

    @staticmethod
    def _snapshot(task: Task) -> dict[str, Any]:
        return {
            "name": task.name,
            "due_date": task.due_date,
            "status": task.status,
            "project": task.project,
            "priority": task.priority,
            "notes": list(task.notes),
            "parent_id": task.parent_id,
        }

    def _apply_changes(self, task: Task, changes: Mapping[str, Any], *, cascade: bool = True) -> None:
        """
        Shared update path (forward updates and history replay).

        cascade=False applies the fields and the reparent only; completion is
        not pushed to descendants or ancestors.
        """
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        # -- validate everything before touching the record --
        values: dict[str, Any] = {}
        if "name" in changes:
            values["name"] = self._coerce_name(changes["name"])
        if "due_date" in changes:
            values["due_date"] = self._coerce_due(changes["due_date"])
        if "project" in changes:
            values["project"] = (str(changes["project"]).strip() or None) if changes["project"] else None
        if "notes" in changes:
            values["notes"] = self._coerce_notes(changes["notes"])

        status = TaskStatus.parse(changes["status"]) if "status" in changes else task.status
        if "priority" in changes:
            raw_priority = changes["priority"]
            priority = TaskPriority.parse(raw_priority) if raw_priority else None
        else:
            priority = task.priority
        if status == TaskStatus.COMPLETED:
            priority = None
        elif priority is None:
            raise ValidationError(
                f"Task {task.id} needs a priority when its status is '{status.value}'"
            )

        new_parent: Task | None = None
        reparent = False
        if "parent_id" in changes:
            parent_id = self._coerce_parent(changes["parent_id"])
            if parent_id != task.parent_id:
                reparent = True
                if parent_id is not None:
                    new_parent = self._tasks.get(parent_id)
                    if new_parent is None or new_parent.deleted:
                        raise NotFound(parent_id, f"Parent task with ID {parent_id} not found")
                    self._check_attach(task, new_parent)

        # -- apply --
        if reparent:
            self._detach(task)
            task.parent_id = new_parent.id if new_parent is not None else None
            self._attach(task)
        for key, value in values.items():
            setattr(task, key, value)
        task.status = status
        task.priority = priority
        self._touch(task)

        if not cascade:
            return
        if task.is_completed:
            self._complete_subtree(task)
        self._auto_complete_ancestors(task)

    # ---- history-free mutations (used by the History Log) ----

    def _apply_snapshot(self, task_id: int, snapshot: Mapping[str, Any]) -> None:
        self._apply_changes(self._require(task_id), snapshot, cascade=False)

    def _soft_delete_quiet(self, task_id: int) -> None:
        task = self._require(task_id, allow_deleted=True)
        if task.deleted:
            return
        self._detach(task)
        task.deleted = True
        task.deleted_at = datetime.now()
        self._touch(task)

    def _restore_one(self, task: Task) -> None:
        task.deleted = False
        task.deleted_at = None
        self._attach(task)
        self._attach_active_children(task)

    def _restore_quiet(self, task_id: int) -> None:
        task = self._require(task_id, allow_deleted=True)
        if task.deleted:
            self._restore_one(task)

    def _restore_many_quiet(self, task_ids: Iterable[int]) -> None:
        """Restore deepest descendants first; ids purged meanwhile are skipped."""
        tasks = [self._tasks[i] for i in task_ids if i in self._tasks]
        tasks.sort(key=lambda t: (-self._depth_of(t), t.id))
        for task in tasks:
            if task.deleted:
                self._restore_one(task)

    def _redelete_quiet(self, task_ids: Iterable[int]) -> None:
        """Re-delete a precomputed closure without rerunning cascade logic."""
        ids = set(task_ids)
        now = datetime.now()
        for task_id in sorted(ids):
            task = self._tasks.get(task_id)
            if task is None or task.deleted:
                continue
            if task.parent_id not in ids:
                self._detach(task)
            task.deleted = True
            task.deleted_at = now
            self._touch(task)

    # ---- public API: mutations ----

    def create(
        self,
        name: str,
        *,
        due_date: datetime | str | None = None,
        status: TaskStatus | str | None = None,
        project: str | None = None,
        priority: TaskPriority | str | None = None,
        notes: Iterable[Note | Mapping[str, Any]] | None = None,
        parent_id: int | None = None,
    ) -> Task:
        with self._transaction():
            clean_name = self._coerce_name(name)
            st = TaskStatus.parse(status) if status else TaskStatus.NOT_STARTED
            pr: TaskPriority | None = TaskPriority.parse(priority) if priority else TaskPriority.MEDIUM
            if st == TaskStatus.COMPLETED:
                pr = None

            parent: Task | None = None
            pid = self._coerce_parent(parent_id)
            if pid is not None:
                parent = self._tasks.get(pid)
                if parent is None or parent.deleted:
                    raise ValidationError(f"Parent task with ID {pid} not found")
                self._check_attach(None, parent)

            task = Task(
                id=self._next_id,
                name=clean_name,
                status=st,
                priority=pr,
                due_date=self._coerce_due(due_date),
                project=(project.strip() or None) if project else None,
                notes=self._coerce_notes(notes),
                parent_id=pid,
            )
            self._next_id += 1
            self._counter_dirty = True
            self._tasks[task.id] = task
            self._touch(task)
            self._attach(task)
            self._auto_complete_ancestors(task)

            self._record(CreateAction(task.id))
            logger.debug("Task created id=%s parent=%s status=%s", task.id, pid, st.value)
            return task.copy()

    def update(self, task_id: int, **changes: Any) -> Task:
        """
        Apply field changes to a live task.

        Completing a task completes its whole subtree; a parent whose children
        are now all completed is completed too, up the ancestor chain.
        """
        with self._transaction():
            task = self._require(task_id)
            before = self._snapshot(task)
            self._apply_changes(task, changes)
            after = self._snapshot(task)
            self._record(ModifyAction(task.id, before=before, after=after))
            logger.debug("Task updated id=%s fields=%s", task.id, sorted(changes))
            return task.copy()

    def delete(self, task_id: int, cascade: bool = False) -> list[int]:
        """
        Soft-delete a task.

        cascade=True deletes the whole live subtree; otherwise live children
        are promoted to roots. Returns every id marked deleted.
        """
        with self._transaction():
            task = self._require(task_id)
            now = datetime.now()
            affected = [task.id]

            if cascade:
                for child in self._active_descendants(task):
                    child.deleted = True
                    child.deleted_at = now
                    self._touch(child)
                    affected.append(child.id)
            else:
                for child in self._active_children(task):
                    child.parent_id = None
                    self._touch(child)
                task.child_ids = [c for c in task.child_ids if c in self._tasks and self._tasks[c].deleted]

            self._detach(task)
            task.deleted = True
            task.deleted_at = now
            self._touch(task)

            self._record(DeleteAction(task.id, affected_ids=tuple(affected)))
            logger.debug("Task deleted id=%s cascade=%s affected=%s", task.id, cascade, affected)
            return affected

    def restore(self, task_id: int) -> Task:
        with self._transaction():
            task = self._require(task_id, allow_deleted=True)
            if not task.deleted:
                raise StateError(f"Task with ID {task.id} is not deleted")
            self._restore_one(task)
            self._record(RestoreAction(task.id))
            logger.debug("Task restored id=%s", task.id)
            return task.copy()

    def purge(self, task_id: int) -> list[int]:
        """
        Permanently erase a deleted task and its deleted descendants.

        Live children still pointing at a purged task become roots. Purged
        ids disappear from history; purging itself cannot be undone.
        """
        with self._transaction():
            task = self._require(task_id, allow_deleted=True)
            if not task.deleted:
                raise StateError(f"Task with ID {task.id} is not in trash. Delete it first.")
            purged: list[int] = []
            self._purge_subtree(task.id, purged, set())
            logger.debug("Purged tasks %s", purged)
            return purged

    def _purge_subtree(self, task_id: int, purged: list[int], seen: set[int]) -> None:
        if task_id in seen:
            return
        seen.add(task_id)
        task = self._tasks.get(task_id)
        if task is None:
            # already erased earlier in this cascade
            return
        for child in self._children_of(task_id):
            if child.deleted:
                self._purge_subtree(child.id, purged, seen)
            else:
                child.parent_id = None
                self._touch(child)
        self._detach(task)
        del self._tasks[task_id]
        self._purged.add(task_id)
        purged.append(task_id)

    def purge_all(self) -> list[int]:
        """Empty the trash."""
        with self._transaction():
            purged: list[int] = []
            for task_id in sorted(i for i, t in self._tasks.items() if t.deleted):
                if task_id in self._tasks:
                    purged.extend(self.purge(task_id))
            logger.info("Trash emptied: %d task(s) purged", len(purged))
            return purged

    def add_note(self, task_id: int, content: str) -> Note:
        with self._transaction():
            task = self._require(task_id)
            text = (content or "").strip()
            if not text:
                raise ValidationError("Note content is required")
            before = self._snapshot(task)
            note = Note(timestamp=datetime.now(), content=text)
            task.notes.append(note)
            self._touch(task)
            self._record(ModifyAction(task.id, before=before, after=self._snapshot(task)))
            return note

    def undo(self) -> Action:
        with self._lock:
            action: Action | None = None
            try:
                with self._transaction():
                    action = self.history.undo(self)
            except Exception:
                # reversed in memory but not persisted
                if action is not None:
                    self.history.requeue(action, undone=True)
                raise
            logger.debug("Undo: %s", action.describe())
            return action

    def redo(self) -> Action:
        with self._lock:
            action: Action | None = None
            try:
                with self._transaction():
                    action = self.history.redo(self)
            except Exception:
                if action is not None:
                    self.history.requeue(action, undone=False)
                raise
            logger.debug("Redo: %s", action.describe())
            return action

    # ---- public API: reads ----

    def get_by_id(self, task_id: int, include_deleted: bool = False) -> Task | None:
        with self._lock:
            task = self._tasks.get(int(task_id))
            if task is None or (task.deleted and not include_deleted):
                return None
            return task.copy()

    def get_all(self, include_deleted: bool = False) -> list[Task]:
        with self._lock:
            return [
                self._tasks[i].copy()
                for i in sorted(self._tasks)
                if include_deleted or not self._tasks[i].deleted
            ]

    def get_deleted(self) -> list[Task]:
        with self._lock:
            return [self._tasks[i].copy() for i in sorted(self._tasks) if self._tasks[i].deleted]

    @property
    def next_id(self) -> int:
        return self._next_id

    # ---- bulk export / import ----

    def dump(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": RECORD_VERSION,
                "records": [self._tasks[i].to_dict() for i in sorted(self._tasks)],
                "next_id": self._next_id,
            }

    def load(self, data: Mapping[str, Any]) -> None:
        """Replace every record with `data` (a dump()); history is reset."""
        version = data.get("version", RECORD_VERSION)
        if version != RECORD_VERSION:
            raise ValidationError(f"Unsupported record version {version!r}")
        records = data.get("records")
        if not isinstance(records, list):
            raise ValidationError("Dump has no 'records' list")

        with self._lock:
            tasks = self._build_arena(records)
            try:
                counter = int(data.get("next_id") or 1)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid next_id {data.get('next_id')!r}") from e
            counter = max(counter, max(tasks, default=0) + 1, self._next_id)

            self._backend.replace_all([t.to_dict() for t in tasks.values()], counter)
            self._tasks = tasks
            self._next_id = counter
            self.history.clear()
            logger.info("Loaded %d task(s), next_id=%s", len(tasks), counter)
