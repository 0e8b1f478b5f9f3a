# src/taskgrove/cli/commands.py

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Callable
from typing import Any

from ..core.errors import TaskError, ValidationError
from ..core.state import AppState
from ..tasks.task_api import complete_task, current_view, pending_reminders
from ..tasks.task_dates import parse_due_date
from ..tasks.task_models import Task, TaskPriority, TaskStatus
from ..tasks.task_query import Match, inclusive_range, is_overdue, search_tasks

CommandHandler = Callable[[AppState, list[str]], str]

logger = logging.getLogger(__name__)

_COMPACT = re.compile(r"^([a-zA-Z_]+)([\d\[].*)$")
_ASSIGN = re.compile(r"^([a-z_]+)(!?=)(.*)$")


class CommandRegistry:
    """Colon-command registry used by the console connector (:a, :m, :d, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    @staticmethod
    def parse(line: str) -> tuple[str, list[str]]:
        """Split ":m 1 x" and the compact ":m1 x" into ("m", ["1", "x"])."""
        body = line[1:].strip()
        try:
            parts = shlex.split(body)
        except ValueError:
            parts = body.split()
        if not parts:
            return "", []
        m = _COMPACT.match(parts[0])
        if m:
            return m.group(1).lower(), [m.group(2), *parts[1:]]
        return parts[0].lower(), parts[1:]

    def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like ":command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith(":"):
            return None

        name, args = self.parse(line)
        if not name:
            return "Empty command. Use :h to list available commands."

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: :{name}. Use :h to list available commands."

        try:
            return handler(state, args)
        except TaskError as e:
            logger.debug("Command :%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  :{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- argument helpers ----


def _parse_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"Invalid task ID '{raw}'") from e


def _parse_ids(raw: str) -> list[int]:
    """3, [1,2,5], [1~10] or [1-10]."""
    if not (raw.startswith("[") and raw.endswith("]")):
        return [_parse_id(raw)]
    inner = raw[1:-1]
    for sep in ("~", "-"):
        if sep in inner:
            start, _, end = inner.partition(sep)
            return list(inclusive_range(_parse_id(start.strip()), _parse_id(end.strip())))
    return [_parse_id(p.strip()) for p in inner.split(",") if p.strip()]


def _split_fields(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Separate free words from key=value pairs."""
    words: list[str] = []
    fields: dict[str, str] = {}
    for a in args:
        m = _ASSIGN.match(a)
        if m and m.group(2) == "=":
            fields[m.group(1)] = m.group(3)
        else:
            words.append(a)
    return words, fields


def _field_changes(fields: dict[str, str]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for key, value in fields.items():
        empty = value.strip().lower() in ("", "none", "-")
        if key == "due":
            changes["due_date"] = None if empty else parse_due_date(value)
        elif key == "parent":
            changes["parent_id"] = None if empty else _parse_id(value)
        elif key in ("name", "status"):
            changes[key] = value
        elif key in ("project", "priority"):
            changes[key] = None if empty else value
        else:
            raise ValidationError(f"Unknown field '{key}'")
    return changes


def _depth_in(task: Task, by_id: dict[int, Task]) -> int:
    depth = 0
    seen = {task.id}
    pid = task.parent_id
    while pid is not None and pid in by_id and pid not in seen:
        seen.add(pid)
        depth += 1
        pid = by_id[pid].parent_id
    return depth


def format_task(task: Task, depth: int = 0) -> str:
    indent = "  " * depth + ("└─ " if depth else "")
    priority = task.priority.value if task.priority else "-"
    parts = [f"#{task.id:<4}", f"{indent}{task.name}", f"[{task.status.value}]", f"({priority})"]
    if task.project:
        parts.append(f"@{task.project}")
    if task.due_date:
        due = task.due_date.strftime("%Y-%m-%d %H:%M")
        parts.append(f"due {due}" + (" OVERDUE!" if is_overdue(task) else ""))
    if task.notes:
        parts.append(f"+{len(task.notes)} note(s)")
    return " ".join(parts)


def _format_list(tasks: list[Task], empty: str) -> str:
    if not tasks:
        return empty
    by_id = {t.id: t for t in tasks}
    return "\n".join(format_task(t, _depth_in(t, by_id)) for t in tasks)


# ---- handlers ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str]) -> str:
    """
    :a Buy milk project=Home priority=High due=tomorrow parent=3
    """
    words, fields = _split_fields(args)
    changes = _field_changes(fields)
    name = changes.pop("name", None) or " ".join(words)
    task = state.task_store.create(name, **changes)
    return f"Created task #{task.id}: {task.name}"


def cmd_modify(state: AppState, args: list[str]) -> str:
    """
    :m 3 status=completed priority=- name="New name" parent=none
    """
    if not args:
        return "Usage: :m [task_id] field=value ..."
    task_id = _parse_id(args[0])
    words, fields = _split_fields(args[1:])
    changes = _field_changes(fields)
    if words and "name" not in changes:
        changes["name"] = " ".join(words)
    if not changes:
        return "Nothing to change. Fields: name, status, priority, project, due, parent."
    task = state.task_store.update(task_id, **changes)
    return f"Modified task #{task.id}"


def cmd_complete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: :c [task_id]"
    task = complete_task(state, _parse_id(args[0]))
    return f"Completed task #{task.id}"


def cmd_delete(state: AppState, args: list[str]) -> str:
    """
    :d 3            -> delete, children become standalone tasks
    :d 3 --all      -> delete with all subtasks
    :d [1,2,5] / :d [1~10]
    """
    if not args:
        return "Usage: :d [task_id] or :d [1,2,5] or :d [1~10] (add --all to delete subtasks)"
    cascade = "--all" in args
    targets = [a for a in args if a != "--all"]
    ids = _parse_ids(targets[0]) if targets else []

    deleted: list[int] = []
    missing: list[int] = []
    for task_id in ids:
        if task_id in deleted:
            continue
        if state.task_store.get_by_id(task_id) is None:
            missing.append(task_id)
            continue
        deleted.extend(state.task_store.delete(task_id, cascade=cascade))

    if not deleted:
        return f"No valid tasks found for IDs: {', '.join(map(str, ids))}"
    msg = f"Deleted {len(deleted)} task(s): {', '.join(f'#{i}' for i in deleted)}"
    if missing:
        msg += f" (not found: {', '.join(map(str, missing))})"
    return msg


def cmd_restore(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: :restore [task_id]"
    task = state.task_store.restore(_parse_id(args[0]))
    return f"Restored task #{task.id}"


def cmd_purge(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: :purge [task_id] or :purge_all"
    purged = state.task_store.purge(_parse_id(args[0]))
    return f"Permanently deleted {len(purged)} task(s)"


def cmd_purge_all(state: AppState, args: list[str]) -> str:
    if not state.task_store.get_deleted():
        return "Trash is already empty"
    purged = state.task_store.purge_all()
    return f"Permanently deleted {len(purged)} task(s)"


def cmd_note(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: :note [task_id] text..."
    note = state.task_store.add_note(_parse_id(args[0]), " ".join(args[1:]))
    return f"Note added at {note.timestamp:%Y-%m-%d %H:%M}"


def cmd_filter(state: AppState, args: list[str]) -> str:
    """
    :f project=Work status!=completed id=[1~10]
    :f            -> clear filters
    """
    if not args:
        state.filters = {}
        return "Filters cleared"

    filters: dict[str, Any] = {}
    for a in args:
        m = _ASSIGN.match(a)
        if not m or m.group(1) not in ("id", "project", "priority", "status"):
            return f"Invalid filter '{a}'. Use id=, project=, priority=, status= (or != to negate)"
        key, op, value = m.group(1), m.group(2), m.group(3)
        parsed: Any = value
        if key == "id":
            parsed = _parse_ids(value)
            if len(parsed) == 1:
                parsed = parsed[0]
        elif key == "status":
            parsed = TaskStatus.parse(value).value
        elif key == "priority":
            parsed = TaskPriority.parse(value).value
        filters[key] = Match(parsed, negate=(op == "!="))
    state.filters = filters
    return _format_list(current_view(state), "No tasks match the filter")


def cmd_list(state: AppState, args: list[str]) -> str:
    return _format_list(current_view(state), "No tasks")


def cmd_sort(state: AppState, args: list[str]) -> str:
    state.sort_by_priority = not state.sort_by_priority
    mode = "priority" if state.sort_by_priority else "id"
    return f"Sorting by {mode}"


def cmd_trash(state: AppState, args: list[str]) -> str:
    deleted = state.task_store.get_deleted()
    if not deleted:
        return "Trash is empty"
    lines = [f"Trash ({len(deleted)}):"]
    for t in deleted:
        when = f"{t.deleted_at:%Y-%m-%d %H:%M}" if t.deleted_at else "?"
        lines.append(f"  #{t.id} {t.name} (deleted {when})")
    return "\n".join(lines)


def cmd_search(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: :search text"
    hits = search_tasks(state.task_store.get_all(), " ".join(args))
    if not hits:
        return f'No tasks found matching "{" ".join(args)}"'
    return f"Found {len(hits)} task(s):\n" + "\n".join(format_task(t) for t in hits)


def cmd_due(state: AppState, args: list[str]) -> str:
    return _format_list(pending_reminders(state), "Nothing due soon")


def cmd_undo(state: AppState, args: list[str]) -> str:
    return f"Undo: {state.task_store.undo().describe()}"


def cmd_redo(state: AppState, args: list[str]) -> str:
    return f"Redo: {state.task_store.redo().describe()}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h"])
registry.register(
    "add", cmd_add, help_text="Add a task: :a name [project= priority= status= due= parent=].", aliases=["a"]
)
registry.register("modify", cmd_modify, help_text="Modify a task: :m id field=value ...", aliases=["m"])
registry.register("complete", cmd_complete, help_text="Mark a task (and its subtasks) completed.", aliases=["c"])
registry.register(
    "delete", cmd_delete, help_text="Delete: :d id | [1,2,5] | [1~10], --all deletes subtasks.", aliases=["d"]
)
registry.register("restore", cmd_restore, help_text="Restore a task from trash.")
registry.register("purge", cmd_purge, help_text="Permanently delete a task in trash.")
registry.register("purge_all", cmd_purge_all, help_text="Empty the trash.")
registry.register("note", cmd_note, help_text="Append a note: :note id text.")
registry.register("filter", cmd_filter, help_text="Filter: :f project=X status!=completed, :f clears.", aliases=["f"])
registry.register("list", cmd_list, help_text="Show the current view.", aliases=["ls"])
registry.register("sort", cmd_sort, help_text="Toggle priority / id ordering.", aliases=["s"])
registry.register("trash", cmd_trash, help_text="Show deleted tasks.")
registry.register("search", cmd_search, help_text="Search by id, name or project.", aliases=["?"])
registry.register("due", cmd_due, help_text="Tasks due in the next 15 minutes or just overdue.")
registry.register("undo", cmd_undo, help_text="Undo the last change.", aliases=["u"])
registry.register("redo", cmd_redo, help_text="Redo the last undone change.", aliases=["r"])
