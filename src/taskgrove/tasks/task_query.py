# src/taskgrove/tasks/task_query.py

"""
Stateless queries over a snapshot of tasks.

Nothing here touches the store: callers pass in the list they got from
TaskStore.get_all() and render whatever comes back.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .task_models import Task, TaskStatus, to_local_naive

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(minutes=15)
REMINDER_GRACE = timedelta(minutes=60)


@dataclass(slots=True, frozen=True)
class Match:
    """One field predicate; negate=True turns equality into inequality."""

    value: Any
    negate: bool = False


def inclusive_range(start: int, end: int) -> range:
    """Ids start..end, both ends included (the `[1~10]` form)."""
    return range(int(start), int(end) + 1)


def _as_match(raw: Any) -> Match | None:
    if raw is None:
        return None
    return raw if isinstance(raw, Match) else Match(raw)


def _text_eq(actual: Any, wanted: Any) -> bool:
    if actual is None:
        return False
    return str(actual).strip().lower() == str(wanted).strip().lower()


def _id_matches(task_id: int, wanted: Any) -> bool:
    if isinstance(wanted, range):
        return task_id in wanted
    if isinstance(wanted, Collection) and not isinstance(wanted, str):
        return task_id in {int(x) for x in wanted}
    return task_id == int(wanted)


def _passes(hit: bool, match: Match) -> bool:
    return not hit if match.negate else hit


def _depths(tasks: Sequence[Task]) -> dict[int, int]:
    by_id = {t.id: t for t in tasks}
    out: dict[int, int] = {}
    for t in tasks:
        depth = 0
        seen = {t.id}
        pid = t.parent_id
        while pid is not None and pid in by_id and pid not in seen:
            seen.add(pid)
            depth += 1
            pid = by_id[pid].parent_id
        out[t.id] = depth
    return out


def filter_tasks(
    tasks: Sequence[Task],
    *,
    id: Any = None,
    project: Any = None,
    priority: Any = None,
    status: Any = None,
) -> list[Task]:
    """
    Match all given predicates, then widen to the family closure.

    Each predicate is a raw value or a Match; `id` also takes a collection or
    an inclusive_range(). Text comparisons ignore case. Every ancestor and
    descendant of a match is included even if it fails the predicates.
    Result is ordered root-first (depth), then by id.
    """
    by_id = {t.id: t for t in tasks}
    id_m, project_m = _as_match(id), _as_match(project)
    priority_m, status_m = _as_match(priority), _as_match(status)

    matched: list[Task] = []
    for t in tasks:
        if id_m is not None and not _passes(_id_matches(t.id, id_m.value), id_m):
            continue
        if project_m is not None and not _passes(_text_eq(t.project, project_m.value), project_m):
            continue
        if priority_m is not None and not _passes(_text_eq(t.priority, priority_m.value), priority_m):
            continue
        if status_m is not None and not _passes(_text_eq(t.status, status_m.value), status_m):
            continue
        matched.append(t)

    result: dict[int, Task] = {t.id: t for t in matched}
    for t in matched:
        # ancestors
        pid = t.parent_id
        while pid is not None and pid in by_id and pid not in result:
            result[pid] = by_id[pid]
            pid = by_id[pid].parent_id
        # descendants
        stack = list(t.child_ids)
        seen = {t.id}
        while stack:
            cid = stack.pop()
            if cid in seen or cid not in by_id:
                continue
            seen.add(cid)
            result[cid] = by_id[cid]
            stack.extend(by_id[cid].child_ids)

    family = list(result.values())
    depths = _depths(family)
    family.sort(key=lambda t: (depths[t.id], t.id))
    return family


def _due_key(task: Task) -> tuple[int, float]:
    if task.due_date is None:
        return (1, 0.0)
    return (0, task.due_date.timestamp())


def sort_by_priority(tasks: Iterable[Task]) -> list[Task]:
    """
    Critical, High, Medium, Low; ties by earliest due date, undated last.
    Tasks without a priority (completed ones) go last, newest id first.
    """

    def key(t: Task) -> tuple:
        if t.priority is None:
            return (1, 0, (0, 0.0), -t.id)
        return (0, t.priority.rank, _due_key(t), 0)

    return sorted(tasks, key=key)


def to_display_order(tasks: Sequence[Task]) -> list[Task]:
    """
    Depth-first: each task followed by its children, in the order the
    children appear in `tasks`. Tasks whose parent is not in `tasks` are
    appended at the end with their own subtrees.
    """
    by_id = {t.id: t for t in tasks}
    children: dict[int, list[Task]] = {}
    for t in tasks:
        if t.parent_id is not None and t.parent_id in by_id:
            children.setdefault(t.parent_id, []).append(t)

    out: list[Task] = []
    emitted: set[int] = set()

    def emit(task: Task) -> None:
        if task.id in emitted:
            return
        emitted.add(task.id)
        out.append(task)
        for child in children.get(task.id, []):
            emit(child)

    for t in tasks:
        if t.parent_id is None:
            emit(t)
    for t in tasks:
        if t.parent_id is not None and t.parent_id not in by_id:
            emit(t)
    # whatever is left sits on a parent cycle; keep it visible
    for t in tasks:
        if t.id not in emitted:
            logger.warning("Task %s is not reachable from any root", t.id)
            emit(t)
    return out


def search_tasks(tasks: Iterable[Task], text: str) -> list[Task]:
    """Exact id, or case-insensitive substring of name or project."""
    query = (text or "").strip()
    if not query:
        return []
    needle = query.lower()
    wanted_id = int(query) if query.isdigit() else None

    out = []
    for t in tasks:
        if wanted_id is not None and t.id == wanted_id:
            out.append(t)
        elif needle in t.name.lower():
            out.append(t)
        elif t.project and needle in t.project.lower():
            out.append(t)
    return out


def is_overdue(task: Task, now: datetime | None = None) -> bool:
    if task.due_date is None or task.status == TaskStatus.COMPLETED:
        return False
    ref = to_local_naive(now) if now is not None else datetime.now()
    return to_local_naive(task.due_date) < ref


def due_for_reminder(
    tasks: Iterable[Task],
    now: datetime | None = None,
    *,
    lead: timedelta = REMINDER_LEAD,
    grace: timedelta = REMINDER_GRACE,
) -> list[Task]:
    """
    Open tasks due within `lead` from now, or overdue by less than `grace`.
    Deciding how (and whether) to notify is up to the caller.
    """
    # due dates compared as naive local time
    ref = to_local_naive(now) if now is not None else datetime.now()
    out = []
    for t in tasks:
        if t.due_date is None or t.status == TaskStatus.COMPLETED:
            continue
        if -grace < to_local_naive(t.due_date) - ref <= lead:
            out.append(t)
    return sorted(out, key=lambda t: (to_local_naive(t.due_date), t.id))
