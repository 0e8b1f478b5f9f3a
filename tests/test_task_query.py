# tests/test_task_query.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from taskgrove.tasks.task_models import Task, TaskPriority, TaskStatus
from taskgrove.tasks.task_query import (
    Match,
    due_for_reminder,
    filter_tasks,
    inclusive_range,
    is_overdue,
    search_tasks,
    sort_by_priority,
    to_display_order,
)
from taskgrove.tasks.task_store import TaskStore


def _family(store: TaskStore) -> tuple[Task, Task, Task, Task]:
    root = store.create("Plan trip")
    child = store.create("Book hotel", parent_id=root.id, priority="High")
    grand = store.create("Compare prices", parent_id=child.id, project="Work")
    other = store.create("Unrelated", project="Home")
    return root, child, grand, other


def _ids(tasks: list[Task]) -> list[int]:
    return [t.id for t in tasks]


def test_filter_includes_ancestors_root_first(store: TaskStore) -> None:
    root, child, grand, _ = _family(store)

    result = filter_tasks(store.get_all(), project="work")

    assert _ids(result) == [root.id, child.id, grand.id]


def test_filter_includes_descendants(store: TaskStore) -> None:
    root, child, grand, _ = _family(store)

    assert _ids(filter_tasks(store.get_all(), id=child.id)) == [root.id, child.id, grand.id]
    assert _ids(filter_tasks(store.get_all(), id=root.id)) == [root.id, child.id, grand.id]


def test_filter_is_and_across_fields(store: TaskStore) -> None:
    _, child, _, other = _family(store)

    assert filter_tasks(store.get_all(), project="Home", priority="High") == []
    assert _ids(filter_tasks(store.get_all(), project="home", priority="medium")) == [other.id]


def test_filter_negation_applies_per_field(store: TaskStore) -> None:
    root, child, grand, other = _family(store)
    store.update(other.id, status="Completed")

    result = filter_tasks(store.get_all(), status=Match("completed", negate=True))
    assert _ids(result) == [root.id, child.id, grand.id]

    result = filter_tasks(
        store.get_all(),
        status=Match("Completed", negate=True),
        priority=Match("Medium"),
    )
    # root matches directly; the family comes along
    assert _ids(result) == [root.id, child.id, grand.id]


def test_filter_by_id_range_and_collection(store: TaskStore) -> None:
    for i in range(5):
        store.create(f"t{i}")
    tasks = store.get_all()

    assert _ids(filter_tasks(tasks, id=inclusive_range(2, 4))) == [2, 3, 4]
    assert _ids(filter_tasks(tasks, id=[1, 5])) == [1, 5]
    assert _ids(filter_tasks(tasks, id=Match(inclusive_range(1, 4), negate=True))) == [5]


def test_filter_without_predicates_returns_everything(store: TaskStore) -> None:
    root, child, grand, other = _family(store)
    assert _ids(filter_tasks(store.get_all())) == [root.id, other.id, child.id, grand.id]


def test_sort_by_priority_then_due_date() -> None:
    tasks = [
        Task(1, "late critical", priority=TaskPriority.CRITICAL, due_date=datetime(2024, 1, 2)),
        Task(2, "early critical", priority=TaskPriority.CRITICAL, due_date=datetime(2024, 1, 1)),
        Task(3, "done", status=TaskStatus.COMPLETED, priority=None),
        Task(4, "done later", status=TaskStatus.COMPLETED, priority=None),
        Task(5, "low", priority=TaskPriority.LOW),
        Task(6, "undated critical", priority=TaskPriority.CRITICAL),
        Task(7, "high", priority=TaskPriority.HIGH, due_date=datetime(2023, 6, 1)),
    ]

    assert _ids(sort_by_priority(tasks)) == [2, 1, 6, 7, 5, 4, 3]


def test_display_order_children_follow_parents() -> None:
    r1 = Task(1, "r1")
    c1 = Task(2, "c1", parent_id=1)
    c2 = Task(3, "c2", parent_id=1)
    g = Task(4, "g", parent_id=2)
    orphan = Task(5, "orphan", parent_id=99)
    r2 = Task(6, "r2")

    ordered = to_display_order([c2, r2, g, orphan, r1, c1])

    assert _ids(ordered) == [6, 1, 3, 2, 4, 5]


def test_display_order_keeps_orphan_subtrees() -> None:
    orphan = Task(1, "orphan", parent_id=50)
    kid = Task(2, "kid", parent_id=1)
    root = Task(3, "root")

    assert _ids(to_display_order([kid, orphan, root])) == [3, 1, 2]


def test_search_by_id_name_or_project(store: TaskStore) -> None:
    root, child, grand, other = _family(store)

    assert _ids(search_tasks(store.get_all(), "HOTEL")) == [child.id]
    assert _ids(search_tasks(store.get_all(), "work")) == [grand.id]
    assert _ids(search_tasks(store.get_all(), str(other.id))) == [other.id]
    assert search_tasks(store.get_all(), "   ") == []


def test_is_overdue() -> None:
    now = datetime(2024, 5, 1, 12, 0)
    late = Task(1, "late", due_date=now - timedelta(hours=1))
    done = Task(2, "done", status=TaskStatus.COMPLETED, priority=None, due_date=now - timedelta(hours=1))
    future = Task(3, "future", due_date=now + timedelta(hours=1))
    undated = Task(4, "undated")

    assert is_overdue(late, now)
    assert not is_overdue(done, now)
    assert not is_overdue(future, now)
    assert not is_overdue(undated, now)


def test_due_for_reminder_window() -> None:
    now = datetime(2024, 5, 1, 12, 0)
    tasks = [
        Task(1, "soon", due_date=datetime(2024, 5, 1, 12, 10)),
        Task(2, "later", due_date=datetime(2024, 5, 1, 12, 20)),
        Task(3, "just missed", due_date=datetime(2024, 5, 1, 11, 30)),
        Task(4, "long gone", due_date=datetime(2024, 5, 1, 10, 30)),
        Task(5, "done", status=TaskStatus.COMPLETED, priority=None, due_date=datetime(2024, 5, 1, 12, 5)),
        Task(6, "undated"),
        Task(7, "edge", due_date=datetime(2024, 5, 1, 12, 15)),
    ]

    assert _ids(due_for_reminder(tasks, now)) == [3, 1, 7]


def test_reminders_mix_naive_and_aware_due_dates() -> None:
    now = datetime.now().replace(microsecond=0)
    local = Task(1, "local", due_date=now + timedelta(minutes=5))
    utc = Task(2, "utc", due_date=(now + timedelta(minutes=10)).astimezone(timezone.utc))

    assert _ids(due_for_reminder([utc, local], now)) == [1, 2]
    assert _ids(due_for_reminder([utc, local], now.astimezone(timezone.utc))) == [1, 2]
    assert not is_overdue(utc, now)
    assert is_overdue(utc, now + timedelta(minutes=11))
