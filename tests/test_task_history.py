# tests/test_task_history.py

from __future__ import annotations

import pytest

from fakes import FailingBackend
from taskgrove.core.errors import StateError, ValidationError
from taskgrove.tasks.task_history import CreateAction, DeleteAction, HistoryLog, ModifyAction
from taskgrove.tasks.task_models import TaskPriority, TaskStatus
from taskgrove.tasks.task_store import TaskStore


def test_empty_history_raises(store: TaskStore) -> None:
    with pytest.raises(StateError, match="Nothing to undo"):
        store.undo()
    with pytest.raises(StateError, match="Nothing to redo"):
        store.redo()


def test_undo_redo_create(store: TaskStore) -> None:
    t = store.create("task")

    action = store.undo()
    assert isinstance(action, CreateAction)
    assert action.describe() == f"Created task #{t.id}"
    assert store.get_by_id(t.id) is None
    assert [x.id for x in store.get_deleted()] == [t.id]

    store.redo()
    assert store.get_by_id(t.id) is not None
    assert store.get_deleted() == []


def test_undo_create_of_child_detaches_it(store: TaskStore) -> None:
    root = store.create("root")
    child = store.create("child", parent_id=root.id)

    store.undo()
    assert store.get_by_id(root.id).child_ids == []

    store.redo()
    assert store.get_by_id(root.id).child_ids == [child.id]


def test_undo_modify_restores_previous_fields(store: TaskStore) -> None:
    t = store.create("draft", priority="Low")
    store.update(t.id, name="final", priority="High", project="Work")

    action = store.undo()
    assert isinstance(action, ModifyAction)
    restored = store.get_by_id(t.id)
    assert (restored.name, restored.priority.value, restored.project) == ("draft", "Low", None)

    store.redo()
    again = store.get_by_id(t.id)
    assert (again.name, again.priority.value, again.project) == ("final", "High", "Work")


def test_undo_modify_leaves_parent_alone(store: TaskStore) -> None:
    a = store.create("A")
    b = store.create("B", parent_id=a.id)
    c = store.create("C", parent_id=a.id)
    store.update(b.id, status="Completed")
    store.update(c.id, status="Completed")
    assert store.get_by_id(a.id).is_completed

    store.update(a.id, status="In Progress", priority="High")
    store.update(c.id, status="In Progress", priority="Low")

    store.undo()
    parent = store.get_by_id(a.id)
    assert (parent.status, parent.priority) == (TaskStatus.IN_PROGRESS, TaskPriority.HIGH)
    assert store.get_by_id(c.id).is_completed

    store.redo()
    parent = store.get_by_id(a.id)
    assert (parent.status, parent.priority) == (TaskStatus.IN_PROGRESS, TaskPriority.HIGH)
    child = store.get_by_id(c.id)
    assert (child.status, child.priority) == (TaskStatus.IN_PROGRESS, TaskPriority.LOW)


def test_undo_modify_does_not_complete_children(store: TaskStore) -> None:
    root = store.create("root")
    kid = store.create("kid", parent_id=root.id)
    store.update(root.id, status="Completed")
    store.update(kid.id, status="In Progress", priority="Low")
    store.update(root.id, status="Not Started", priority="High")

    store.undo()

    assert store.get_by_id(root.id).is_completed
    still_open = store.get_by_id(kid.id)
    assert (still_open.status, still_open.priority) == (TaskStatus.IN_PROGRESS, TaskPriority.LOW)


def test_undo_modify_reparent(store: TaskStore) -> None:
    r1 = store.create("r1")
    r2 = store.create("r2")
    child = store.create("child", parent_id=r1.id)
    store.update(child.id, parent_id=r2.id)

    store.undo()

    assert store.get_by_id(child.id).parent_id == r1.id
    assert store.get_by_id(r1.id).child_ids == [child.id]
    assert store.get_by_id(r2.id).child_ids == []


def test_undo_note(store: TaskStore) -> None:
    t = store.create("task")
    store.add_note(t.id, "first")

    store.undo()
    assert store.get_by_id(t.id).notes == []

    store.redo()
    assert [n.content for n in store.get_by_id(t.id).notes] == ["first"]


def test_cascade_delete_undo_redo_roundtrip(store: TaskStore) -> None:
    root = store.create("root")
    a = store.create("a", parent_id=root.id)
    g = store.create("g", parent_id=a.id)

    store.delete(root.id, cascade=True)
    assert store.get_all() == []

    action = store.undo()
    assert isinstance(action, DeleteAction)
    assert action.describe() == f"Deleted task #{root.id}"
    assert [t.id for t in store.get_all()] == [root.id, a.id, g.id]
    assert store.get_by_id(root.id).child_ids == [a.id]
    assert store.get_by_id(a.id).child_ids == [g.id]
    assert store.get_by_id(g.id).parent_id == a.id

    store.redo()
    assert store.get_all() == []
    assert sorted(t.id for t in store.get_deleted()) == [root.id, a.id, g.id]


def test_undo_plain_delete_leaves_children_as_roots(store: TaskStore) -> None:
    root = store.create("root")
    a = store.create("a", parent_id=root.id)
    store.delete(root.id)

    store.undo()

    assert store.get_by_id(root.id) is not None
    assert store.get_by_id(root.id).child_ids == []
    assert store.get_by_id(a.id).is_root


def test_undo_restore(store: TaskStore) -> None:
    t = store.create("task")
    store.delete(t.id)
    store.restore(t.id)

    assert store.undo().describe() == f"Restored task #{t.id}"
    assert store.get_by_id(t.id) is None

    store.redo()
    assert store.get_by_id(t.id) is not None


def test_history_is_bounded(store: TaskStore) -> None:
    t = store.create("v0")
    for i in range(1, 22):
        store.update(t.id, name=f"v{i}")

    assert len(store.history.undo_actions()) == 20
    for _ in range(20):
        store.undo()
    with pytest.raises(StateError, match="Nothing to undo"):
        store.undo()

    # create and the first modify fell off the bottom
    assert store.get_by_id(t.id).name == "v1"


def test_new_action_clears_redo(store: TaskStore) -> None:
    store.create("a")
    store.undo()
    assert store.history.can_redo

    store.create("b")
    assert not store.history.can_redo
    with pytest.raises(StateError, match="Nothing to redo"):
        store.redo()


def test_purge_forgets_history_for_purged_ids(store: TaskStore) -> None:
    keep = store.create("keep")
    gone = store.create("gone")
    store.delete(gone.id)

    store.purge(gone.id)

    actions = store.history.undo_actions()
    assert [a.task_id for a in actions] == [keep.id]
    store.undo()
    assert store.get_by_id(keep.id) is None
    with pytest.raises(StateError):
        store.undo()


def test_failed_undo_keeps_action_on_stack(store: TaskStore) -> None:
    top = store.create("top")
    mid = store.create("mid", parent_id=top.id)
    x = store.create("x", parent_id=mid.id)
    store.update(x.id, parent_id=None)
    store.create("leaf", parent_id=x.id)

    store.undo()  # leaf is now deleted but still counts towards x's height

    with pytest.raises(ValidationError):
        store.undo()

    assert store.get_by_id(x.id).is_root
    assert isinstance(store.history.undo_actions()[-1], ModifyAction)
    assert store.history.can_redo


def test_undo_that_cannot_be_persisted_is_requeued() -> None:
    backend = FailingBackend()
    store = TaskStore(backend)
    t = store.create("task")

    backend.fail_writes = True
    with pytest.raises(OSError):
        store.undo()
    backend.fail_writes = False

    assert store.get_by_id(t.id) is not None
    assert store.history.can_undo
    assert not store.history.can_redo

    store.undo()
    assert store.get_by_id(t.id) is None


def test_load_clears_history(store: TaskStore) -> None:
    store.create("a")
    store.load(store.dump())

    assert not store.history.can_undo
    assert not store.history.can_redo


def test_history_log_rejects_zero_limit() -> None:
    with pytest.raises(ValueError):
        HistoryLog(0)


def test_history_log_forget_counts_dropped_actions() -> None:
    log = HistoryLog(5)
    log.record(CreateAction(1))
    log.record(DeleteAction(2, affected_ids=(2, 3)))
    log.record(ModifyAction(4, before={"parent_id": 3}, after={"parent_id": None}))

    assert log.forget({3}) == 2
    assert [a.task_id for a in log.undo_actions()] == [1]


def test_history_log_requeue_moves_action_back() -> None:
    log = HistoryLog(5)
    first, second = CreateAction(1), CreateAction(2)
    log.record(first)
    log.record(second)

    log.requeue(second, undone=False)
    assert log.undo_actions() == [first]
    assert log.can_redo

    log.requeue(second, undone=True)
    assert log.undo_actions() == [first, second]
    assert not log.can_redo
