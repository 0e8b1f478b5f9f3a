# src/taskgrove/tasks/task_api.py

from __future__ import annotations

import logging
from datetime import datetime

from ..core.state import AppState
from .task_models import Task, TaskStatus
from .task_query import due_for_reminder, filter_tasks, sort_by_priority, to_display_order

logger = logging.getLogger(__name__)


def current_view(state: AppState) -> list[Task]:
    """
    Rows to render, in order: live tasks -> active filters (family closure)
    -> priority sort (optional) -> parent/child display order.
    """
    tasks = state.task_store.get_all()
    if state.filters:
        tasks = filter_tasks(tasks, **state.filters)
    if state.sort_by_priority:
        tasks = sort_by_priority(tasks)
    return to_display_order(tasks)


def complete_task(state: AppState, task_id: int) -> Task:
    """Convenience helper: mark a task Completed (cascades to its subtree)."""
    task = state.task_store.update(task_id, status=TaskStatus.COMPLETED)
    logger.info("Task %s completed", task_id)
    return task


def pending_reminders(state: AppState, now: datetime | None = None) -> list[Task]:
    """Live tasks that are due soon or just became overdue."""
    return due_for_reminder(state.task_store.get_all(), now)
