# src/taskgrove/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: object

    task_store: TaskStore

    # Current view: filter predicates (filter_tasks kwargs) and sort mode.
    filters: dict[str, Any] = field(default_factory=dict)
    sort_by_priority: bool = True
