# src/taskgrove/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the chosen storage backend into a TaskStore and AppState.
"""

from __future__ import annotations

import logging

from ..config import STORAGE_MEMORY, get_settings
from ..core.ports import TaskBackend
from ..core.state import AppState
from ..tasks.task_backend import MemoryTaskBackend, SqliteTaskBackend
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_backend(settings) -> TaskBackend:
    if getattr(settings, "storage", None) == STORAGE_MEMORY:
        logger.info("Using in-memory task storage (nothing is persisted)")
        return MemoryTaskBackend()
    return SqliteTaskBackend(settings.tasks_db_path)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(
        create_backend(settings),
        history_limit=int(getattr(settings, "history_limit", 20)),
    )
    return AppState(settings=settings, task_store=store)
