# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskgrove.cli.bootstrap import create_initial_state
from taskgrove.core.state import AppState
from taskgrove.tasks.task_backend import MemoryTaskBackend
from taskgrove.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment and any local .env.
    """
    return SimpleNamespace(
        app_name="taskgrove-test",
        log_level="WARNING",
        console_enabled=False,
        # Paths (tmp per test run)
        storage="sqlite",
        data_dir=tmp_path / "data",
        tasks_db_path=tmp_path / "data" / "tasks.sqlite3",
        history_limit=20,
    )


@pytest.fixture()
def store() -> TaskStore:
    """Fresh in-memory store; most behaviour tests do not need SQLite."""
    return TaskStore(MemoryTaskBackend())


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState built through the real composition root.

    NOTE: We keep the real SQLite backend here because persistence is part
    of what the command tests exercise.
    """
    return create_initial_state(settings=settings)
