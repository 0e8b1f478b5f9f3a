# src/taskgrove/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing required at import time; every variable has a default.
- Composition code accepts an injected settings object (tests use one).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKGROVE"

STORAGE_SQLITE = "sqlite"
STORAGE_MEMORY = "memory"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Console ----
    console_enabled: bool

    # ---- Storage ----
    storage: str
    data_dir: Path
    tasks_db_path: Path

    # ---- History ----
    history_limit: int

    @staticmethod
    def from_env(*, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv(override=False)

        app_name = _env(_k("APP_NAME"), "taskgrove").strip() or "taskgrove"
        log_level = _env(_k("LOG_LEVEL"), "WARNING").strip().upper() or "WARNING"

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        storage = _env(_k("STORAGE"), STORAGE_SQLITE).strip().lower()
        if storage not in (STORAGE_SQLITE, STORAGE_MEMORY):
            storage = STORAGE_SQLITE

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskgrove"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        history_limit = max(1, _env_int(_k("HISTORY_LIMIT"), 20))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            storage=storage,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            history_limit=history_limit,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
