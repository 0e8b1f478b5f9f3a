# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "TASKGROVE_APP_NAME": "App display name (default: taskgrove).",
    "TASKGROVE_LOG_LEVEL": "Console logging level (default: WARNING); the log file always gets DEBUG.",
    # Console
    "TASKGROVE_CONSOLE_ENABLED": "Run the interactive console (true/false).",
    # Storage
    "TASKGROVE_STORAGE": "sqlite (default) or memory (nothing persisted).",
    "TASKGROVE_DATA_DIR": "Local data directory (default: .local/taskgrove).",
    "TASKGROVE_TASKS_DB_PATH": "Task SQLite path (default: <data_dir>/tasks.sqlite3).",
    # History
    "TASKGROVE_HISTORY_LIMIT": "How many changes :undo can walk back (default: 20).",
}
