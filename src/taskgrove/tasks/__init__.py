"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Note, TaskStatus, TaskPriority)
- task_backend.py: persistence backends (SQLite, in-memory)
- task_store.py: hierarchical record store (validation, cascades, soft delete)
- task_history.py: undo/redo actions
- task_query.py: filtering / ordering over snapshots
- task_dates.py: due-date input parsing
- task_api.py: small high-level helpers used by the rest of the app
"""
