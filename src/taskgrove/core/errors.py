# src/taskgrove/core/errors.py

"""Error taxonomy raised by the task store to its immediate caller."""


class TaskError(Exception):
    """Base exception for task store failures."""

    pass


class ValidationError(TaskError):
    """Bad input: empty name, invalid parent, depth or cycle violation."""

    pass


class NotFound(TaskError):
    """Referenced task does not exist (or is deleted where a live one is required)."""

    def __init__(self, task_id: int, message: str | None = None):
        self.task_id = task_id
        super().__init__(message or f"Task with ID {task_id} not found")


class StateError(TaskError):
    """Operation not allowed in the current state (empty history, not in trash, ...)."""

    pass
