"""Error hierarchy for exceptional taskgate failures.

Expected outcomes (invalid transitions, rejected output, exhausted retries) are
reported through typed result objects instead. These errors cover misuse and
broken environments.
"""

from __future__ import annotations

from typing import Any


class TaskgateError(RuntimeError):
    """Base error carrying metadata for structured logging."""

    category: str = "runtime"

    def __init__(self, message: str, *, metadata: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.metadata = metadata or {}


class ConfigError(TaskgateError, ValueError):
    """Raised when configuration is invalid."""

    category = "config"


class TaskNotFoundError(TaskgateError):
    """Raised when an operator command targets a missing task."""

    category = "queue"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}", metadata={"task_id": task_id})
        self.task_id = task_id


class ExecutorError(TaskgateError):
    """Executor failure with retryability hint."""

    category = "executor"

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message, metadata={"transient": transient})
        self.transient = transient


class StatusUpdateError(TaskgateError):
    """Raised when an operator status change is refused by the queue."""

    category = "queue"

    def __init__(self, message: str, *, task_id: str, error_code: str | None) -> None:
        super().__init__(message, metadata={"task_id": task_id, "error_code": error_code})
        self.task_id = task_id
        self.error_code = error_code
