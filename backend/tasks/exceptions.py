"""Exceptions raised by the task board operations.

Views translate these into HTTP responses; nothing here is fatal.
"""

from typing import Any, Dict, Optional


class TaskBoardError(Exception):
    """Base exception for task board errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class TaskLoadError(TaskBoardError):
    """The role-scoped task query failed."""


class StatusUpdateError(TaskBoardError):
    """The store rejected a status update."""


class StatusNotPermitted(TaskBoardError):
    """The caller may not set this status on this task."""

    def __init__(self, task_id: Any, status: str, allowed):
        super().__init__(
            f"Status {status!r} is not permitted for task {task_id}",
            details={"task_id": task_id, "status": status, "allowed": list(allowed)},
        )
