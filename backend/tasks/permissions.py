from typing import Any, List, Mapping

from accounts.identity import Identity
from accounts.models import User

from .models import Task

ALL_STATUSES = [
    Task.Status.PENDING,
    Task.Status.IN_PROGRESS,
    Task.Status.COMPLETED,
    Task.Status.CANCELLED,
]
# an assignee may start or park their own work, never close it
EMPLOYEE_STATUSES = [
    Task.Status.PENDING,
    Task.Status.IN_PROGRESS,
]


def _assignee_id(task: Any):
    if isinstance(task, Mapping):
        return task.get("assignee_id")
    return getattr(task, "assignee_id", None)


def allowed_statuses(identity: Identity, task: Any) -> List[str]:
    """Statuses ``identity`` may set on ``task``; empty means read-only."""
    if identity.role in (User.Role.ADMIN, User.Role.LEADER):
        return [str(s) for s in ALL_STATUSES]
    if identity.role == User.Role.EMPLOYEE and identity.user_id == _assignee_id(task):
        return [str(s) for s in EMPLOYEE_STATUSES]
    return []