"""Role-scoped task loading.

admin sees everything, a leader sees their department, an employee sees
what is assigned to them. Anything else sees nothing.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from django.db import DatabaseError
from django.db.models import QuerySet

from accounts.identity import Identity
from accounts.models import Department, User

from .exceptions import TaskLoadError
from .models import Task

logger = logging.getLogger(__name__)

SORT_ASC = "asc"
SORT_DESC = "desc"
SORT_ORDERS = (SORT_ASC, SORT_DESC)

UNKNOWN_USER = "Unknown User"

TASK_FIELDS = (
    "id",
    "title",
    "description",
    "due_date",
    "priority",
    "assignee_id",
    "assigned_by",
    "department_id",
    "created_at",
    "assigned_by_name",
    "assigned_at",
    "updated_at",
    "status",
)


def visible_tasks(identity: Identity) -> QuerySet:
    """Queryset of the tasks ``identity`` may see."""
    tasks = Task.objects.all()

    if identity.role == User.Role.ADMIN:
        return tasks

    if identity.role == User.Role.LEADER:
        if identity.department_id is None:
            # a leader without a department sees nothing, not everything
            return tasks.none()
        return tasks.filter(department_id=identity.department_id)

    if identity.role == User.Role.EMPLOYEE:
        return tasks.filter(assignee_id=identity.user_id)

    logger.warning("No task visibility for role %r (user_id=%s)", identity.role, identity.user_id)
    return tasks.none()


def _lookup(model, ids: Iterable[Optional[int]], *fields: str) -> Dict[int, Dict[str, Any]]:
    """One query for every referenced row, keyed by primary key."""
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return {}
    return {row["id"]: row for row in model.objects.filter(pk__in=wanted).values("id", *fields)}


def enrich(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach assignee name/email and department name to each row in place."""
    users = _lookup(User, (r["assignee_id"] for r in rows), "full_name", "email")
    departments = _lookup(Department, (r["department_id"] for r in rows), "name")

    for row in rows:
        assignee = users.get(row["assignee_id"]) or {}
        row["assignee_name"] = assignee.get("full_name") or UNKNOWN_USER
        row["assignee_email"] = assignee.get("email") or ""
        department = departments.get(row["department_id"]) or {}
        row["department_name"] = department.get("name") or ""
    return rows


def load_tasks(identity: Identity, sort_order: str = SORT_DESC) -> List[Dict[str, Any]]:
    """Visible tasks ordered by due date, enriched with assignee details.

    Raises:
        ValueError: unknown ``sort_order``
        TaskLoadError: any database error; nothing partial is returned
    """
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"Invalid sort order: {sort_order!r}")

    ordering = ("due_date", "id") if sort_order == SORT_ASC else ("-due_date", "-id")
    try:
        rows = list(visible_tasks(identity).order_by(*ordering).values(*TASK_FIELDS))
        enrich(rows)
    except DatabaseError as exc:
        raise TaskLoadError("Failed to load tasks", details={"user_id": identity.user_id}) from exc

    logger.debug("Loaded %d tasks for user_id=%s role=%s", len(rows), identity.user_id, identity.role)
    return rows


def load_task(identity: Identity, task_id: int) -> Optional[Dict[str, Any]]:
    """A single enriched row, or None when the task is missing or not visible."""
    try:
        rows = list(visible_tasks(identity).filter(pk=task_id).values(*TASK_FIELDS))
        enrich(rows)
    except DatabaseError as exc:
        raise TaskLoadError(f"Failed to load task {task_id}", details={"task_id": task_id}) from exc
    return rows[0] if rows else None
