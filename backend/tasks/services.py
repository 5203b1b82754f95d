import logging
from typing import Any, Dict, Mapping, Optional

from django.db import DatabaseError
from django.utils import timezone

from accounts.identity import Identity

from .exceptions import StatusNotPermitted, StatusUpdateError
from .filtering import task_status
from .models import Task
from .permissions import allowed_statuses

logger = logging.getLogger(__name__)


def _task_id(task: Any):
    if isinstance(task, Mapping):
        return task["id"]
    return task.pk


def change_status(identity: Identity, task: Any, new_status: str) -> Optional[Dict[str, Any]]:
    """Write ``new_status`` for a single task.

    Returns the written ``{"status", "updated_at"}`` values, or None when the
    task already has that status (no update is issued). Concurrent writers
    are not reconciled; the last update wins.

    Raises:
        StatusNotPermitted: ``new_status`` is not among the caller's allowed statuses
        StatusUpdateError: the store rejected the update or the row is gone
    """
    task_id = _task_id(task)
    target = (new_status or "").lower()

    allowed = allowed_statuses(identity, task)
    if target not in allowed:
        raise StatusNotPermitted(task_id, target, allowed)

    if task_status(task) == target:
        logger.debug("Task %s already %s; nothing to update", task_id, target)
        return None

    now = timezone.now()
    try:
        updated = Task.objects.filter(pk=task_id).update(status=target, updated_at=now)
    except DatabaseError as exc:
        logger.exception("Error updating status of task %s", task_id)
        raise StatusUpdateError(f"Failed to update task {task_id}", details={"task_id": task_id}) from exc

    if not updated:
        logger.error("Status update matched no rows for task %s", task_id)
        raise StatusUpdateError(f"Task {task_id} no longer exists", details={"task_id": task_id})

    logger.info("Task %s status -> %s by user_id=%s", task_id, target, identity.user_id)
    return {"status": target, "updated_at": now}
