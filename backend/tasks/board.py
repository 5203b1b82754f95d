"""Per-identity task board state.

``TaskBoard`` holds what a dashboard shows: the last loaded task rows, the
filter selections and the sort order. Derived views are recomputed on demand
with ``filter_tasks``; nothing is observed or cached.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from accounts.identity import Identity

from .exceptions import StatusUpdateError, TaskLoadError
from .filtering import default_filters, filter_tasks
from .loader import SORT_ASC, SORT_DESC, load_task, load_tasks
from .services import change_status

logger = logging.getLogger(__name__)


class TaskBoard:
    """Loaded tasks plus filter state for one identity.

    Loads are fenced by a generation counter: only the most recently started
    load may replace ``tasks``. A status change patches the one affected row
    after the store confirms it, and never reloads.

    A board is per-session client state. The API views build a fresh board
    for every request, so neither the load fence nor ``updating_task_ids``
    guards one request against another.
    """

    def __init__(self,
                 identity: Identity,
                 sort_order: str = SORT_DESC,
                 loader: Callable[..., List[Dict[str, Any]]] = load_tasks,
                 updater: Callable[..., Optional[Dict[str, Any]]] = change_status):
        self.identity = identity
        self.sort_order = sort_order
        self.filters = default_filters()
        self.tasks: List[Dict[str, Any]] = []
        self.loading = False
        self.error: Optional[str] = None
        self.updating_task_ids: Set[Any] = set()
        self._loader = loader
        self._updater = updater
        self._generation = 0

    # ---- loading ----

    def begin_load(self) -> int:
        self._generation += 1
        self.loading = True
        return self._generation

    def finish_load(self, token: int, rows: List[Dict[str, Any]]) -> bool:
        """Commit ``rows`` if ``token`` is still the newest load."""
        if token != self._generation:
            logger.debug("Dropping stale load %s (current %s)", token, self._generation)
            return False
        self.tasks = list(rows)
        self.loading = False
        self.error = None
        return True

    def fail_load(self, token: int, exc: Exception) -> None:
        logger.error("Error fetching tasks for user_id=%s: %s", self.identity.user_id, exc)
        if token == self._generation:
            self.loading = False
            self.error = str(exc)

    def load(self) -> bool:
        """Reload the visible tasks. Previous rows survive a failed load."""
        if not self.identity.is_resolved:
            return False

        token = self.begin_load()
        try:
            rows = self._loader(self.identity, self.sort_order)
        except TaskLoadError as exc:
            self.fail_load(token, exc)
            return False
        return self.finish_load(token, rows)

    def load_one(self, task_id: int) -> Optional[Dict[str, Any]]:
        """Load just ``task_id`` onto the board; None if it is not visible."""
        if not self.identity.is_resolved:
            return None

        token = self.begin_load()
        try:
            row = load_task(self.identity, task_id)
        except TaskLoadError as exc:
            self.fail_load(token, exc)
            return None
        self.finish_load(token, [row] if row else [])
        return row

    # ---- filters and ordering ----

    def toggle_sort_order(self) -> str:
        self.sort_order = SORT_ASC if self.sort_order == SORT_DESC else SORT_DESC
        return self.sort_order

    def set_filters(self, **filters: str) -> None:
        for name, value in filters.items():
            if name not in self.filters:
                raise ValueError(f"Unknown filter: {name}")
            self.filters[name] = value

    def visible(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return filter_tasks(self.tasks, now=now, **self.filters)

    def find(self, task_id: Any) -> Optional[Dict[str, Any]]:
        for row in self.tasks:
            if row["id"] == task_id:
                return row
        return None

    # ---- status changes ----

    def is_updating(self, task_id: Any) -> bool:
        return task_id in self.updating_task_ids

    def change_status(self, task_id: Any, new_status: str) -> bool:
        """Set a task's status. True only when the row actually changed.

        StatusNotPermitted propagates to the caller. A store failure is
        logged, recorded in ``error`` and leaves the row untouched.
        """
        if self.is_updating(task_id):
            logger.warning("Status update already in flight for task %s", task_id)
            return False

        task = self.find(task_id)
        if task is None:
            raise KeyError(task_id)

        self.updating_task_ids.add(task_id)
        try:
            result = self._updater(self.identity, task, new_status)
        except StatusUpdateError as exc:
            logger.error("Error updating status of task %s: %s", task_id, exc)
            self.error = str(exc)
            return False
        finally:
            self.updating_task_ids.discard(task_id)

        if result is None:
            return False

        self.tasks = [
            dict(row, status=result["status"], updated_at=result["updated_at"]) if row["id"] == task_id else row
            for row in self.tasks
        ]
        return True
