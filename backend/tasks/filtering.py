"""Task filtering utilities.

Contains utilities for:
- normalizing due dates to local datetimes,
- deciding whether a task is overdue,
- filtering a loaded task list by status, priority and overdue state,
- moving completed tasks after the rest without disturbing their order.

Everything here is pure: the same rows and filter values always give the same
output, so callers simply recompute whenever the list or a filter changes.
"""

from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Mapping, Optional

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .models import Task

ALL = "all"
OVERDUE = "overdue"
NOT_OVERDUE = "not_overdue"

STATUS_FILTERS = (ALL,) + tuple(Task.Status.values)
PRIORITY_FILTERS = (ALL,) + tuple(Task.Priority.values)
OVERDUE_FILTERS = (ALL, OVERDUE, NOT_OVERDUE)


def _field(task: Any, name: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def task_status(task: Any) -> str:
    """Lower-cased status, with a missing status read as pending."""
    return (_field(task, "status") or Task.Status.PENDING).lower()


def task_priority(task: Any) -> str:
    return (_field(task, "priority") or "").lower()


def _ensure_local_datetime(value: Any) -> datetime:
    """Normalize an input to an aware datetime in the current time zone.

    Accepts:
      - datetime instance (naive values are taken as local time)
      - date instance -> local midnight of that day
      - ISO-like string, date only or with a time part
      - raises ValueError for anything else
    """
    if isinstance(value, str):
        parsed = parse_datetime(value) or parse_date(value)
        if parsed is None:
            raise ValueError(f"Invalid date string: {value!r}")
        value = parsed
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    else:
        raise ValueError(f"Invalid date type: {type(value)}")

    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt)
    return timezone.localtime(dt)


def is_overdue(due: Any, now: Optional[datetime] = None) -> bool:
    """True when ``due`` has passed and falls on an earlier calendar day.

    A task due earlier today is not overdue.
    """
    current = _ensure_local_datetime(now) if now is not None else timezone.localtime()
    due_at = _ensure_local_datetime(due)
    return due_at < current and due_at.date() != current.date()


def _check_choice(name: str, value: str, choices: Iterable[str]) -> None:
    if value not in choices:
        raise ValueError(f"Invalid {name} filter: {value!r}")


def completed_last(tasks: Iterable[Any]) -> List[Any]:
    """Move completed tasks after the others, keeping relative order in each group."""
    # sorted() is stable, and False sorts before True
    return sorted(tasks, key=lambda t: task_status(t) == Task.Status.COMPLETED)


def filter_tasks(tasks: Iterable[Any],
                 status: str = ALL,
                 priority: str = ALL,
                 overdue: str = ALL,
                 now: Optional[datetime] = None) -> List[Any]:
    """Apply the status, priority and overdue filters, then order completed tasks last.

    Args:
        tasks: loaded task rows (dicts or Task instances), already in due-date order
        status: "all" or one of the task statuses
        priority: "all" or one of the task priorities
        overdue: "all", "overdue" or "not_overdue"
        now: reference moment for the overdue check (defaults to the current time)

    Returns:
        A new list; the input is not modified.
    """
    _check_choice("status", status, STATUS_FILTERS)
    _check_choice("priority", priority, PRIORITY_FILTERS)
    _check_choice("overdue", overdue, OVERDUE_FILTERS)

    filtered = list(tasks)

    if status != ALL:
        filtered = [t for t in filtered if task_status(t) == status]

    if priority != ALL:
        filtered = [t for t in filtered if task_priority(t) == priority]

    if overdue != ALL:
        # one reference moment for the whole pass
        current = _ensure_local_datetime(now) if now is not None else timezone.localtime()
        want_overdue = overdue == OVERDUE
        filtered = [t for t in filtered if is_overdue(_field(t, "due_date"), current) == want_overdue]

    return completed_last(filtered)


def default_filters() -> Dict[str, str]:
    return {"status": ALL, "priority": ALL, "overdue": ALL}
