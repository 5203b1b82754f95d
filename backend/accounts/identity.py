"""Resolve the caller's role and department from the ``users`` table."""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import DatabaseError

from .models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Who is asking. Passed explicitly to every task operation."""

    user_id: int
    role: Optional[str] = None
    department_id: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return bool(self.role)


def resolve_identity(user_id: int) -> Identity:
    """Fetch role and department for ``user_id``.

    Any failure is logged and yields an identity with no role, which sees
    no tasks. There is no retry.
    """
    try:
        row = User.objects.values("role", "department_id").get(pk=user_id)
    except (User.DoesNotExist, DatabaseError):
        logger.exception("Error fetching user info for user_id=%s", user_id)
        return Identity(user_id=user_id)
    return Identity(user_id=user_id, role=row["role"], department_id=row["department_id"])
