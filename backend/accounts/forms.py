"""Password change form.

``validate_password_change`` is shared by the API serializer and by
``PasswordUpdateForm`` so both report the same first error in the same order.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
AUTO_CLOSE_DELAY = 2.0

FAILED_MESSAGE = "Failed to update password"
NETWORK_ERROR_MESSAGE = "Network error occurred. Please try again."

PostFn = Callable[[Dict[str, Any]], Tuple[bool, Dict[str, Any]]]


def validate_password_change(current: str, new: str, confirm: Optional[str] = None) -> Optional[str]:
    """Return the first validation error, or None when the change is acceptable.

    ``confirm`` is skipped when None (the API accepts requests without it).
    """
    if not current:
        return "Current password is required"
    if not new:
        return "New password is required"
    if len(new) < MIN_PASSWORD_LENGTH:
        return f"New password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if confirm is not None and new != confirm:
        return "New passwords do not match"
    if current == new:
        return "New password must be different from current password"
    return None


class PasswordUpdateForm:
    """Client-side state for the password change dialog.

    ``submit`` takes a ``post`` callable that sends the payload to
    ``POST /api/update-password`` and returns ``(ok, response_json)``.
    """

    def __init__(self, user_id: int):
        self.user_id = user_id
        self.current_password = ""
        self.new_password = ""
        self.confirm_password = ""
        self.error: Optional[str] = None
        self.success = False
        self.loading = False
        # seconds until the dialog should close itself, set after a successful submit
        self.close_after: Optional[float] = None

    def update(self, **values: str) -> None:
        for name in ("current_password", "new_password", "confirm_password"):
            if name in values:
                setattr(self, name, values[name])
        # editing clears a stale message
        self.error = None

    def validate(self) -> bool:
        self.error = validate_password_change(self.current_password, self.new_password, self.confirm_password)
        return self.error is None

    def payload(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "currentPassword": self.current_password,
            "newPassword": self.new_password,
        }

    def submit(self, post: PostFn) -> bool:
        if not self.validate():
            return False

        self.loading = True
        self.error = None
        self.close_after = None
        try:
            ok, data = post(self.payload())
        except (OSError, ValueError):
            logger.exception("Password update error for user_id=%s", self.user_id)
            self.error = NETWORK_ERROR_MESSAGE
            return False
        finally:
            self.loading = False

        if ok and data.get("success"):
            self.success = True
            self.close_after = AUTO_CLOSE_DELAY
            self._clear_fields()
            return True

        self.error = data.get("error") or FAILED_MESSAGE
        return False

    def reset(self) -> bool:
        """Clear the form. Refused while a submit is in flight.

        The caller invokes this when the dialog is dismissed, or ``close_after``
        seconds after a successful submit.
        """
        if self.loading:
            return False
        self._clear_fields()
        self.error = None
        self.success = False
        self.close_after = None
        return True

    def _clear_fields(self) -> None:
        self.current_password = ""
        self.new_password = ""
        self.confirm_password = ""
