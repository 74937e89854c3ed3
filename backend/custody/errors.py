"""Failure taxonomy for custody transitions."""

from __future__ import annotations


class CustodyError(RuntimeError):
    """Base error for custody flows; terminal and surfaced to the caller."""

    code = "custody_error"
    status_code = 400
    default_message = "Custody operation rejected"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class AlreadyCheckedIn(CustodyError):
    code = "already_checked_in"
    status_code = 409
    default_message = "Child already has an open check-in"


class ClassroomFull(CustodyError):
    code = "classroom_full"
    status_code = 409
    default_message = "Classroom is at capacity"


class InactiveClassroom(CustodyError):
    code = "inactive_classroom"
    status_code = 409
    default_message = "Classroom is not configured or inactive"


class UnknownOrAlreadyClosed(CustodyError):
    code = "unknown_or_already_closed"
    status_code = 404
    default_message = "No open check-in matches this request"


class NotAuthorized(CustodyError):
    code = "not_authorized"
    status_code = 403
    default_message = "Person is not authorized to pick up this child"


class InvalidPin(CustodyError):
    code = "invalid_pin"
    status_code = 403
    default_message = "Invalid PIN"

    def __init__(self, message: str | None = None):
        # never echo anything beyond the generic message
        super().__init__(self.default_message)


class GrantExpiredOrUsed(CustodyError):
    code = "grant_expired_or_used"
    status_code = 409
    default_message = "Pickup authorization is no longer usable"


class OverrideForbidden(CustodyError):
    code = "override_forbidden"
    status_code = 403
    default_message = "Emergency release requires a leader role"


class NotFound(CustodyError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class UnknownChild(CustodyError):
    code = "unknown_child"
    status_code = 404
    default_message = "Child not found or inactive"


class OverrideReasonTooShort(CustodyError):
    code = "override_reason_too_short"
    status_code = 422
    default_message = "Override reason must be at least 10 characters"
