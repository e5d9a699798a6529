"""Domain error taxonomy.

Every failure a core operation can report is a ``ClassroomError`` carrying a
stable ``code`` and the HTTP status it maps to. Routes do not translate these
by hand: ``app.main`` registers a single handler, and the WebSocket dispatcher
turns them into ``{"type": "error", ...}`` frames.
"""

from typing import Any, Dict, Optional


class ClassroomError(Exception):
    code = "internal_error"
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, *, fields: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.fields = fields
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.fields:
            payload["fields"] = self.fields
        return payload


# ─── Families ─────────────────────────────────────────────────────────────────

class NotFound(ClassroomError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class PermissionDenied(ClassroomError):
    code = "permission_denied"
    status_code = 403
    default_message = "Access denied"


class InvalidState(ClassroomError):
    code = "invalid_state"
    status_code = 409
    default_message = "Operation not allowed in the current state"


class ValidationFailed(ClassroomError):
    code = "validation_failed"
    status_code = 422
    default_message = "Validation failed"


class Conflict(ClassroomError):
    code = "conflict"
    status_code = 409
    default_message = "Conflicting update"


# ─── Not found ────────────────────────────────────────────────────────────────

class SessionNotFound(NotFound):
    code = "session_not_found"
    default_message = "Session not found"


class PollNotFound(NotFound):
    code = "poll_not_found"
    default_message = "Poll not found"


class MessageNotFound(NotFound):
    code = "message_not_found"
    default_message = "Message not found"


class AttendanceNotFound(NotFound):
    code = "attendance_not_found"
    default_message = "Attendance record not found"


class AlertNotFound(NotFound):
    code = "alert_not_found"
    default_message = "Alert not found"


class UserNotFound(NotFound):
    code = "user_not_found"
    default_message = "User not found"


class CollegeNotFound(NotFound):
    code = "college_not_found"
    default_message = "College not found"


# ─── Permission ───────────────────────────────────────────────────────────────

class NotEnrolled(PermissionDenied):
    code = "not_enrolled"
    default_message = "You are not enrolled in this session"


class WrongCollege(PermissionDenied):
    code = "wrong_college"
    default_message = "Some students were not found or do not belong to this college"


# ─── Invalid state ────────────────────────────────────────────────────────────

class LateJoinRejected(InvalidState):
    code = "late_join_rejected"
    default_message = "Late join is not allowed for this session"


class SessionFull(InvalidState):
    code = "session_full"
    default_message = "Session has reached its maximum number of concurrent students"


class PollInactive(InvalidState):
    code = "poll_inactive"
    default_message = "Poll is not active"


class PollExpired(InvalidState):
    code = "poll_expired"
    default_message = "Poll has expired"


class AlreadyClosed(InvalidState):
    code = "already_closed"
    default_message = "Poll is already closed"


class FeatureDisabled(InvalidState):
    code = "feature_disabled"
    default_message = "This feature is disabled for the session"


# ─── Validation ───────────────────────────────────────────────────────────────

class InvalidCoordinate(ValidationFailed):
    code = "invalid_coordinate"
    default_message = "Coordinates out of range"


class InvalidOption(ValidationFailed):
    code = "invalid_option"
    default_message = "Invalid option index"


class InvalidPoll(ValidationFailed):
    code = "invalid_poll"
    default_message = "Invalid poll definition"


class InvalidSchedule(ValidationFailed):
    code = "invalid_schedule"
    default_message = "Invalid session schedule"


class EmptyContent(ValidationFailed):
    code = "empty_content"
    default_message = "Content must not be empty"


# ─── Conflict ─────────────────────────────────────────────────────────────────

class AlreadyVoted(Conflict):
    code = "already_voted"
    default_message = "You have already voted on this poll"


class AlreadyResponded(Conflict):
    code = "already_responded"
    default_message = "You have already responded to this poll"


class ConcurrentUpdate(Conflict):
    code = "concurrent_update"
    default_message = "The resource was modified concurrently, please retry"
