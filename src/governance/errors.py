"""Governance error taxonomy.

Every error carries a stable `code` the HTTP layer maps to a status in one
place (`dependencies.handle_governance_error`). Gate failures use
`DeniedError` with a `DenialReason` so the client can render the exact
remediation instead of a generic failure.
"""

from .models import DenialReason


class GovernanceError(Exception):
    """Base governance error."""

    def __init__(self, message: str, code: str = "governance_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(GovernanceError):
    """Malformed input (empty access code, bad duration, wrong lesson state)."""

    def __init__(self, message: str = "Invalid request"):
        super().__init__(message, "validation_error")


class NotFoundError(GovernanceError):
    """Missing lesson, course, session or progress row."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, "not_found")


class DeniedError(GovernanceError):
    """A gate refused the action."""

    def __init__(self, reason: DenialReason, message: str | None = None):
        self.reason = reason
        super().__init__(message or DENIAL_MESSAGES[reason], "denied")


class ConflictError(GovernanceError):
    """A concurrent admin override won the race against a learner write."""

    def __init__(self, message: str = "Lesson was changed concurrently"):
        super().__init__(message, "conflict")


class ForbiddenError(GovernanceError):
    """The acting principal lacks the capability for the operation."""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, "forbidden")


# Remediation text per denial reason, rendered verbatim by clients
DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.SEQUENCE_LOCKED: "Complete the previous lesson to unlock this one",
    DenialReason.ATTENDANCE_MISSING: (
        "Please ask your facilitator to mark your attendance for today"
    ),
    DenialReason.ATTENDANCE_NO_SESSION: "No session is scheduled for today",
    DenialReason.ACCESS_CODE_REQUIRED: "Enter the access code for this lesson",
    DenialReason.ACCESS_CODE_EXPIRED: (
        "The access code has expired. Please contact your facilitator for a new one"
    ),
    DenialReason.ACCESS_CODE_INCORRECT: "Incorrect access code",
    DenialReason.PAUSE_BUDGET_EXHAUSTED: (
        "No pauses remaining. Contact an admin for additional pauses"
    ),
    DenialReason.LESSON_ALREADY_COMPLETED: "You have already completed this lesson",
}
