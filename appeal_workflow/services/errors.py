"""Exceptions raised by the appeal workflow.

Each kind maps to one HTTP status in the API layer; messages are meant to
be shown to the user as-is.
"""


class AppealError(Exception):
    """Base exception for appeal workflow operations."""

    code = "appeal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AppealNotFoundError(AppealError):
    """Appeal does not exist."""

    code = "appeal_not_found"


class ReportNotFoundError(AppealError):
    """The disputed report does not exist."""

    code = "report_not_found"


class ForbiddenError(AppealError):
    """Caller may not act on this report."""

    code = "forbidden"


class InvalidStateError(AppealError):
    """Operation not allowed in the appeal's current stage or status."""

    code = "invalid_state"


class ConflictError(AppealError):
    """Concurrent modification, or an active appeal already exists."""

    code = "conflict"


class UnavailableError(AppealError):
    """A collaborator timed out or failed transiently."""

    code = "unavailable"


class AppealValidationError(AppealError):
    """Request data is not acceptable (e.g. reason too short)."""

    code = "validation_error"
