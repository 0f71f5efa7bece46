"""Task operation errors raised by the task service.

Only four kinds of error leave the service: not found, forbidden, conflict and bad
request. Each carries a machine-readable code and a human message; mapping to a
transport status is left to the caller.
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCategory(Enum):
    """Categories of task operation errors."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    BAD_REQUEST = "bad_request"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Lookup
    TASK_NOT_FOUND = "TASK_NOT_FOUND"

    # Permission
    TASK_COMPLETE_FORBIDDEN = "TASK_COMPLETE_FORBIDDEN"
    TASK_VERIFY_FORBIDDEN = "TASK_VERIFY_FORBIDDEN"
    CALENDAR_UPDATE_FORBIDDEN = "CALENDAR_UPDATE_FORBIDDEN"

    # Concurrency
    TASK_STATUS_CONFLICT = "TASK_STATUS_CONFLICT"

    # Input validation
    TASK_CREATOR_INVALID = "TASK_CREATOR_INVALID"
    TASK_TITLE_REQUIRED = "TASK_TITLE_REQUIRED"
    TASK_EXECUTOR_REQUIRED = "TASK_EXECUTOR_REQUIRED"
    TASK_END_TIME_INVALID = "TASK_END_TIME_INVALID"
    TASK_TIME_RANGE_INVALID = "TASK_TIME_RANGE_INVALID"
    TASK_INTERACTION_INVALID = "TASK_INTERACTION_INVALID"
    TASK_INTERACTION_UNSUPPORTED = "TASK_INTERACTION_UNSUPPORTED"
    TASK_VERIFY_ACTION_INVALID = "TASK_VERIFY_ACTION_INVALID"


class ErrorResponse(BaseModel):
    """Structured error payload returned to API callers."""

    code: str
    message: str


class TaskOperationError(Exception):
    """Base class for errors raised by task operations."""

    category: ErrorCategory = ErrorCategory.BAD_REQUEST

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_response(self) -> ErrorResponse:
        """Build the structured error payload for this error."""
        return ErrorResponse(code=self.code, message=self.message)


class NotFoundError(TaskOperationError):
    """The task does not exist (or is not visible to the caller)."""

    category = ErrorCategory.NOT_FOUND


class ForbiddenError(TaskOperationError):
    """The caller's role or the task's state does not allow the action."""

    category = ErrorCategory.FORBIDDEN


class ConflictError(TaskOperationError):
    """The task changed state between read and conditional update."""

    category = ErrorCategory.CONFLICT


class BadRequestError(TaskOperationError):
    """The input is malformed or incomplete."""

    category = ErrorCategory.BAD_REQUEST
