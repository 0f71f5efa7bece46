"""Tests for task operation errors."""

import pytest

from taskloop.core.errors import (
    BadRequestError,
    ConflictError,
    ErrorCategory,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    TaskOperationError,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error_class", "category"),
    [
        (NotFoundError, ErrorCategory.NOT_FOUND),
        (ForbiddenError, ErrorCategory.FORBIDDEN),
        (ConflictError, ErrorCategory.CONFLICT),
        (BadRequestError, ErrorCategory.BAD_REQUEST),
    ],
)
def test_categories(error_class, category):
    error = error_class(ErrorCode.TASK_NOT_FOUND, "msg")

    assert isinstance(error, TaskOperationError)
    assert error.category == category


@pytest.mark.unit
def test_to_response():
    error = ConflictError(ErrorCode.TASK_STATUS_CONFLICT, "Task status has changed")

    assert error.to_response().model_dump() == {
        "code": "TASK_STATUS_CONFLICT",
        "message": "Task status has changed",
    }
    assert str(error) == "Task status has changed"
