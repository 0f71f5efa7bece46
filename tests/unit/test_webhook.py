"""Tests for the card interaction webhook."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from taskloop.core.errors import BadRequestError, ConflictError, ErrorCode
from taskloop.interface.webhook import receive_interaction
from taskloop.models.service_models import TaskEvent, TaskEventKind, TaskOperationResult


def _request(payload=None, *, error: Exception | None = None) -> MagicMock:
    request = MagicMock()
    request.json = AsyncMock(return_value=payload, side_effect=error)
    return request


@pytest.mark.unit
class TestReceiveInteraction:
    async def test_applies_interaction(self, task_factory):
        task = task_factory()
        event = TaskEvent(kind=TaskEventKind.SUBMITTED, task=task, actor_id="bob")
        result = TaskOperationResult(task=task, event=event)
        payload = {"UserID": "bob", "TaskId": "sch-1", "SelectedKey": "ACTION_COMPLETE"}

        with patch(
            "taskloop.interface.webhook.service.handle_interaction", AsyncMock(return_value=result)
        ) as mock_handle:
            response = await receive_interaction(_request(payload))

        assert response == {"status": "success"}
        mock_handle.assert_awaited_once_with(payload)

    async def test_rejected_operation_is_acknowledged(self):
        error = ConflictError(ErrorCode.TASK_STATUS_CONFLICT, "Task status has changed")

        with patch("taskloop.interface.webhook.service.handle_interaction", AsyncMock(side_effect=error)):
            response = await receive_interaction(_request({"user_id": "bob", "task_id": "sch-1"}))

        assert response == {"status": "ignored", "code": "TASK_STATUS_CONFLICT"}

    async def test_bad_payload_is_acknowledged(self):
        error = BadRequestError(ErrorCode.TASK_INTERACTION_INVALID, "Interaction payload is incomplete")

        with patch("taskloop.interface.webhook.service.handle_interaction", AsyncMock(side_effect=error)):
            response = await receive_interaction(_request({}))

        assert response["status"] == "ignored"

    async def test_invalid_json(self):
        with pytest.raises(HTTPException) as exc_info:
            await receive_interaction(_request(error=ValueError("Invalid JSON")))

        assert exc_info.value.status_code == 400

    async def test_non_object_body(self):
        with pytest.raises(HTTPException) as exc_info:
            await receive_interaction(_request(["not", "an", "object"]))

        assert exc_info.value.status_code == 400
