"""WeCom card interaction webhook."""

import logging

from fastapi import APIRouter, HTTPException, Request

from taskloop.core.errors import TaskOperationError
from taskloop.modules.tasks import service


router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = logging.getLogger(__name__)


@router.post("/interaction")
async def receive_interaction(request: Request) -> dict[str, str]:
    """Receive a template-card button press and apply it to the task.

    The callback is always acknowledged once the JSON parses. Rejected operations
    (wrong user, stale status, unknown action) are logged and answered with
    ``ignored`` so WeCom does not retry them.

    Raises:
        HTTPException: If the body is not valid JSON
    """
    try:
        payload = await request.json()
    except Exception as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Interaction payload must be a JSON object")

    try:
        result = await service.handle_interaction(payload)
    except TaskOperationError as e:
        logger.warning(
            "Interaction ignored: %s",
            e.message,
            extra={"code": e.code, "category": e.category.value},
        )
        return {"status": "ignored", "code": e.code}

    logger.info(
        "Interaction applied",
        extra={"event": result.event.kind, "schedule_id": result.task.external_schedule_id},
    )
    return {"status": "success"}
