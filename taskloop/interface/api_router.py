"""Task HTTP API.

Caller identity arrives in the ``X-User-Id`` header, set by the authentication layer
in front of this service.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from taskloop.core.errors import ErrorCategory, TaskOperationError
from taskloop.core.value_parser import normalize_text, utc_now
from taskloop.domain.create_models import ManualTaskCreate, UserCalendarUpdate, VerifyRequest
from taskloop.domain.task import TaskStatus
from taskloop.modules.tasks import analytics, service
from taskloop.modules.tasks.sync import sync_schedules


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tasks"])

STATUS_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCategory.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
}


async def task_operation_error_handler(request: Request, exc: TaskOperationError) -> JSONResponse:
    """Map task operation errors to their HTTP status with a ``{code, message}`` body."""
    logger.info(
        "task_operation_rejected",
        extra={"code": exc.code, "path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=STATUS_BY_CATEGORY[exc.category],
        content=exc.to_response().model_dump(),
    )


async def require_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Return the calling user's id, rejecting requests without one."""
    user_id = normalize_text(x_user_id)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return user_id


CurrentUser = Annotated[str, Depends(require_user_id)]


def _parse_status_filter(raw: str | None) -> TaskStatus | None:
    value = normalize_text(raw).upper()
    if not value:
        return None
    try:
        return TaskStatus(value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {value}") from e


@router.get("/tasks")
async def list_tasks(
    user_id: CurrentUser,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    keyword: str | None = None,
) -> dict[str, Any]:
    """List tasks the caller owns, executes or created, with KPIs over the same set."""
    now = utc_now()
    views = await service.list_task_views(
        user_id=user_id,
        status=_parse_status_filter(status_filter),
        keyword=keyword,
        now=now,
    )
    kpi = analytics.aggregate_kpi(views, now)
    logger.debug("Listed %d tasks for %s", len(views), user_id)
    return {"tasks": [view.model_dump(mode="json") for view in views], "kpi": kpi.model_dump()}


@router.get("/tasks/kpi")
async def get_kpi(user_id: CurrentUser) -> dict[str, Any]:
    kpi = await service.get_kpi(user_id=user_id)
    return {"kpi": kpi.model_dump()}


@router.get("/tasks/{task_id}")
async def get_task(task_id: int, user_id: CurrentUser) -> dict[str, Any]:
    view = await service.get_task_view(task_id=task_id, user_id=user_id)
    return {"task": view.model_dump(mode="json")}


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(payload: ManualTaskCreate, user_id: CurrentUser) -> dict[str, Any]:
    task = await service.create_manual_task(payload=payload, creator_id=user_id, source="web_api")
    return {"message": "Task created", "task": task.model_dump(mode="json")}


@router.post("/tasks/sync")
async def trigger_sync(user_id: CurrentUser) -> dict[str, Any]:
    """Run a calendar sync now and return its summary."""
    logger.info("Manual sync triggered by %s", user_id)
    summary = await sync_schedules()
    return summary.model_dump(mode="json")


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: int, user_id: CurrentUser) -> dict[str, Any]:
    result = await service.complete_task_by_id(task_id=task_id, executor_id=user_id, source="web")
    return {"message": "Task submitted for verification", "task": result.task.model_dump(mode="json")}


@router.post("/tasks/{task_id}/verify")
async def verify_task(task_id: int, payload: VerifyRequest, user_id: CurrentUser) -> dict[str, Any]:
    result = await service.verify_task_by_id(
        task_id=task_id,
        manager_id=user_id,
        action=payload.action,
        reason=payload.reason,
        source="web",
    )
    message = "Task approved" if result.task.status == TaskStatus.COMPLETED else "Task returned for rework"
    return {"message": message, "task": result.task.model_dump(mode="json")}


@router.put("/calendars/{user_id}")
async def upsert_user_calendar(
    user_id: str,
    payload: UserCalendarUpdate,
    caller_id: CurrentUser,
) -> dict[str, Any]:
    """Map a user to the calendar their tasks live in; overrides the configured map."""
    mapping = await service.update_user_calendar(user_id=user_id, cal_id=payload.cal_id, caller_id=caller_id)
    return {"calendar": mapping.model_dump()}
