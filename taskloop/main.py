"""taskloop - calendar-driven task tracking with verification."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from taskloop.core.config import constants, settings
from taskloop.core.db_client import close_connection, init_db
from taskloop.core.errors import TaskOperationError
from taskloop.core.logging import configure_logfire, instrument_fastapi
from taskloop.core.scheduler import job_tracker, start_scheduler, stop_scheduler
from taskloop.interface.api_router import router as api_router
from taskloop.interface.api_router import task_operation_error_handler
from taskloop.interface.webhook import router as webhook_router


logger = logging.getLogger(__name__)


def validate_startup_configuration() -> None:
    """Warn about missing settings that would make sync or notifications a no-op."""
    for field_name, service_name in (
        ("wecom_corp_id", "WeCom corp id"),
        ("wecom_corp_secret", "WeCom corp secret"),
        ("wecom_agent_id", "WeCom agent id"),
    ):
        try:
            settings.require_credential(field_name, service_name)
        except ValueError as e:
            logger.warning("startup_validation", extra={"setting": field_name, "status": "missing", "error": str(e)})

    if not settings.default_cal_id and not settings.user_calendar_map:
        logger.warning("startup_validation", extra={"setting": "calendars", "status": "missing"})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Configure logging first so startup logs are captured
    configure_logfire()
    validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    if settings.enable_scheduler:
        start_scheduler()
    yield
    if settings.enable_scheduler:
        stop_scheduler()
    await close_connection()


app = FastAPI(
    title="taskloop",
    description="Calendar-driven task tracking with submit and verify",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

app.add_exception_handler(TaskOperationError, task_operation_error_handler)  # type: ignore[arg-type]
app.include_router(api_router)
app.include_router(webhook_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check with the sync job's recent history."""
    sync_status = job_tracker.get_job_status(constants.SYNC_JOB_ID)
    overall_status = "degraded" if sync_status["consecutive_failures"] > 0 else "healthy"
    return JSONResponse(
        content={"status": overall_status, "jobs": {constants.SYNC_JOB_ID: sync_status}},
        status_code=200,
    )
