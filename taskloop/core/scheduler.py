"""Background scheduler for calendar sync and reminder sweeps."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from taskloop.core.config import constants, settings


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


class JobTracker:
    """Track job execution history for the health endpoint."""

    def __init__(self) -> None:
        self._jobs: dict[str, dict[str, Any]] = {}

    def _entry(self, job_name: str) -> dict[str, Any]:
        return self._jobs.setdefault(job_name, {"consecutive_failures": 0, "success_count": 0, "failure_count": 0})

    def record_job_start(self, job_name: str) -> None:
        self._entry(job_name)["current_run"] = datetime.now(UTC).isoformat()

    def record_job_success(self, job_name: str) -> None:
        entry = self._entry(job_name)
        entry["last_success"] = datetime.now(UTC).isoformat()
        entry["consecutive_failures"] = 0
        entry["success_count"] += 1
        entry.pop("current_run", None)

    def record_job_failure(self, job_name: str, error: str) -> int:
        """Record a failed run and return the number of consecutive failures."""
        entry = self._entry(job_name)
        entry["last_failure"] = datetime.now(UTC).isoformat()
        entry["last_error"] = error[:500]
        entry["consecutive_failures"] += 1
        entry["failure_count"] += 1
        entry.pop("current_run", None)
        return entry["consecutive_failures"]

    def get_job_status(self, job_name: str) -> dict[str, Any]:
        job_data = self._jobs.get(job_name, {})
        return {
            "job_name": job_name,
            "last_success": job_data.get("last_success"),
            "last_failure": job_data.get("last_failure"),
            "last_error": job_data.get("last_error"),
            "consecutive_failures": job_data.get("consecutive_failures", 0),
            "success_count": job_data.get("success_count", 0),
            "failure_count": job_data.get("failure_count", 0),
            "currently_running": "current_run" in job_data,
        }

    def reset(self) -> None:
        self._jobs.clear()


# Global job tracker instance
job_tracker = JobTracker()


async def run_tracked_job(job_func: Callable[[], Awaitable[Any]], job_name: str) -> None:
    """Run a scheduled job, recording the outcome. Failures are logged, never raised to APScheduler."""
    job_tracker.record_job_start(job_name)
    try:
        logger.info("Executing %s", job_name)
        await job_func()
    except Exception as e:
        consecutive_failures = job_tracker.record_job_failure(job_name, str(e))
        logger.exception(
            "%s failed",
            job_name,
            extra={"error": str(e), "consecutive_failures": consecutive_failures},
        )
        return

    job_tracker.record_job_success(job_name)
    logger.info("%s completed successfully", job_name)


async def _scheduled_sync() -> None:
    from taskloop.modules.tasks.scheduler_jobs import run_schedule_sync

    await run_tracked_job(run_schedule_sync, constants.SYNC_JOB_ID)


def start_scheduler() -> None:
    """Start the scheduler and register the sync job.

    The job fires once immediately and then every ``sync_interval_minutes``. Overlapping
    runs are prevented with ``max_instances=1``; missed runs are coalesced into one.
    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    scheduler.add_job(
        _scheduled_sync,
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        id=constants.SYNC_JOB_ID,
        name="Sync calendar schedules and dispatch reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(UTC),
    )
    logger.info("Scheduled calendar sync job: every %d minutes", settings.sync_interval_minutes)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")
