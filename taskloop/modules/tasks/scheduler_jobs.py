"""Scheduled jobs for the tasks module.

This module provides:
- The reminder sweep over pending tasks
- The entry point the scheduler calls for each sync run
"""

import logging
from datetime import datetime

from taskloop.core.logging import span
from taskloop.core.value_parser import utc_now
from taskloop.models.service_models import ReminderSweepSummary, SyncSummary
from taskloop.modules.tasks import repository, service


logger = logging.getLogger(__name__)


async def dispatch_date_reminders(*, now: datetime | None = None) -> ReminderSweepSummary:
    """Consider every PENDING task for a reminder, one at a time.

    Never raises: an unexpected failure is logged and reported as an empty sweep.
    """
    with span("scheduler_jobs.dispatch_date_reminders"):
        current_time = now or utc_now()
        try:
            pending = await repository.list_pending_tasks()
            sent_count = 0
            checked_count = 0
            for task in pending:
                result = await service.dispatch_task_reminder(task, now=current_time, source="sync_cron")
                checked_count += 1
                if result.sent:
                    sent_count += 1
        except Exception:
            logger.exception("Reminder sweep failed")
            return ReminderSweepSummary()

        logger.info("Reminder sweep complete: sent %d of %d checked", sent_count, checked_count)
        return ReminderSweepSummary(sent_count=sent_count, checked_count=checked_count)


async def run_schedule_sync() -> SyncSummary:
    """Run one calendar sync; used by the background scheduler."""
    from taskloop.modules.tasks.sync import sync_schedules

    logger.info("Running scheduled calendar sync")
    summary = await sync_schedules()
    if not summary.success:
        logger.warning("Scheduled sync did not succeed: %s", summary.reason)
    return summary
