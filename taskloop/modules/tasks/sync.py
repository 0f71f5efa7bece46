"""Calendar sync orchestrator.

One run resolves the calendar targets, lists every calendar, reconciles each schedule
once, then sweeps reminders over pending tasks. Per-calendar and per-schedule failures
are recorded in the summary and never abort the run.
"""

import logging
from datetime import datetime

from taskloop.core.config import settings
from taskloop.core.logging import span
from taskloop.core.value_parser import normalize_text
from taskloop.domain.calendar import CalendarTarget
from taskloop.interface import wecom_client
from taskloop.models.service_models import CalendarError, SyncSummary, SyncTaskResult
from taskloop.modules.tasks import repository, scheduler_jobs, service
from taskloop.services.calendar_mapping import build_sync_calendar_targets


logger = logging.getLogger(__name__)


async def resolve_sync_calendar_targets() -> list[CalendarTarget]:
    """Calendars to poll: configured map, then stored mappings, then the default calendar."""
    rows = await repository.list_user_calendar_rows()
    return build_sync_calendar_targets(
        default_cal_id=settings.default_cal_id,
        user_calendar_map_raw=settings.user_calendar_map,
        user_calendar_rows=[row.model_dump() for row in rows],
    )


async def process_schedule(
    schedule_id: str | None,
    calendar_target: CalendarTarget,
    seen: set[str],
) -> SyncTaskResult:
    """Fetch one schedule's detail and reconcile it, at most once per run.

    ``seen`` is the run's set of already processed schedule ids; it is updated here.
    """
    normalized_id = normalize_text(schedule_id)
    if not normalized_id:
        return SyncTaskResult(skipped=True, reason="missing_schedule_id")
    if normalized_id in seen:
        return SyncTaskResult(skipped=True, reason="duplicate_schedule")
    seen.add(normalized_id)

    try:
        detail = await wecom_client.get_schedule(normalized_id)
    except wecom_client.CalendarProviderError as e:
        logger.warning("Schedule %s detail request rejected: %s", normalized_id, e)
        return SyncTaskResult(skipped=True, reason="schedule_detail_invalid")
    except Exception:
        logger.exception("Unexpected error fetching schedule %s", normalized_id)
        return SyncTaskResult(skipped=True, reason="schedule_process_exception")

    if detail is None:
        logger.warning("Schedule %s has no detail", normalized_id)
        return SyncTaskResult(skipped=True, reason="schedule_detail_invalid")

    try:
        result = await service.sync_schedule_task(detail, calendar_target)
    except Exception:
        logger.exception("Unexpected error reconciling schedule %s", normalized_id)
        return SyncTaskResult(skipped=True, reason="schedule_process_exception")

    logger.debug(
        "Processed schedule %s: inserted=%s updated=%s skipped=%s",
        normalized_id,
        result.inserted,
        result.updated,
        result.skipped,
    )
    return result


async def _sync_calendar(target: CalendarTarget, summary: SyncSummary, seen: set[str]) -> None:
    try:
        schedules = await wecom_client.list_schedules(target.cal_id)
    except wecom_client.CalendarProviderError as e:
        summary.calendar_failed_count += 1
        summary.calendar_errors.append(
            CalendarError(
                user_id=target.user_id,
                cal_id=target.cal_id,
                reason="schedule_list_failed",
                detail=str(e),
            )
        )
        logger.warning("Failed to list schedules for calendar %s: %s", target.cal_id, e)
        return

    summary.calendar_success_count += 1
    summary.schedule_count += len(schedules)

    for item in schedules:
        result = await process_schedule(item.get("schedule_id"), target, seen)
        if result.inserted:
            summary.inserted_count += 1
        elif result.updated:
            summary.updated_count += 1
        else:
            summary.skipped_count += 1


async def sync_schedules(*, now: datetime | None = None) -> SyncSummary:
    """Run one full sync and return its summary."""
    with span("sync.sync_schedules"):
        try:
            targets = await resolve_sync_calendar_targets()
            if not targets:
                logger.warning("No calendar targets configured, skipping sync")
                return SyncSummary(success=False, reason="missing_calendar_targets")

            summary = SyncSummary(calendar_count=len(targets))
            seen: set[str] = set()

            for target in targets:
                await _sync_calendar(target, summary, seen)

            summary.unique_schedule_count = len(seen)

            reminders = await scheduler_jobs.dispatch_date_reminders(now=now)
            summary.reminder_sent_count = reminders.sent_count
        except Exception as e:
            logger.exception("Sync run failed")
            return SyncSummary(success=False, reason="sync_exception", message=str(e))

        logger.info("sync_run_complete", extra=summary.model_dump(exclude={"calendar_errors", "message"}))
        return summary
