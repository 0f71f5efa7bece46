"""Tests for the reminder sweep and the scheduled sync job."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from taskloop.models.service_models import ReminderDispatchResult, SyncSummary
from taskloop.modules.tasks import repository, scheduler_jobs, service


@pytest.mark.unit
async def test_sweep_checks_only_pending_tasks(stored_task, wecom, now):
    await stored_task(external_schedule_id="due", end_time=now + timedelta(hours=2))
    await stored_task(external_schedule_id="late", end_time=now - timedelta(hours=2))
    await stored_task(external_schedule_id="far", end_time=now + timedelta(days=9))
    await stored_task(external_schedule_id="waiting", status="WAITING_VERIFY", end_time=now - timedelta(hours=2))

    summary = await scheduler_jobs.dispatch_date_reminders(now=now)

    assert summary.checked_count == 3
    assert summary.sent_count == 2
    assert (await repository.get_task_by_schedule_id("waiting")).last_reminder_at is None


@pytest.mark.unit
async def test_sweep_never_raises(db):
    with patch.object(repository, "list_pending_tasks", AsyncMock(side_effect=RuntimeError("locked"))):
        summary = await scheduler_jobs.dispatch_date_reminders()

    assert summary.sent_count == 0
    assert summary.checked_count == 0


@pytest.mark.unit
async def test_sweep_counts_only_delivered(stored_task, now):
    await stored_task(external_schedule_id="a", end_time=now - timedelta(hours=1))
    await stored_task(external_schedule_id="b", end_time=now - timedelta(hours=1))
    outcomes = [ReminderDispatchResult(sent=True), ReminderDispatchResult(sent=False, reason="send_failed")]

    with patch.object(service, "dispatch_task_reminder", AsyncMock(side_effect=outcomes)):
        summary = await scheduler_jobs.dispatch_date_reminders(now=now)

    assert summary.checked_count == 2
    assert summary.sent_count == 1


@pytest.mark.unit
async def test_run_schedule_sync_returns_summary():
    with patch(
        "taskloop.modules.tasks.sync.sync_schedules",
        AsyncMock(return_value=SyncSummary(success=False, reason="missing_calendar_targets")),
    ) as mock_sync:
        summary = await scheduler_jobs.run_schedule_sync()

    mock_sync.assert_awaited_once()
    assert summary.reason == "missing_calendar_targets"
