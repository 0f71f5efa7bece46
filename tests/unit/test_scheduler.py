"""Tests for job tracking and scheduler registration."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from taskloop.core import scheduler
from taskloop.core.config import constants, settings
from taskloop.core.scheduler import JobTracker, run_tracked_job


@pytest.fixture
def job_tracker() -> JobTracker:
    return JobTracker()


@pytest.mark.unit
def test_record_job_start(job_tracker: JobTracker) -> None:
    job_tracker.record_job_start("test_job")

    assert job_tracker.get_job_status("test_job")["currently_running"] is True


@pytest.mark.unit
def test_consecutive_failures_reset_on_success(job_tracker: JobTracker) -> None:
    assert job_tracker.record_job_failure("test_job", "Error 1") == 1
    assert job_tracker.record_job_failure("test_job", "Error 2") == 2

    job_tracker.record_job_success("test_job")

    status = job_tracker.get_job_status("test_job")
    assert status["consecutive_failures"] == 0
    assert status["failure_count"] == 2
    assert status["success_count"] == 1
    assert status["last_error"] == "Error 2"
    assert status["currently_running"] is False


@pytest.mark.unit
def test_unknown_job_status(job_tracker: JobTracker) -> None:
    status = job_tracker.get_job_status("never_ran")

    assert status["last_success"] is None
    assert status["consecutive_failures"] == 0


@pytest.mark.unit
async def test_run_tracked_job_records_success() -> None:
    job = AsyncMock()

    await run_tracked_job(job, "sync_test")

    job.assert_awaited_once()
    assert scheduler.job_tracker.get_job_status("sync_test")["success_count"] == 1


@pytest.mark.unit
async def test_run_tracked_job_swallows_failure() -> None:
    job = AsyncMock(side_effect=RuntimeError("calendar down"))

    await run_tracked_job(job, "sync_test")

    status = scheduler.job_tracker.get_job_status("sync_test")
    assert status["consecutive_failures"] == 1
    assert status["last_error"] == "calendar down"


@pytest.mark.unit
def test_start_scheduler_registers_sync_job(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "sync_interval_minutes", 5)
    mock_scheduler = MagicMock()

    with patch.object(scheduler, "scheduler", mock_scheduler):
        scheduler.start_scheduler()

    kwargs = mock_scheduler.add_job.call_args.kwargs
    assert kwargs["id"] == constants.SYNC_JOB_ID
    assert kwargs["max_instances"] == 1
    assert kwargs["coalesce"] is True
    assert kwargs["next_run_time"] is not None
    assert kwargs["trigger"].interval.total_seconds() == 300
    mock_scheduler.start.assert_called_once()
