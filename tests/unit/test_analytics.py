"""Unit tests for KPI aggregation."""

from datetime import timedelta

import pytest

from taskloop.domain.task import TaskStatus
from taskloop.modules.tasks import analytics


@pytest.mark.unit
def test_empty_task_set(now):
    summary = analytics.aggregate_kpi([], now)

    assert summary.total == 0
    assert summary.completion_rate_pct == 0
    assert summary.on_time_rate_pct == 0


@pytest.mark.unit
def test_counts_and_rates(task_factory, now):
    deadline = now - timedelta(hours=1)
    tasks = [
        # Completed on time
        task_factory(
            id=1,
            status=TaskStatus.COMPLETED,
            end_time=deadline,
            completion_time=deadline - timedelta(hours=2),
        ),
        # Completed late
        task_factory(
            id=2,
            status=TaskStatus.COMPLETED,
            end_time=deadline,
            completion_time=deadline + timedelta(minutes=30),
        ),
        # Waiting and past deadline
        task_factory(id=3, status=TaskStatus.WAITING_VERIFY, end_time=deadline),
        # Pending, due within the window
        task_factory(id=4, end_time=now + timedelta(hours=5)),
        # Pending, far out
        task_factory(id=5, end_time=now + timedelta(days=5)),
        # Pending, overdue
        task_factory(id=6, end_time=now - timedelta(days=1)),
    ]

    summary = analytics.aggregate_kpi(tasks, now)

    assert summary.total == 6
    assert summary.completed == 2
    assert summary.waiting_verify == 1
    assert summary.overdue == 2
    assert summary.due_soon == 1
    assert summary.completion_rate_pct == 33.33
    assert summary.on_time_rate_pct == 50.0


@pytest.mark.unit
def test_finish_exactly_at_deadline_is_on_time(task_factory, now):
    task = task_factory(status=TaskStatus.COMPLETED, end_time=now, completion_time=now)

    summary = analytics.aggregate_kpi([task], now)

    assert summary.on_time_rate_pct == 100.0


@pytest.mark.unit
def test_on_time_falls_back_to_verify_time(task_factory, now):
    task = task_factory(
        status=TaskStatus.COMPLETED,
        end_time=now,
        completion_time=None,
        verify_time=now - timedelta(minutes=1),
    )

    summary = analytics.aggregate_kpi([task], now)

    assert summary.on_time_rate_pct == 100.0


@pytest.mark.unit
def test_completed_without_finish_time_is_not_on_time(task_factory, now):
    task = task_factory(status=TaskStatus.COMPLETED, end_time=now)

    summary = analytics.aggregate_kpi([task], now)

    assert summary.completion_rate_pct == 100.0
    assert summary.on_time_rate_pct == 0


@pytest.mark.unit
async def test_get_kpi_scopes_to_user(stored_task, now):
    await stored_task(external_schedule_id="sch-a", executor_id="bob")
    await stored_task(external_schedule_id="sch-b", creator_id="carol", executor_id="dave", owner_id="dave")

    bob_summary = await analytics.get_kpi(user_id="bob", now=now)
    all_summary = await analytics.get_kpi(now=now)

    assert bob_summary.total == 1
    assert all_summary.total == 2
