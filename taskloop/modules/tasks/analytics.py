"""KPI aggregation over tasks.

Key Concepts:
- Completion rate: completed tasks over all tasks.
- On-time rate: completed tasks finished no later than their deadline, over completed
  tasks. The finish time is the submission time, falling back to the verification time.
- Both rates are percentages rounded to two decimals, and 0 when there is nothing to
  divide by.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from taskloop.core.logging import span
from taskloop.core.value_parser import utc_now
from taskloop.domain.task import Task, TaskStatus
from taskloop.models.service_models import KpiSummary
from taskloop.modules.tasks import lifecycle, repository


logger = logging.getLogger(__name__)


def _percentage(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator * 100, 2)


def _is_on_time(task: Task) -> bool:
    finished_at = task.completion_time or task.verify_time
    if finished_at is None or task.end_time is None:
        return False
    return finished_at <= task.end_time


def aggregate_kpi(tasks: Iterable[Task], now: datetime) -> KpiSummary:
    """Compute the KPI summary for a set of tasks at ``now``."""
    task_list = list(tasks)
    completed = [task for task in task_list if task.status == TaskStatus.COMPLETED]
    on_time = sum(1 for task in completed if _is_on_time(task))

    return KpiSummary(
        total=len(task_list),
        completed=len(completed),
        waiting_verify=sum(1 for task in task_list if task.status == TaskStatus.WAITING_VERIFY),
        overdue=sum(1 for task in task_list if lifecycle.compute_overdue(task, now)),
        due_soon=sum(1 for task in task_list if lifecycle.compute_due_soon(task, now)),
        completion_rate_pct=_percentage(len(completed), len(task_list)),
        on_time_rate_pct=_percentage(on_time, len(completed)),
    )


async def get_kpi(*, user_id: str | None = None, now: datetime | None = None) -> KpiSummary:
    """KPI over the tasks visible to ``user_id`` (owner, executor or creator), or all tasks."""
    with span("analytics.get_kpi"):
        if user_id:
            tasks = await repository.list_tasks(user_id=user_id)
        else:
            tasks = await repository.list_all_tasks()

        summary = aggregate_kpi(tasks, now or utc_now())
        logger.debug("Computed KPI for %s: %s", user_id or "all", summary.model_dump())
        return summary
