"""Pure lifecycle rules for tasks: permissions, reminder classification and view flags.

Nothing here touches storage or the network; every function takes the task and the
current time explicitly.
"""

from datetime import datetime, timedelta

from taskloop.core.config import Constants
from taskloop.core.value_parser import normalize_text
from taskloop.domain.task import ReminderKind, Task, TaskStatus, TaskView


# Allowed status transitions. WAITING_VERIFY -> PENDING is the reject path.
TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.WAITING_VERIFY},
    TaskStatus.WAITING_VERIFY: {TaskStatus.COMPLETED, TaskStatus.PENDING},
    TaskStatus.COMPLETED: set(),
}

_DUE_SOON_WINDOW = timedelta(hours=Constants.DUE_SOON_WINDOW_HOURS)


def can_transition(*, from_status: TaskStatus, to_status: TaskStatus) -> bool:
    return to_status in TASK_TRANSITIONS.get(from_status, set())


def parse_global_verifiers(raw: str | None) -> list[str]:
    """Split a comma-separated verifier list, trimming blanks and keeping first occurrences."""
    verifiers: list[str] = []
    for part in normalize_text(raw).split(","):
        user_id = part.strip()
        if user_id and user_id not in verifiers:
            verifiers.append(user_id)
    return verifiers


def normalize_action_key(raw: object) -> str:
    return normalize_text(raw).upper()


def can_advance_to_verify(task: Task, user_id: str | None) -> bool:
    """Only the executor may submit, and only while the task is PENDING."""
    user = normalize_text(user_id)
    if not user or task.status != TaskStatus.PENDING:
        return False
    return user == task.executor_id


def can_verify(task: Task, user_id: str | None, global_verifiers: list[str] | tuple[str, ...] = ()) -> bool:
    """The creator or a global verifier may verify a task that is WAITING_VERIFY."""
    user = normalize_text(user_id)
    if not user or task.status != TaskStatus.WAITING_VERIFY:
        return False
    return user == task.creator_id or user in global_verifiers


def classify_reminder(task: Task, now: datetime) -> ReminderKind:
    """Classify a task's deadline relative to ``now``.

    Only PENDING tasks with a known end time get a reminder. A deadline exactly at
    ``now`` counts as due soon.
    """
    if task.status != TaskStatus.PENDING or task.end_time is None:
        return ReminderKind.NONE

    remaining = task.end_time - now
    if remaining < timedelta(0):
        return ReminderKind.OVERDUE
    if remaining <= _DUE_SOON_WINDOW:
        return ReminderKind.DUE_SOON
    return ReminderKind.NONE


def should_send_reminder(
    task: Task,
    kind: ReminderKind,
    now: datetime,
    cooldown_hours: float = 12,
) -> bool:
    """Decide whether a reminder of ``kind`` is due, honouring the per-kind cooldown."""
    if kind == ReminderKind.NONE:
        return False
    if task.last_reminder_kind != kind:
        return True
    if task.last_reminder_at is None:
        return True
    return now - task.last_reminder_at >= timedelta(hours=cooldown_hours)


def compute_overdue(task: Task, now: datetime) -> bool:
    """Past its deadline and not yet completed (tasks awaiting verification count)."""
    if task.status == TaskStatus.COMPLETED or task.end_time is None:
        return False
    return task.end_time < now


def compute_due_soon(task: Task, now: datetime) -> bool:
    if task.status != TaskStatus.PENDING or task.end_time is None:
        return False
    return timedelta(0) <= task.end_time - now <= _DUE_SOON_WINDOW


def build_task_view(
    task: Task,
    *,
    now: datetime,
    current_user_id: str | None,
    global_verifiers: list[str] | tuple[str, ...] = (),
) -> TaskView:
    """Attach the per-user permission flags and deadline flags to a task."""
    return TaskView(
        **task.model_dump(exclude={"is_returned_for_rework"}),
        can_complete=can_advance_to_verify(task, current_user_id),
        can_verify=can_verify(task, current_user_id, global_verifiers),
        is_due_soon=compute_due_soon(task, now),
        is_overdue=compute_overdue(task, now),
    )
