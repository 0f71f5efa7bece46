"""Centralized texts for WeCom task cards.

All user-facing card strings are defined here so wording can be changed in one place.
"""

from taskloop.domain.task import ReminderKind


NEW_TASK_TITLE = "\U0001f4cc New task"
VERIFY_REQUEST_TITLE = "✅ Task awaiting verification"
APPROVED_TITLE = "Task completed"
REJECTED_TITLE = "Task returned for rework"
DEFAULT_REWORK_HINT = "please update it and submit again"


def new_task(*, item_title: str) -> str:
    return f"Please complete the task as scheduled: {item_title}"


def verification_request(*, executor_id: str) -> str:
    return f"{executor_id} has submitted the task and is waiting for verification"


def verification_result(*, item_title: str, approved: bool, reason: str | None = None) -> str:
    if approved:
        return f"\U0001f389 Task [{item_title}] passed verification."
    return f"⚠️ Task [{item_title}] was rejected: {reason or DEFAULT_REWORK_HINT}"


def reminder_title(kind: ReminderKind) -> str:
    if kind == ReminderKind.OVERDUE:
        return "⏰ Task overdue"
    return "\U0001f552 Task due soon"


def reminder_body(*, kind: ReminderKind, item_title: str) -> str:
    if kind == ReminderKind.OVERDUE:
        return f"The task is overdue, please handle it as soon as possible: {item_title}"
    return f"The task is due within 24 hours: {item_title}"
