"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from enum import StrEnum

from pydantic import BaseModel, Field

from taskloop.domain.task import ReminderKind, Task


class KpiSummary(BaseModel):
    """Aggregate task statistics."""

    total: int = 0
    completed: int = 0
    waiting_verify: int = 0
    overdue: int = 0
    due_soon: int = 0
    completion_rate_pct: float = 0.0
    on_time_rate_pct: float = 0.0


class SyncTaskResult(BaseModel):
    """Outcome of reconciling one external schedule."""

    inserted: bool = False
    updated: bool = False
    skipped: bool = False
    reason: str | None = None
    task: Task | None = None


class CalendarError(BaseModel):
    """A calendar that could not be fetched during a sync run."""

    user_id: str
    cal_id: str
    reason: str
    detail: str = ""


class SyncSummary(BaseModel):
    """Result of one sync run."""

    success: bool = True
    reason: str | None = None
    message: str | None = None
    calendar_count: int = 0
    calendar_success_count: int = 0
    calendar_failed_count: int = 0
    calendar_errors: list[CalendarError] = Field(default_factory=list)
    schedule_count: int = 0
    unique_schedule_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    reminder_sent_count: int = 0


class ReminderDispatchResult(BaseModel):
    """Outcome of considering one task for a reminder."""

    sent: bool = False
    kind: ReminderKind = ReminderKind.NONE
    reason: str | None = None


class ReminderSweepSummary(BaseModel):
    """Result of one reminder sweep over pending tasks."""

    sent_count: int = 0
    checked_count: int = 0


class NotificationResult(BaseModel):
    """Outcome of a best-effort notification."""

    success: bool = False
    skipped: bool = False
    recipient: str | None = None
    error: str | None = None


class TaskEventKind(StrEnum):
    """State changes that produce notifications."""

    CREATED = "created"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class TaskEvent(BaseModel):
    """A committed state change, handed to the notifier after the write."""

    kind: TaskEventKind
    task: Task
    actor_id: str
    source: str = "api"
    reason: str | None = None


class TaskOperationResult(BaseModel):
    """Result of a successful submit or verify."""

    task: Task
    event: TaskEvent
    notification: NotificationResult | None = None
