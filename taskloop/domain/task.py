"""Task domain models and enums."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator

from taskloop.core.value_parser import normalize_text, parse_datetime


class TaskStatus(StrEnum):
    """Task lifecycle state.

    A rejected task goes back to PENDING; there is no terminal rejected state.
    """

    PENDING = "PENDING"
    WAITING_VERIFY = "WAITING_VERIFY"
    COMPLETED = "COMPLETED"


class ReminderKind(StrEnum):
    """Reminder category derived from a task's deadline."""

    NONE = "NONE"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"


class TaskAction(StrEnum):
    """Button keys carried by interactive cards."""

    COMPLETE = "ACTION_COMPLETE"
    PASS = "ACTION_PASS"
    REJECT = "ACTION_REJECT"


_TIMESTAMP_FIELDS = (
    "start_time",
    "end_time",
    "completion_time",
    "verify_time",
    "last_reminder_at",
    "created_at",
    "updated_at",
)


class Task(BaseModel):
    """Task record, one per external schedule."""

    id: int | None = Field(default=None, description="Local task ID from database")
    external_schedule_id: str = Field(..., description="Correlation id of the calendar schedule")
    title: str = Field(default="", description="Task title")
    description: str = Field(default="", description="Detailed task description")
    creator_id: str = Field(default="", description="User who assigned the task (verifies it)")
    executor_id: str = Field(default="", description="User who performs the task")
    owner_id: str = Field(default="", description="User whose calendar holds the schedule")
    owner_calendar_id: str = Field(default="", description="Calendar the schedule lives in")
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Current lifecycle state")
    completion_time: datetime | None = None
    verify_time: datetime | None = None
    completed_by_id: str | None = None
    verifier_id: str | None = None
    reject_reason: str | None = None
    redo_count: int = Field(default=0, ge=0, description="Number of times the task was rejected")
    last_reminder_kind: ReminderKind = ReminderKind.NONE
    last_reminder_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator(*_TIMESTAMP_FIELDS, mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> datetime | None:
        # Unparseable timestamps are treated as missing
        return parse_datetime(value)

    @field_validator(
        "title",
        "description",
        "creator_id",
        "executor_id",
        "owner_id",
        "owner_calendar_id",
        mode="before",
    )
    @classmethod
    def _normalize_text(cls, value: Any) -> str:
        return normalize_text(value)

    @field_validator("last_reminder_kind", mode="before")
    @classmethod
    def _parse_reminder_kind(cls, value: Any) -> ReminderKind:
        text = normalize_text(value).upper()
        return ReminderKind(text) if text in ReminderKind.__members__ else ReminderKind.NONE

    @field_validator("redo_count", mode="before")
    @classmethod
    def _parse_redo_count(cls, value: Any) -> int:
        return value or 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_returned_for_rework(self) -> bool:
        """True when the task is back in PENDING after a rejection."""
        return self.status == TaskStatus.PENDING and bool(normalize_text(self.reject_reason))


class TaskView(Task):
    """Task plus the flags derived for the current user and clock."""

    can_complete: bool = False
    can_verify: bool = False
    is_due_soon: bool = False
    is_overdue: bool = False
