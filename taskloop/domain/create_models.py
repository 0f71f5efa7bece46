"""Pydantic models for request payloads that create or change records."""

from pydantic import AliasChoices, BaseModel, Field


# Times arrive as unix seconds or ISO strings; the task service validates them so
# that bad input is reported with a task error code rather than a schema error.
TimeInput = str | int | float | None


class ManualTaskCreate(BaseModel):
    """Payload for creating a task by hand."""

    title: str = Field(default="", description="Task title")
    description: str = Field(default="", description="Detailed task description")
    executor_id: str = Field(
        default="",
        validation_alias=AliasChoices("executor_id", "executor", "executorId"),
        description="User who performs the task",
    )
    start_time: TimeInput = Field(default=None, description="Start (defaults to now)")
    end_time: TimeInput = Field(default=None, description="Deadline")


class VerifyRequest(BaseModel):
    """Payload for approving or rejecting a submitted task."""

    action: str = Field(default="", description="PASS or REJECT")
    reason: str | None = Field(default=None, description="Rejection reason")


class UserCalendarUpdate(BaseModel):
    """Payload for mapping a user to their calendar."""

    cal_id: str = Field(..., min_length=1, description="External calendar id")
