"""Calendar target domain models."""

from enum import StrEnum

from pydantic import BaseModel, Field


class CalendarSource(StrEnum):
    """Where a calendar mapping came from."""

    ENV_MAP = "env_map"
    DB = "db"
    DEFAULT = "default"


class CalendarTarget(BaseModel):
    """A calendar to poll during sync, and the user it belongs to."""

    user_id: str = Field(default="", description="Calendar-owning user; empty for the default calendar")
    cal_id: str = Field(..., description="External calendar id")
    source: CalendarSource = Field(..., description="Origin of the mapping")


class UserCalendar(BaseModel):
    """Storage-sourced per-user calendar mapping."""

    user_id: str
    cal_id: str
    updated_at: str | None = None
