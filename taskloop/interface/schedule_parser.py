"""WeCom schedule payload parser.

Schedule payloads come in several shapes depending on the API and its version. Every
field is read through a fixed priority list here so the task service only sees one
normalized structure.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from taskloop.core.value_parser import normalize_text, parse_datetime


class ParsedSchedule(BaseModel):
    """Normalized schedule data."""

    schedule_id: str = Field(default="", description="External schedule id (empty when absent)")
    title: str = Field(default="", description="Schedule summary")
    description: str = Field(default="")
    organizer: str = Field(default="", description="Organizer user id; becomes the task creator")
    attendees: list[str] = Field(default_factory=list, description="Attendee user ids in payload order")
    executor_id: str = Field(default="", description="Derived executor, see pick_executor")
    cal_id: str = Field(default="", description="Calendar id carried by the schedule itself")
    start_time: datetime | None = None
    end_time: datetime | None = None


def _extract_organizer(schedule: dict[str, Any]) -> str:
    organizer = schedule.get("organizer")
    if isinstance(organizer, dict):
        value = normalize_text(organizer.get("userid"))
        if value:
            return value
    elif organizer:
        value = normalize_text(organizer)
        if value:
            return value
    return normalize_text(schedule.get("creator_userid"))


def _extract_attendees(schedule: dict[str, Any]) -> list[str]:
    raw = schedule.get("attendees")
    if not isinstance(raw, list):
        raw = schedule.get("attendee")
    if not isinstance(raw, list):
        return []

    attendees = []
    for item in raw:
        user_id = normalize_text(item.get("userid")) if isinstance(item, dict) else normalize_text(item)
        if user_id:
            attendees.append(user_id)
    return attendees


def pick_executor(organizer: str, attendees: list[str]) -> str:
    """First attendee who is not the organizer, else the first attendee, else the organizer."""
    for attendee in attendees:
        if attendee != organizer:
            return attendee
    if attendees:
        return attendees[0]
    return organizer


def parse_schedule_detail(schedule: dict[str, Any] | None) -> ParsedSchedule:
    """Parse a schedule payload from the list or detail endpoint."""
    if not schedule:
        return ParsedSchedule()

    organizer = _extract_organizer(schedule)
    attendees = _extract_attendees(schedule)

    return ParsedSchedule(
        schedule_id=normalize_text(schedule.get("schedule_id")),
        title=normalize_text(schedule.get("summary")),
        description=normalize_text(schedule.get("description")),
        organizer=organizer,
        attendees=attendees,
        executor_id=pick_executor(organizer, attendees),
        cal_id=normalize_text(schedule.get("cal_id") or schedule.get("calendar_id")),
        start_time=parse_datetime(schedule.get("start_time")),
        end_time=parse_datetime(schedule.get("end_time")),
    )
