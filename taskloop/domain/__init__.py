"""Domain models and DTOs."""

from taskloop.domain.calendar import CalendarSource, CalendarTarget, UserCalendar
from taskloop.domain.create_models import ManualTaskCreate, UserCalendarUpdate, VerifyRequest
from taskloop.domain.task import ReminderKind, Task, TaskAction, TaskStatus, TaskView


__all__ = [
    "CalendarSource",
    "CalendarTarget",
    "ManualTaskCreate",
    "ReminderKind",
    "Task",
    "TaskAction",
    "TaskStatus",
    "TaskView",
    "UserCalendar",
    "UserCalendarUpdate",
    "VerifyRequest",
]
