"""Storage access for tasks and per-user calendar mappings."""

import logging
from datetime import datetime
from typing import Any

from taskloop.core import db_client
from taskloop.core.value_parser import to_iso, utc_now
from taskloop.domain.calendar import UserCalendar
from taskloop.domain.task import ReminderKind, Task, TaskStatus
from taskloop.modules.tasks.lifecycle import can_transition


logger = logging.getLogger(__name__)

TASKS = "tasks"
USER_CALENDARS = "user_calendars"

# Columns owned by calendar sync. Everything else on a task belongs to the lifecycle.
SYNC_FIELDS = (
    "title",
    "description",
    "creator_id",
    "executor_id",
    "owner_id",
    "owner_calendar_id",
    "start_time",
    "end_time",
)


def _to_row(data: dict[str, Any]) -> dict[str, Any]:
    return {key: to_iso(value) if isinstance(value, datetime) else value for key, value in data.items()}


def _to_task(record: dict[str, Any] | None) -> Task | None:
    if record is None:
        return None
    return Task(**record)


async def get_task_by_id(task_id: int) -> Task | None:
    return _to_task(await db_client.get_first_record(collection=TASKS, filters={"id": task_id}))


async def get_task_by_schedule_id(schedule_id: str) -> Task | None:
    return _to_task(await db_client.get_first_record(collection=TASKS, filters={"external_schedule_id": schedule_id}))


async def list_tasks(
    *,
    user_id: str,
    status: TaskStatus | None = None,
    keyword: str | None = None,
) -> list[Task]:
    """Tasks the user owns, executes or created, newest first.

    ``keyword`` matches title, description, creator or executor as a literal substring.
    """
    filters: dict[str, Any] = {}
    if status:
        filters["status"] = status.value

    or_groups: list[dict[str, Any]] = [{"owner_id": user_id, "executor_id": user_id, "creator_id": user_id}]
    if keyword:
        or_groups.append(
            {
                "title__like": keyword,
                "description__like": keyword,
                "creator_id__like": keyword,
                "executor_id__like": keyword,
            }
        )

    records = await db_client.list_records(
        collection=TASKS,
        filters=filters,
        or_groups=or_groups,
        order_by="id DESC",
    )
    return [Task(**record) for record in records]


async def list_pending_tasks() -> list[Task]:
    records = await db_client.list_records(collection=TASKS, filters={"status": TaskStatus.PENDING.value})
    return [Task(**record) for record in records]


async def list_all_tasks() -> list[Task]:
    records = await db_client.list_records(collection=TASKS, order_by="id DESC")
    return [Task(**record) for record in records]


async def insert_task(data: dict[str, Any]) -> Task:
    """Insert a new PENDING task and return it as stored."""
    now = utc_now()
    row = _to_row(
        {
            "status": TaskStatus.PENDING.value,
            "redo_count": 0,
            "created_at": now,
            "updated_at": now,
            **data,
        }
    )
    record = await db_client.create_record(collection=TASKS, data=row)
    logger.info("Inserted task %s", record["external_schedule_id"], extra={"task_id": record["id"]})
    return Task(**record)


async def update_sync_fields(schedule_id: str, fields: dict[str, Any]) -> Task | None:
    """Overwrite the sync-owned columns of a task; lifecycle columns are never touched."""
    unknown = set(fields) - set(SYNC_FIELDS)
    if unknown:
        msg = f"Not sync-owned fields: {sorted(unknown)}"
        raise ValueError(msg)

    await db_client.update_records_where(
        collection=TASKS,
        data=_to_row({**fields, "updated_at": utc_now()}),
        filters={"external_schedule_id": schedule_id},
    )
    return await get_task_by_schedule_id(schedule_id)


async def transition_status(
    schedule_id: str,
    expected_status: TaskStatus,
    changes: dict[str, Any],
    *,
    increments: dict[str, int] | None = None,
) -> int:
    """Apply ``changes`` only if the task is still in ``expected_status``.

    Returns the number of rows changed: 1 on success, 0 when the task is missing or
    another writer moved it first.

    Raises:
        ValueError: If the requested status change is not an allowed transition
    """
    target = changes.get("status")
    if target is not None and not can_transition(from_status=expected_status, to_status=TaskStatus(target)):
        msg = f"Cannot move task from {expected_status.value} to {target}"
        raise ValueError(msg)

    return await db_client.update_records_where(
        collection=TASKS,
        data=_to_row({**changes, "updated_at": utc_now()}),
        filters={"external_schedule_id": schedule_id, "status": expected_status.value},
        increments=increments,
    )


async def stamp_reminder(task_id: int, kind: ReminderKind, at: datetime) -> None:
    await db_client.update_records_where(
        collection=TASKS,
        data=_to_row({"last_reminder_kind": kind.value, "last_reminder_at": at, "updated_at": utc_now()}),
        filters={"id": task_id},
    )


async def list_user_calendar_rows() -> list[UserCalendar]:
    records = await db_client.list_records(collection=USER_CALENDARS, order_by="user_id ASC")
    return [UserCalendar(**record) for record in records]


async def upsert_user_calendar(user_id: str, cal_id: str) -> UserCalendar:
    row = {"user_id": user_id, "cal_id": cal_id, "updated_at": to_iso(utc_now())}
    await db_client.upsert_record(collection=USER_CALENDARS, data=row, conflict_column="user_id")
    return UserCalendar(**row)
