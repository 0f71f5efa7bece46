"""Task service: the lifecycle operations, calendar reconciliation and reminders.

Every status change is a conditional update guarded by the status the caller saw, so
two racing actors cannot both succeed; the loser gets a ConflictError. Notifications
are sent after the write and never undo it.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import Any

import aiosqlite

from taskloop.core import message_templates
from taskloop.core.config import Constants, settings
from taskloop.core.errors import BadRequestError, ConflictError, ErrorCode, ForbiddenError, NotFoundError
from taskloop.core.logging import log_with_task_context, span
from taskloop.core.value_parser import normalize_text, parse_datetime, utc_now
from taskloop.domain.calendar import CalendarTarget, UserCalendar
from taskloop.domain.create_models import ManualTaskCreate
from taskloop.domain.task import ReminderKind, Task, TaskAction, TaskStatus, TaskView
from taskloop.interface import wecom_client
from taskloop.interface.schedule_parser import parse_schedule_detail
from taskloop.models.service_models import (
    KpiSummary,
    ReminderDispatchResult,
    SyncTaskResult,
    TaskEvent,
    TaskEventKind,
    TaskOperationResult,
)
from taskloop.modules.tasks import analytics, lifecycle, repository
from taskloop.services import calendar_mapping, notification_service


logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def get_global_verifiers() -> list[str]:
    return lifecycle.parse_global_verifiers(settings.global_verifiers)


def create_manual_schedule_id(now: datetime | None = None) -> str:
    """Synthesize a correlation id for a task whose calendar write did not succeed."""
    epoch_ms = int((now or utc_now()).timestamp() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{Constants.MANUAL_SCHEDULE_ID_PREFIX}_{epoch_ms}_{suffix}"


def _ensure_can_complete(task: Task | None, user_id: str) -> Task:
    if task is None:
        raise NotFoundError(ErrorCode.TASK_NOT_FOUND, "Task not found")
    if not lifecycle.can_advance_to_verify(task, user_id):
        raise ForbiddenError(ErrorCode.TASK_COMPLETE_FORBIDDEN, "Only the executor can submit a pending task")
    return task


def _ensure_can_verify(task: Task | None, user_id: str) -> Task:
    if task is None:
        raise NotFoundError(ErrorCode.TASK_NOT_FOUND, "Task not found")
    if not lifecycle.can_verify(task, user_id, get_global_verifiers()):
        raise ForbiddenError(
            ErrorCode.TASK_VERIFY_FORBIDDEN,
            "Current user cannot verify this task, or the task is not waiting for verification",
        )
    return task


def _status_conflict() -> ConflictError:
    return ConflictError(ErrorCode.TASK_STATUS_CONFLICT, "Task status has changed, refresh and try again")


async def _reload(schedule_id: str) -> Task:
    task = await repository.get_task_by_schedule_id(schedule_id)
    if task is None:
        raise NotFoundError(ErrorCode.TASK_NOT_FOUND, "Task not found")
    return task


async def submit_for_verification(
    *,
    schedule_id: str,
    executor_id: str,
    source: str = "wecom_card",
    now: datetime | None = None,
) -> TaskOperationResult:
    """Move a PENDING task to WAITING_VERIFY on behalf of its executor.

    Raises:
        NotFoundError: No task with this schedule id
        ForbiddenError: Caller is not the executor, or the task is not PENDING
        ConflictError: The task left PENDING between the read and the write
    """
    with span("task_service.submit_for_verification"):
        user_id = normalize_text(executor_id)
        _ensure_can_complete(await repository.get_task_by_schedule_id(schedule_id), user_id)

        changed = await repository.transition_status(
            schedule_id,
            TaskStatus.PENDING,
            {
                "status": TaskStatus.WAITING_VERIFY.value,
                "completion_time": now or utc_now(),
                "completed_by_id": user_id,
                "reject_reason": None,
            },
        )
        if changed == 0:
            raise _status_conflict()

        updated = await _reload(schedule_id)
        event = TaskEvent(kind=TaskEventKind.SUBMITTED, task=updated, actor_id=user_id, source=source)
        notification = await notification_service.publish_task_event(event)

        log_with_task_context(
            logger, "info", "Task submitted for verification", schedule_id, user_id=user_id, source=source
        )
        return TaskOperationResult(task=updated, event=event, notification=notification)


async def verify_task(
    *,
    schedule_id: str,
    manager_id: str,
    approve: bool,
    reason: str | None = None,
    source: str = "wecom_card",
    now: datetime | None = None,
) -> TaskOperationResult:
    """Approve (WAITING_VERIFY -> COMPLETED) or reject (WAITING_VERIFY -> PENDING) a task.

    A rejection records the reason, defaulting when blank, and increments ``redo_count``.

    Raises:
        NotFoundError: No task with this schedule id
        ForbiddenError: Caller is neither creator nor global verifier, or wrong status
        ConflictError: The task left WAITING_VERIFY between the read and the write
    """
    with span("task_service.verify_task"):
        user_id = normalize_text(manager_id)
        _ensure_can_verify(await repository.get_task_by_schedule_id(schedule_id), user_id)

        verified_at = now or utc_now()
        if approve:
            reject_reason = None
            changed = await repository.transition_status(
                schedule_id,
                TaskStatus.WAITING_VERIFY,
                {
                    "status": TaskStatus.COMPLETED.value,
                    "verify_time": verified_at,
                    "verifier_id": user_id,
                    "reject_reason": None,
                },
            )
        else:
            reject_reason = normalize_text(reason) or Constants.DEFAULT_REJECT_REASON
            changed = await repository.transition_status(
                schedule_id,
                TaskStatus.WAITING_VERIFY,
                {
                    "status": TaskStatus.PENDING.value,
                    "verify_time": verified_at,
                    "verifier_id": user_id,
                    "reject_reason": reject_reason,
                },
                increments={"redo_count": 1},
            )

        if changed == 0:
            raise _status_conflict()

        updated = await _reload(schedule_id)
        event = TaskEvent(
            kind=TaskEventKind.APPROVED if approve else TaskEventKind.REJECTED,
            task=updated,
            actor_id=user_id,
            source=source,
            reason=reject_reason,
        )
        notification = await notification_service.publish_task_event(event)

        log_with_task_context(
            logger,
            "info",
            "Task approved" if approve else "Task rejected",
            schedule_id,
            user_id=user_id,
            source=source,
            redo_count=updated.redo_count,
        )
        return TaskOperationResult(task=updated, event=event, notification=notification)


async def _get_task_or_404(task_id: int) -> Task:
    task = await repository.get_task_by_id(task_id)
    if task is None:
        raise NotFoundError(ErrorCode.TASK_NOT_FOUND, "Task not found")
    return task


async def complete_task_by_id(*, task_id: int, executor_id: str, source: str = "web") -> TaskOperationResult:
    task = await _get_task_or_404(task_id)
    return await submit_for_verification(
        schedule_id=task.external_schedule_id,
        executor_id=executor_id,
        source=source,
    )


def parse_verify_action(action: str | None) -> bool:
    """Return True for PASS and False for REJECT, with or without the ``ACTION_`` prefix."""
    key = lifecycle.normalize_action_key(action).removeprefix("ACTION_")
    if key == "PASS":
        return True
    if key == "REJECT":
        return False
    raise BadRequestError(ErrorCode.TASK_VERIFY_ACTION_INVALID, "Verify action must be PASS or REJECT")


async def verify_task_by_id(
    *,
    task_id: int,
    manager_id: str,
    action: str,
    reason: str | None = None,
    source: str = "web",
) -> TaskOperationResult:
    approve = parse_verify_action(action)
    task = await _get_task_or_404(task_id)
    return await verify_task(
        schedule_id=task.external_schedule_id,
        manager_id=manager_id,
        approve=approve,
        reason=reason,
        source=source,
    )


async def _resolve_owner_calendar(owner_id: str) -> str:
    rows = await repository.list_user_calendar_rows()
    return calendar_mapping.resolve_calendar_id_for_user(
        owner_id,
        default_cal_id=settings.default_cal_id,
        user_calendar_map_raw=settings.user_calendar_map,
        user_calendar_rows=[row.model_dump() for row in rows],
    )


async def _create_external_schedule(
    *,
    owner_id: str,
    creator_id: str,
    cal_id: str,
    title: str,
    description: str,
    start_time: datetime,
    end_time: datetime,
) -> str | None:
    """Write the task to the owner's calendar. Returns the schedule id, or None on failure."""
    attendees = list(dict.fromkeys(user for user in (owner_id, creator_id) if user))
    try:
        return await wecom_client.create_schedule(
            {
                "organizer": owner_id,
                "summary": title,
                "description": description,
                "start_time": int(start_time.timestamp()),
                "end_time": int(end_time.timestamp()),
                "attendees": [{"userid": user} for user in attendees],
                "cal_id": cal_id,
            }
        )
    except Exception:
        logger.exception("Failed to create calendar schedule for manual task", extra={"cal_id": cal_id})
        return None


async def create_manual_task(
    *,
    payload: ManualTaskCreate | dict[str, Any],
    creator_id: str | None,
    source: str = "web_api",
    now: datetime | None = None,
) -> Task:
    """Create a PENDING task by hand and mirror it into the executor's calendar.

    The calendar write is best effort: when it fails, or no calendar is mapped, the
    task gets a synthesized ``manual_...`` correlation id instead.

    Raises:
        BadRequestError: Missing creator, title or executor; bad end time; end not after start
    """
    with span("task_service.create_manual_task"):
        data = payload if isinstance(payload, ManualTaskCreate) else ManualTaskCreate.model_validate(payload)
        current_time = now or utc_now()

        creator = normalize_text(creator_id)
        title = normalize_text(data.title)
        description = normalize_text(data.description)
        executor = normalize_text(data.executor_id)
        start_time = parse_datetime(data.start_time) or current_time
        end_time = parse_datetime(data.end_time)

        if not creator:
            raise BadRequestError(ErrorCode.TASK_CREATOR_INVALID, "Creator is required")
        if not title:
            raise BadRequestError(ErrorCode.TASK_TITLE_REQUIRED, "Title is required")
        if not executor:
            raise BadRequestError(ErrorCode.TASK_EXECUTOR_REQUIRED, "Executor is required")
        if end_time is None:
            raise BadRequestError(ErrorCode.TASK_END_TIME_INVALID, "End time is missing or invalid")
        if end_time <= start_time:
            raise BadRequestError(ErrorCode.TASK_TIME_RANGE_INVALID, "End time must be after start time")

        owner = executor
        owner_calendar_id = await _resolve_owner_calendar(owner)

        schedule_id = None
        if owner_calendar_id:
            schedule_id = await _create_external_schedule(
                owner_id=owner,
                creator_id=creator,
                cal_id=owner_calendar_id,
                title=title,
                description=description,
                start_time=start_time,
                end_time=end_time,
            )
        schedule_id = schedule_id or create_manual_schedule_id(current_time)

        task = await repository.insert_task(
            {
                "external_schedule_id": schedule_id,
                "title": title,
                "description": description,
                "creator_id": creator,
                "executor_id": executor,
                "owner_id": owner,
                "owner_calendar_id": owner_calendar_id,
                "start_time": start_time,
                "end_time": end_time,
            }
        )

        await notification_service.publish_task_event(
            TaskEvent(kind=TaskEventKind.CREATED, task=task, actor_id=creator, source=source)
        )

        log_with_task_context(
            logger,
            "info",
            "Manual task created",
            schedule_id,
            task_id=task.id,
            creator_id=creator,
            executor_id=executor,
            owner_calendar_id=owner_calendar_id,
            source=source,
        )
        return task


async def sync_schedule_task(
    schedule: dict[str, Any] | None,
    calendar_context: CalendarTarget | None = None,
) -> SyncTaskResult:
    """Reconcile one external schedule with the local task table.

    New schedules become PENDING tasks (and the executor is notified). Known schedules
    only have their sync-owned fields overwritten; status, redo and reminder fields are
    left alone. Tasks are never deleted.
    """
    with span("task_service.sync_schedule_task"):
        parsed = parse_schedule_detail(schedule)
        if not parsed.schedule_id:
            return SyncTaskResult(skipped=True, reason="missing_schedule_id")

        creator = parsed.organizer
        executor = parsed.executor_id
        if not creator or not executor:
            return SyncTaskResult(skipped=True, reason="missing_creator_or_executor")

        context_user = normalize_text(calendar_context.user_id) if calendar_context else ""
        context_cal = normalize_text(calendar_context.cal_id) if calendar_context else ""
        fields = {
            "title": parsed.title or Constants.DEFAULT_TASK_TITLE,
            "description": parsed.description,
            "creator_id": creator,
            "executor_id": executor,
            "owner_id": context_user or executor,
            "owner_calendar_id": parsed.cal_id or context_cal,
            "start_time": parsed.start_time,
            "end_time": parsed.end_time,
        }

        existing = await repository.get_task_by_schedule_id(parsed.schedule_id)
        if existing is None:
            try:
                task = await repository.insert_task({"external_schedule_id": parsed.schedule_id, **fields})
            except aiosqlite.IntegrityError:
                # Inserted concurrently by another run; reconcile as an update
                logger.info("Task %s already exists, updating instead", parsed.schedule_id)
            else:
                await notification_service.publish_task_event(
                    TaskEvent(kind=TaskEventKind.CREATED, task=task, actor_id=creator, source="calendar_sync")
                )
                return SyncTaskResult(inserted=True, task=task)

        task = await repository.update_sync_fields(parsed.schedule_id, fields)
        return SyncTaskResult(updated=True, task=task)


async def dispatch_task_reminder(
    task: Task,
    *,
    now: datetime | None = None,
    source: str = "sync_cron",
) -> ReminderDispatchResult:
    """Send a due-soon or overdue reminder to the executor when one is due.

    Once a send has been attempted the reminder is stamped, whether or not the
    transport delivered it, so a failing channel is not retried until the cooldown
    passes. ``sent`` reports actual delivery.
    """
    with span("task_service.dispatch_task_reminder"):
        current_time = now or utc_now()
        kind = lifecycle.classify_reminder(task, current_time)
        if kind == ReminderKind.NONE:
            return ReminderDispatchResult(kind=kind, reason="not_due")

        if not lifecycle.should_send_reminder(task, kind, current_time, settings.reminder_cooldown_hours):
            return ReminderDispatchResult(kind=kind, reason="cooldown")

        if not normalize_text(task.executor_id):
            logger.warning("Task %s has no executor, skipping reminder", task.external_schedule_id)
            return ReminderDispatchResult(kind=kind, reason="missing_executor")

        try:
            result = await notification_service.notify_executor(
                task,
                title=message_templates.reminder_title(kind),
                body=message_templates.reminder_body(kind=kind, item_title=task.title),
                actions=[notification_service.COMPLETE_BUTTON],
            )
            delivered = result.success
            error = result.error
        except Exception as e:
            logger.exception("Reminder send failed for task %s", task.external_schedule_id)
            delivered = False
            error = str(e)

        if task.id is not None:
            await repository.stamp_reminder(task.id, kind, current_time)

        log_with_task_context(
            logger,
            "info" if delivered else "error",
            "Reminder sent" if delivered else "Reminder not delivered",
            task.external_schedule_id,
            reminder_kind=kind.value,
            source=source,
            error=error,
        )
        return ReminderDispatchResult(sent=delivered, kind=kind, reason=None if delivered else "send_failed")


def _interaction_field(payload: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = normalize_text(payload.get(key))
        if value:
            return value
    return ""


async def handle_interaction(payload: dict[str, Any] | None) -> TaskOperationResult:
    """Route a card button press to submit or verify.

    Accepts ``user_id``/``task_id``/``action_key`` or the callback's ``UserID``/``TaskId``/
    ``SelectedKey``. Action keys are case-insensitive, with or without ``ACTION_``.
    """
    with span("task_service.handle_interaction"):
        data = payload or {}
        user_id = _interaction_field(data, "user_id", "UserID")
        schedule_id = _interaction_field(data, "task_id", "TaskId")
        action_key = lifecycle.normalize_action_key(_interaction_field(data, "action_key", "SelectedKey"))

        if not user_id or not schedule_id or not action_key:
            raise BadRequestError(ErrorCode.TASK_INTERACTION_INVALID, "Interaction payload is incomplete")

        if not action_key.startswith("ACTION_"):
            action_key = f"ACTION_{action_key}"

        if action_key == TaskAction.COMPLETE:
            return await submit_for_verification(schedule_id=schedule_id, executor_id=user_id, source="wecom_card")
        if action_key == TaskAction.PASS:
            return await verify_task(schedule_id=schedule_id, manager_id=user_id, approve=True, source="wecom_card")
        if action_key == TaskAction.REJECT:
            return await verify_task(schedule_id=schedule_id, manager_id=user_id, approve=False, source="wecom_card")

        logger.info("Unsupported interaction key %s from %s", action_key, user_id)
        raise BadRequestError(ErrorCode.TASK_INTERACTION_UNSUPPORTED, f"Unsupported action: {action_key}")


def _is_in_scope(task: Task, user_id: str) -> bool:
    return user_id in (task.owner_id, task.executor_id, task.creator_id)


async def list_task_views(
    *,
    user_id: str,
    status: TaskStatus | None = None,
    keyword: str | None = None,
    now: datetime | None = None,
) -> list[TaskView]:
    """Tasks visible to the user with their permission and deadline flags."""
    with span("task_service.list_task_views"):
        current_time = now or utc_now()
        verifiers = get_global_verifiers()
        tasks = await repository.list_tasks(user_id=user_id, status=status, keyword=normalize_text(keyword) or None)
        return [
            lifecycle.build_task_view(task, now=current_time, current_user_id=user_id, global_verifiers=verifiers)
            for task in tasks
        ]


async def get_task_view(*, task_id: int, user_id: str, now: datetime | None = None) -> TaskView:
    """One task, visible only to its owner, executor or creator.

    Raises:
        NotFoundError: The task does not exist or is outside the user's scope
    """
    task = await repository.get_task_by_id(task_id)
    if task is None or not _is_in_scope(task, user_id):
        raise NotFoundError(ErrorCode.TASK_NOT_FOUND, "Task not found")
    return lifecycle.build_task_view(
        task,
        now=now or utc_now(),
        current_user_id=user_id,
        global_verifiers=get_global_verifiers(),
    )


async def get_kpi(*, user_id: str | None, now: datetime | None = None) -> KpiSummary:
    return await analytics.get_kpi(user_id=user_id, now=now)


async def update_user_calendar(*, user_id: str, cal_id: str, caller_id: str) -> UserCalendar:
    """Store a user's calendar mapping, overriding the configured map.

    Raises:
        ForbiddenError: Caller is neither the user nor a global verifier
    """
    with span("task_service.update_user_calendar"):
        target = normalize_text(user_id)
        caller = normalize_text(caller_id)
        if not caller or (caller != target and caller not in get_global_verifiers()):
            raise ForbiddenError(
                ErrorCode.CALENDAR_UPDATE_FORBIDDEN, "Only the user or a global verifier can change this mapping"
            )

        mapping = await repository.upsert_user_calendar(target, normalize_text(cal_id))
        logger.info("User calendar mapping updated", extra={"user_id": target, "cal_id": mapping.cal_id, "by": caller})
        return mapping
