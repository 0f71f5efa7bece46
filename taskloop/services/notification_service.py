"""Notification service for sending task cards to executors and verifiers."""

import logging

from taskloop.core import message_templates
from taskloop.core.config import settings
from taskloop.core.logging import span
from taskloop.core.value_parser import normalize_text
from taskloop.domain.task import Task, TaskAction
from taskloop.interface import wecom_client
from taskloop.models.service_models import NotificationResult, TaskEvent, TaskEventKind
from taskloop.modules.tasks.lifecycle import parse_global_verifiers


logger = logging.getLogger(__name__)

COMPLETE_BUTTON = {"id": TaskAction.COMPLETE.value, "text": "Done"}
RESUBMIT_BUTTON = {"id": TaskAction.COMPLETE.value, "text": "Submit again"}
PASS_BUTTON = {"id": TaskAction.PASS.value, "text": "Approve"}
REJECT_BUTTON = {"id": TaskAction.REJECT.value, "text": "Reject for rework"}


def build_verifier_recipients(task: Task) -> list[str]:
    """The task creator followed by the global verifiers, without duplicates."""
    recipients = []
    for user_id in [task.creator_id, *parse_global_verifiers(settings.global_verifiers)]:
        if user_id and user_id not in recipients:
            recipients.append(user_id)
    return recipients


async def _send_card(
    *,
    recipients: list[str],
    task: Task,
    title: str,
    body: str,
    details: list[dict[str, str]],
    actions: list[dict[str, str]],
) -> NotificationResult:
    touser = "|".join(recipients)
    try:
        await wecom_client.send_template_card(
            touser=touser,
            task_id=task.external_schedule_id,
            title=title,
            description=body,
            sub_title=task.title,
            details=details,
            buttons=actions,
        )
    except wecom_client.CalendarProviderError as e:
        logger.error("Failed to send card for task %s to %s: %s", task.external_schedule_id, touser, e)
        return NotificationResult(success=False, recipient=touser, error=str(e))

    return NotificationResult(success=True, recipient=touser)


async def notify_executor(
    task: Task,
    *,
    title: str,
    body: str,
    actions: list[dict[str, str]] | None = None,
) -> NotificationResult:
    """Send an action card to the task's executor. Skipped when the task has no executor."""
    with span("notification_service.notify_executor"):
        executor = normalize_text(task.executor_id)
        if not executor:
            logger.warning("Task %s has no executor, not notifying", task.external_schedule_id)
            return NotificationResult(skipped=True)

        end_time = task.end_time.isoformat() if task.end_time else ""
        return await _send_card(
            recipients=[executor],
            task=task,
            title=title,
            body=body,
            details=[{"keyname": "Deadline", "value": end_time}],
            actions=actions or [],
        )


async def notify_verifiers(task: Task) -> NotificationResult:
    """Ask the creator and global verifiers to approve or reject a submitted task."""
    with span("notification_service.notify_verifiers"):
        recipients = build_verifier_recipients(task)
        if not recipients:
            logger.warning("Task %s has no verifiers, not notifying", task.external_schedule_id)
            return NotificationResult(skipped=True)

        return await _send_card(
            recipients=recipients,
            task=task,
            title=message_templates.VERIFY_REQUEST_TITLE,
            body=message_templates.verification_request(executor_id=task.executor_id),
            details=[{"keyname": "Status", "value": "Waiting for verification"}],
            actions=[PASS_BUTTON, REJECT_BUTTON],
        )


async def notify_result(task: Task, *, approved: bool, reason: str | None = None) -> NotificationResult:
    """Tell the executor whether their submission was approved; a rejection offers a resubmit button."""
    return await notify_executor(
        task,
        title=message_templates.APPROVED_TITLE if approved else message_templates.REJECTED_TITLE,
        body=message_templates.verification_result(item_title=task.title, approved=approved, reason=reason),
        actions=[] if approved else [RESUBMIT_BUTTON],
    )


async def notify_new_task(task: Task) -> NotificationResult:
    return await notify_executor(
        task,
        title=message_templates.NEW_TASK_TITLE,
        body=message_templates.new_task(item_title=task.title),
        actions=[COMPLETE_BUTTON],
    )


async def publish_task_event(event: TaskEvent) -> NotificationResult | None:
    """Deliver the notification for a committed state change.

    Best effort: failures are logged and never reach the caller, since the state
    change itself has already been written.
    """
    try:
        match event.kind:
            case TaskEventKind.CREATED:
                result = await notify_new_task(event.task)
            case TaskEventKind.SUBMITTED:
                result = await notify_verifiers(event.task)
            case TaskEventKind.APPROVED:
                result = await notify_result(event.task, approved=True)
            case TaskEventKind.REJECTED:
                result = await notify_result(event.task, approved=False, reason=event.reason)
    except Exception:
        logger.exception(
            "Failed to publish %s event for task %s",
            event.kind,
            event.task.external_schedule_id,
            extra={"source": event.source, "actor_id": event.actor_id},
        )
        return None

    if not result.success and not result.skipped:
        logger.warning(
            "Notification for %s event on task %s was not delivered: %s",
            event.kind,
            event.task.external_schedule_id,
            result.error,
        )
    return result
