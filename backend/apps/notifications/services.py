"""
Notification publishing.

publish() never raises: a failed notification must not undo an approval or
a payout. Each event is written in its own savepoint so a failure leaves
the surrounding transaction usable.
"""

import logging

from django.db import DatabaseError, transaction

from apps.notifications.models import NotificationEvent

logger = logging.getLogger(__name__)

TASK_SUBMITTED = "task.submitted"
TASK_APPROVED = "task.approved"
TASK_REJECTED = "task.rejected"
INVOICE_SENT = "invoice.sent"
INVOICE_PAID = "invoice.paid"
PROJECT_COMPLETED = "completion.project_completed"
FINAL_PAYMENT = "completion.final_payment"
RATING_PROMPT = "completion.rating_prompt"
MANUAL_PAYMENT = "completion.manual_payment"


def publish(
    event_type,
    actor_id,
    target_id,
    project_id,
    task_id=None,
    invoice_number=None,
    context=None,
):
    """
    Record an outbound notification event.

    Returns:
        NotificationEvent | None: None when publication failed (logged).
    """
    try:
        with transaction.atomic():
            event = NotificationEvent.objects.create(
                event_type=event_type,
                actor_id=actor_id,
                target_id=target_id,
                project_id=str(project_id),
                task_id=str(task_id) if task_id is not None else None,
                invoice_number=invoice_number,
                context=context or {},
            )
    except DatabaseError:
        logger.exception(
            "notification_publish_failed",
            extra={
                "operation": "PUBLISH_NOTIFICATION",
                "entity_id": str(project_id),
                "event_type": event_type,
            },
        )
        return None

    logger.info(
        "notification_published",
        extra={
            "operation": "PUBLISH_NOTIFICATION",
            "entity_id": str(project_id),
            "event_type": event_type,
        },
    )
    return event
