"""
Audit service - creates immutable audit log entries.

All audit entries are append-only. No updates or deletions.
"""

from apps.audit.models import AuditLog
from core.middleware import get_current_request_id


def create_audit_entry(
    event_type,
    actor_id,
    entity_type,
    entity_id,
    previous_state=None,
    new_state=None,
    task_id=None,
):
    """
    Create an audit log entry.

    Args:
        event_type: Event classification (e.g. 'TASK_APPROVED')
        actor_id: User identifier (None for system events)
        entity_type: Type of affected entity (e.g. 'Project', 'Invoice')
        entity_id: Identifier of affected entity
        previous_state: Serialized state before change (optional)
        new_state: Serialized state after change (optional)
        task_id: Approval that caused the event, used by rollback forensics

    Returns:
        AuditLog: Created audit log entry
    """
    from apps.users.models import User

    actor = None
    if actor_id:
        actor = User.objects.filter(id=actor_id).first()

    return AuditLog.objects.create(
        event_type=event_type,
        actor=actor,
        entity_type=entity_type,
        entity_id=str(entity_id),
        task_id=str(task_id) if task_id is not None else None,
        request_id=get_current_request_id(),
        previous_state=previous_state,
        new_state=new_state,
    )


def entries_for_task(task_id):
    """Every audit entry causally linked to one approval, oldest first."""
    return AuditLog.objects.filter(task_id=str(task_id)).order_by("occurred_at")
