"""
Compensating rollback of a task approval.

Undoes, in order, every side effect an approval can have caused:

1. task:          Approved -> InReview
2. invoices:      invoices linked to the task (paid_to_date corrected,
                  final payout marker released when its invoice goes,
                  payout claims naming those invoices released)
3. payments:      payment transactions for those invoices
4. notifications: events tagged with the task
5. wallet:        wallet entries for those invoices

Invoices are found by their source_task_id link. Rows created before that
link existed are found by description text instead and the step is marked
heuristic so an operator can double-check it.

Each step runs in its own savepoint. A failed step is reported and the
remaining steps still run; the report says which ones need attention.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from django.db import DatabaseError, transaction
from django.db.models import F, Q

from apps.audit.services import create_audit_entry
from apps.notifications.models import NotificationEvent
from apps.payments.models import (
    FinalPayoutMarker,
    IdempotencyKey,
    Invoice,
    InvoiceStatus,
    PaymentTransaction,
    WalletEntry,
)
from apps.projects.models import Project, ProjectStatus, Task, TaskStatus
from apps.projects.state_machine import validate_transition
from apps.store import entity_store
from core.exceptions import DomainError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STEPS = (
    "task_rollback",
    "invoice_rollback",
    "payment_rollback",
    "notification_rollback",
    "wallet_rollback",
)


@dataclass
class StepResult:
    success: bool = True
    count: int = 0
    message: str = ""
    heuristic: bool = False

    def as_dict(self):
        data = {"success": self.success, "count": self.count, "message": self.message}
        if self.heuristic:
            data["heuristic"] = True
        return data


@dataclass
class RollbackReport:
    task_id: str
    project_id: Optional[str]
    steps: dict = field(default_factory=dict)
    invoice_numbers: List[str] = field(default_factory=list)

    @property
    def success(self):
        return all(step.success for step in self.steps.values())

    @property
    def errors(self):
        return [
            f"{name}: {step.message}"
            for name, step in self.steps.items()
            if not step.success
        ]

    def as_dict(self):
        data = {
            name: self.steps[name].as_dict() for name in STEPS if name in self.steps
        }
        data.update(
            {
                "taskId": self.task_id,
                "projectId": self.project_id,
                "success": self.success,
                "errors": self.errors,
                "invoiceNumbers": self.invoice_numbers,
            }
        )
        return data


def _run_step(report, name, func):
    try:
        with transaction.atomic():
            report.steps[name] = func()
    except (DomainError, DatabaseError) as exc:
        logger.exception(
            "rollback_step_failed",
            extra={
                "operation": "ROLLBACK_TASK_APPROVAL",
                "entity_id": report.task_id,
                "step": name,
            },
        )
        report.steps[name] = StepResult(success=False, message=str(exc))


def _rollback_task(task):
    if task.status != TaskStatus.APPROVED:
        return StepResult(message=f"Task already {task.status}")
    validate_transition("Task", task.status, TaskStatus.IN_REVIEW)
    entity_store.write(
        task,
        status=TaskStatus.IN_REVIEW,
        completed=False,
        approved_at=None,
        approved_by=None,
    )
    return StepResult(count=1, message="Task reverted to InReview")


def _find_invoices(task_id, project_id):
    invoices = Invoice.objects.filter(source_task_id=task_id)
    if project_id:
        invoices = invoices.filter(project_id=project_id)
    if invoices.exists():
        return list(invoices), False
    if not project_id:
        return [], False
    heuristic = Invoice.objects.filter(
        project_id=project_id,
        source_task_id__isnull=True,
        description__contains=task_id,
    )
    return list(heuristic), True


def _rollback_invoices(report, task_id, project_id, actor_id):
    invoices, heuristic = _find_invoices(task_id, project_id)
    if not invoices:
        return StepResult(message="No invoices linked to task")

    numbers = [inv.invoice_number for inv in invoices]
    paid_by_project = {}
    for inv in invoices:
        if inv.status == InvoiceStatus.PAID:
            paid_by_project.setdefault(inv.project_id, Decimal("0.00"))
            paid_by_project[inv.project_id] += inv.total_amount

    released = list(
        FinalPayoutMarker.objects.filter(triggering_invoice_number__in=numbers)
    )
    Invoice.objects.filter(invoice_number__in=numbers).delete()
    claims, _ = IdempotencyKey.objects.filter(target_object_id__in=numbers).delete()

    for pid, amount in paid_by_project.items():
        Project.objects.filter(project_id=pid).update(
            paid_to_date=F("paid_to_date") - amount
        )

    reopened = {marker.project_id for marker in released}
    FinalPayoutMarker.objects.filter(
        project_id__in=[m.project_id for m in released]
    ).delete()
    for project in Project.objects.filter(
        project_id__in=reopened | {inv.project_id for inv in invoices},
        status=ProjectStatus.COMPLETED,
    ):
        validate_transition("Project", project.status, ProjectStatus.ONGOING)
        entity_store.write(project, status=ProjectStatus.ONGOING)
        create_audit_entry(
            event_type="PROJECT_REOPENED",
            actor_id=actor_id,
            entity_type="Project",
            entity_id=project.project_id,
            previous_state={"status": ProjectStatus.COMPLETED},
            new_state={"status": ProjectStatus.ONGOING},
            task_id=task_id,
        )

    report.invoice_numbers = numbers
    message = f"Removed invoices {', '.join(numbers)}"
    if released:
        message += "; final payout marker released"
    if claims:
        message += f"; {claims} payout claims released"
    return StepResult(count=len(numbers), message=message, heuristic=heuristic)


def _rollback_payments(report, task_id):
    txns = PaymentTransaction.objects.filter(
        Q(source_task_id=task_id) | Q(invoice_number__in=report.invoice_numbers)
    )
    count, _ = txns.delete()
    return StepResult(count=count, message=f"Removed {count} payment transactions")


def _rollback_notifications(task_id):
    count, _ = NotificationEvent.objects.filter(task_id=task_id).delete()
    return StepResult(count=count, message=f"Removed {count} notifications")


def _rollback_wallet(report, task_id):
    entries = WalletEntry.objects.filter(
        Q(source_task_id=task_id) | Q(invoice_number__in=report.invoice_numbers)
    )
    count, _ = entries.delete()
    return StepResult(count=count, message=f"Removed {count} wallet entries")


def rollback(task_id, project_id=None, actor_id=None):
    """
    Undo the side effects of approving task_id.

    Args:
        task_id: the approved task
        project_id: optional, must match the task's project when given
        actor_id: administrator running the rollback

    Returns:
        RollbackReport: per-step success, count and message

    Raises:
        NotFoundError: task does not exist
        ValidationError: project_id does not own the task
    """
    task = Task.objects.select_related("project").filter(task_id=task_id).first()
    if task is None:
        raise NotFoundError(f"Task {task_id} does not exist")
    if project_id and task.project_id != project_id:
        raise ValidationError(
            f"Task {task_id} does not belong to project {project_id}",
            {"task_id": task_id, "project_id": project_id},
        )
    project_id = task.project_id
    report = RollbackReport(task_id=task_id, project_id=project_id)
    previous_task = {"status": task.status, "completed": task.completed}

    logger.info(
        "rollback_started",
        extra={
            "operation": "ROLLBACK_TASK_APPROVAL",
            "entity_id": project_id,
            "task_id": task_id,
        },
    )

    _run_step(report, "task_rollback", lambda: _rollback_task(task))
    _run_step(
        report,
        "invoice_rollback",
        lambda: _rollback_invoices(report, task_id, project_id, actor_id),
    )
    _run_step(report, "payment_rollback", lambda: _rollback_payments(report, task_id))
    _run_step(report, "notification_rollback", lambda: _rollback_notifications(task_id))
    _run_step(report, "wallet_rollback", lambda: _rollback_wallet(report, task_id))

    create_audit_entry(
        event_type="TASK_APPROVAL_ROLLED_BACK",
        actor_id=actor_id,
        entity_type="Task",
        entity_id=task_id,
        previous_state=previous_task,
        new_state=report.as_dict(),
        task_id=task_id,
    )
    logger.info(
        "rollback_finished",
        extra={
            "operation": "ROLLBACK_TASK_APPROVAL",
            "entity_id": project_id,
            "task_id": task_id,
            "success": report.success,
        },
    )
    return report
