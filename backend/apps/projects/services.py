"""
Project and task workflow services.

Approval is the entry point of the payout pipeline:

    approve_task -> invoice computation -> persist -> readiness gate
                 -> executor (completion projects only)

The approval itself commits before any payout is attempted. A payout that
fails leaves the task Approved; replaying approve_task re-consults the gate
and retries the payout safely because the executor is marker-guarded.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import DatabaseError, transaction
from django.utils import timezone

from apps.audit.services import create_audit_entry
from apps.notifications import services as notifications
from apps.payments import calculation
from apps.projects import allocator
from apps.projects.models import (
    InvoicingMethod,
    Project,
    ProjectOrigin,
    ProjectStatus,
    Task,
    TaskStatus,
)
from apps.projects.state_machine import validate_transition
from apps.store import entity_store
from apps.store.entity_store import AlreadyExists
from apps.users import services as users
from apps.users.models import Role
from core.exceptions import (
    AlreadyProcessedError,
    CollisionExhaustedError,
    DomainError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

APPROVED = "approved"
ALREADY_APPROVED = "already_approved"


@dataclass
class ApprovalResult:
    task_id: str
    project_id: str
    status: str
    invoice_number: Optional[str] = None
    payout_invoice_number: Optional[str] = None
    payout_reason: Optional[str] = None

    def as_dict(self):
        return {
            "taskId": self.task_id,
            "projectId": self.project_id,
            "status": self.status,
            "invoiceNumber": self.invoice_number,
            "payoutInvoiceNumber": self.payout_invoice_number,
            "payoutReason": self.payout_reason,
        }


def task_snapshot(task):
    return {
        "status": task.status,
        "completed": task.completed,
        "rejectionCount": task.rejection_count,
    }


def _lock_task(task_id):
    task = (
        Task.objects.select_for_update()
        .select_related("project")
        .filter(task_id=task_id)
        .first()
    )
    if task is None:
        raise NotFoundError(f"Task {task_id} does not exist")
    return task


def _lock_task_project(task_id):
    project_id = (
        Task.objects.filter(task_id=task_id)
        .values_list("project_id", flat=True)
        .first()
    )
    if project_id is None:
        raise NotFoundError(f"Task {task_id} does not exist")
    return Project.objects.select_for_update().get(project_id=project_id)


def allocate_project_id(mode, org_letter, origin=ProjectOrigin.REQUEST, actor_id=None):
    """Thin service wrapper so views and scripts share one entry point."""
    return allocator.allocate(mode, org_letter, origin=origin, actor_id=actor_id)


def create_project(
    *,
    org_letter,
    title,
    invoicing_method,
    total_budget,
    freelancer_id,
    commissioner_id,
    task_titles,
    milestone_count=None,
    mode="request",
    origin=ProjectOrigin.REQUEST,
    actor_id=None,
):
    """
    Allocate an identifier and create a project with its tasks.

    Tasks are ordered as given; for milestone projects task N bills
    milestone N, so milestone_count defaults to the number of tasks.
    """
    if invoicing_method not in InvoicingMethod.values:
        raise ValidationError(
            f"Unknown invoicing method: {invoicing_method}",
            {"invoicing_method": invoicing_method},
        )
    if origin not in ProjectOrigin.values:
        raise ValidationError(f"Unknown origin: {origin}", {"origin": origin})
    budget = calculation.to_amount(total_budget, "total_budget")
    if budget < 0:
        raise ValidationError(
            "Project budget cannot be negative", {"total_budget": str(budget)}
        )
    titles = [t for t in (task_titles or []) if t]
    if not titles:
        raise ValidationError("A project needs at least one task")
    if invoicing_method == InvoicingMethod.MILESTONE:
        milestone_count = milestone_count or len(titles)
        if milestone_count < len(titles):
            raise ValidationError(
                "Milestone count cannot be lower than the number of tasks",
                {"milestone_count": milestone_count, "tasks": len(titles)},
            )
    else:
        milestone_count = None

    freelancer = users.require_role(freelancer_id, Role.FREELANCER)
    commissioner = users.require_role(commissioner_id, Role.COMMISSIONER)

    result = allocator.allocate(mode, org_letter, origin=origin, actor_id=actor_id)

    with transaction.atomic():
        try:
            project = entity_store.create_only(
                Project,
                project_id=result.id,
                title=title,
                invoicing_method=invoicing_method,
                total_budget=calculation.round2(budget),
                paid_to_date=Decimal("0.00"),
                milestone_count=milestone_count,
                origin=origin,
                freelancer=freelancer,
                commissioner=commissioner,
            )
        except AlreadyExists:
            raise CollisionExhaustedError(
                f"Project {result.id} was created concurrently",
                {"project_id": result.id},
            )
        for order, task_title in enumerate(titles, start=1):
            Task.objects.create(project=project, title=task_title, order=order)

        create_audit_entry(
            event_type="PROJECT_CREATED",
            actor_id=actor_id,
            entity_type="Project",
            entity_id=project.project_id,
            new_state={
                "status": project.status,
                "invoicingMethod": project.invoicing_method,
                "totalBudget": str(project.total_budget),
                "tasks": len(titles),
                "attempts": result.attempts,
            },
        )

    logger.info(
        "project_created",
        extra={"operation": "CREATE_PROJECT", "entity_id": project.project_id},
    )
    return project


def submit_task(task_id, actor_id):
    """Freelancer hands a task in for review (Ongoing/Rejected -> InReview)."""
    with transaction.atomic():
        task = _lock_task(task_id)
        project = task.project
        if str(project.freelancer_id) != str(actor_id):
            raise PermissionDeniedError(
                "Only the project's freelancer can submit its tasks",
                {"task_id": task_id},
            )
        if task.status == TaskStatus.IN_REVIEW:
            return task

        previous = task_snapshot(task)
        validate_transition("Task", task.status, TaskStatus.IN_REVIEW)
        entity_store.write(
            task, status=TaskStatus.IN_REVIEW, submitted_at=timezone.now()
        )

        create_audit_entry(
            event_type="TASK_SUBMITTED",
            actor_id=actor_id,
            entity_type="Task",
            entity_id=task.task_id,
            previous_state=previous,
            new_state=task_snapshot(task),
            task_id=task.task_id,
        )
        notifications.publish(
            notifications.TASK_SUBMITTED,
            actor_id=actor_id,
            target_id=project.commissioner_id,
            project_id=project.project_id,
            task_id=task.task_id,
            context={"taskTitle": task.title},
        )

    logger.info(
        "task_submitted",
        extra={"operation": "SUBMIT_TASK", "entity_id": task_id, "task_id": task_id},
    )
    return task


def reject_task(task_id, actor_id, comment=""):
    """
    Commissioner sends a task back. InReview -> Rejected -> Ongoing, with
    the rejection counted and the feedback kept on the task.
    """
    with transaction.atomic():
        task = _lock_task(task_id)
        project = task.project
        if str(project.commissioner_id) != str(actor_id):
            raise PermissionDeniedError(
                "Only the project's commissioner can review its tasks",
                {"task_id": task_id},
            )

        previous = task_snapshot(task)
        validate_transition("Task", task.status, TaskStatus.REJECTED)
        entity_store.write(
            task,
            status=TaskStatus.REJECTED,
            rejection_count=task.rejection_count + 1,
            last_feedback=comment or "",
        )
        create_audit_entry(
            event_type="TASK_REJECTED",
            actor_id=actor_id,
            entity_type="Task",
            entity_id=task.task_id,
            previous_state=previous,
            new_state=task_snapshot(task),
            task_id=task.task_id,
        )

        rejected = task_snapshot(task)
        validate_transition("Task", task.status, TaskStatus.ONGOING)
        entity_store.write(task, status=TaskStatus.ONGOING, completed=False)
        create_audit_entry(
            event_type="TASK_REOPENED",
            actor_id=actor_id,
            entity_type="Task",
            entity_id=task.task_id,
            previous_state=rejected,
            new_state=task_snapshot(task),
            task_id=task.task_id,
        )
        notifications.publish(
            notifications.TASK_REJECTED,
            actor_id=actor_id,
            target_id=project.freelancer_id,
            project_id=project.project_id,
            task_id=task.task_id,
            context={"taskTitle": task.title, "feedback": comment or ""},
        )

    logger.info(
        "task_rejected",
        extra={"operation": "REJECT_TASK", "entity_id": task_id, "task_id": task_id},
    )
    return task


def approve_task(task_id, actor_id):
    """
    Approve a task under review and run the downstream billing.

    Args:
        task_id: Task identifier
        actor_id: User identifier (must be the project's commissioner)

    Returns:
        ApprovalResult: status 'approved', or 'already_approved' on replay

    Raises:
        NotFoundError: task does not exist
        PermissionDeniedError: actor is not this project's commissioner, or
            is its freelancer
        InvalidStateError: task is not InReview

    Failures are written to the audit log as TASK_APPROVAL_FAILED once the
    approval transaction has rolled back.
    """
    try:
        task, project, result, replay = _apply_approval(task_id, actor_id)
    except (DomainError, DatabaseError) as exc:
        logger.warning(
            "task_approval_failed",
            extra={
                "operation": "APPROVE_TASK",
                "entity_id": task_id,
                "task_id": task_id,
                "error": getattr(exc, "code", type(exc).__name__),
            },
        )
        create_audit_entry(
            event_type="TASK_APPROVAL_FAILED",
            actor_id=actor_id,
            entity_type="Task",
            entity_id=task_id,
            new_state={
                "error": getattr(exc, "code", type(exc).__name__),
                "message": str(exc),
            },
            task_id=task_id,
        )
        raise

    logger.info(
        "task_approval_replayed" if replay else "task_approved",
        extra={"operation": "APPROVE_TASK", "entity_id": task_id, "task_id": task_id},
    )

    if project.invoicing_method == InvoicingMethod.COMPLETION:
        approve_completion_task(project.project_id, task.task_id, actor_id, result)

    return result


def _apply_approval(task_id, actor_id):
    from apps.payments.services import emit_milestone_invoice

    with transaction.atomic():
        # Project row before the task row, as in the executor.
        _lock_task_project(task_id)
        task = _lock_task(task_id)
        project = task.project
        if str(project.freelancer_id) == str(actor_id):
            raise PermissionDeniedError(
                "Freelancers cannot approve their own work", {"task_id": task_id}
            )
        if str(project.commissioner_id) != str(actor_id):
            raise PermissionDeniedError(
                "Only the project's commissioner can approve its tasks",
                {"task_id": task_id},
            )

        if task.status == TaskStatus.APPROVED:
            replay = True
        else:
            replay = False
            previous = task_snapshot(task)
            validate_transition("Task", task.status, TaskStatus.APPROVED)
            entity_store.write(
                task,
                status=TaskStatus.APPROVED,
                completed=True,
                approved_at=timezone.now(),
                approved_by_id=actor_id,
            )
            create_audit_entry(
                event_type="TASK_APPROVED",
                actor_id=actor_id,
                entity_type="Task",
                entity_id=task.task_id,
                previous_state=previous,
                new_state=task_snapshot(task),
                task_id=task.task_id,
            )
            notifications.publish(
                notifications.TASK_APPROVED,
                actor_id=actor_id,
                target_id=project.freelancer_id,
                project_id=project.project_id,
                task_id=task.task_id,
                context={"taskTitle": task.title},
            )

        result = ApprovalResult(
            task_id=task.task_id,
            project_id=project.project_id,
            status=ALREADY_APPROVED if replay else APPROVED,
        )

        if project.invoicing_method == InvoicingMethod.MILESTONE:
            if replay:
                existing = project.invoices.filter(source_task_id=task.task_id).first()
                result.invoice_number = existing.invoice_number if existing else None
            else:
                invoice = emit_milestone_invoice(project, task, actor_id)
                result.invoice_number = invoice.invoice_number
                _complete_milestone_project(project, actor_id, task.task_id)

    return task, project, result, replay


def _complete_milestone_project(project, actor_id, task_id):
    if project.tasks.exclude(status=TaskStatus.APPROVED).exists():
        return
    if project.status == ProjectStatus.COMPLETED:
        return
    previous_status = project.status
    validate_transition("Project", previous_status, ProjectStatus.COMPLETED)
    entity_store.write(project, status=ProjectStatus.COMPLETED)
    create_audit_entry(
        event_type="PROJECT_COMPLETED",
        actor_id=actor_id,
        entity_type="Project",
        entity_id=project.project_id,
        previous_state={"status": previous_status},
        new_state={"status": ProjectStatus.COMPLETED},
        task_id=task_id,
    )
    notifications.publish(
        notifications.PROJECT_COMPLETED,
        actor_id=actor_id,
        target_id=project.freelancer_id,
        project_id=project.project_id,
        task_id=task_id,
    )


def approve_completion_task(project_id, task_id, actor_id, result):
    """
    Completion-billed follow-up of an approval: consult the readiness gate
    and, when every task is approved, hand over to the executor.

    Never issues milestone invoices.
    """
    from apps.payments import executor, readiness

    gate = readiness.check(project_id)
    create_audit_entry(
        event_type="PAYOUT_READINESS_CHECKED",
        actor_id=actor_id,
        entity_type="Project",
        entity_id=project_id,
        new_state=gate.as_dict(),
        task_id=task_id,
    )
    if not gate.ready:
        result.payout_reason = gate.reason
        return result

    create_audit_entry(
        event_type="FINAL_PAYOUT_REQUESTED",
        actor_id=actor_id,
        entity_type="Project",
        entity_id=project_id,
        new_state={"trigger": executor.TRIGGER_TASK_APPROVAL},
        task_id=task_id,
    )
    try:
        invoice = executor.execute_final(
            project_id,
            trigger=executor.TRIGGER_TASK_APPROVAL,
            actor_id=actor_id,
            task_id=task_id,
        )
    except AlreadyProcessedError as exc:
        result.payout_reason = readiness.REASON_ALREADY_PAID
        result.payout_invoice_number = exc.details.get("invoiceNumber")
        return result
    except InvalidStateError as exc:
        # Gate went stale between check and execution.
        result.payout_reason = exc.details.get("reason", exc.code)
        return result

    result.payout_invoice_number = invoice.invoice_number
    result.payout_reason = readiness.REASON_READY
    return result
