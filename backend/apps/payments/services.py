"""
Invoice issuance: milestone invoices on approval, the upfront invoice of a
completion project, and the shared numbering/creation helper.

Paying invoices lives in apps.payments.executor.
"""

import logging

from django.conf import settings
from django.db import transaction

from apps.audit.services import create_audit_entry
from apps.notifications import services as notifications
from apps.payments import calculation
from apps.payments.models import IdempotencyKey, Invoice, InvoiceKind, InvoiceStatus
from apps.projects.allocator import allocate_invoice_number
from apps.projects.models import InvoicingMethod, Project
from apps.store import entity_store
from apps.store.entity_store import AlreadyExists
from core.exceptions import (
    AlreadyProcessedError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
)

logger = logging.getLogger(__name__)

INVOICE_NUMBER_ATTEMPTS = 3
ISSUE_UPFRONT_INVOICE = "ISSUE_UPFRONT_INVOICE"


def invoice_snapshot(invoice):
    return {
        "invoiceNumber": invoice.invoice_number,
        "kind": invoice.kind,
        "status": invoice.status,
        "totalAmount": str(invoice.total_amount),
        "milestoneNumber": invoice.milestone_number,
        "sourceTaskId": invoice.source_task_id,
    }


def create_invoice(
    project,
    computed,
    *,
    status=InvoiceStatus.SENT,
    source_task_id=None,
    description=None,
    invoice_number=None,
    paid_at=None,
    actor_id=None,
):
    """
    Persist a computed invoice under a freshly allocated number.

    A number taken by a concurrent writer is skipped and the next one tried.
    """
    attempts = 1 if invoice_number else INVOICE_NUMBER_ATTEMPTS
    for _ in range(attempts):
        number = invoice_number or allocate_invoice_number(project.project_id)
        try:
            invoice = entity_store.create_only(
                Invoice,
                invoice_number=number,
                project=project,
                kind=computed.kind,
                milestone_number=computed.milestone_number,
                total_amount=computed.amount,
                status=status,
                paid_at=paid_at,
                source_task_id=source_task_id,
                description=description or computed.description,
                freelancer_id=project.freelancer_id,
                commissioner_id=project.commissioner_id,
            )
            break
        except AlreadyExists:
            logger.warning(
                "invoice_number_collision",
                extra={"operation": "CREATE_INVOICE", "entity_id": number},
            )
    else:
        raise StorageError(
            "Could not allocate an invoice number",
            {"project_id": project.project_id},
        )

    create_audit_entry(
        event_type="INVOICE_CREATED",
        actor_id=actor_id,
        entity_type="Invoice",
        entity_id=invoice.invoice_number,
        previous_state=None,
        new_state=invoice_snapshot(invoice),
        task_id=source_task_id,
    )
    logger.info(
        "invoice_created",
        extra={
            "operation": "CREATE_INVOICE",
            "entity_id": invoice.invoice_number,
            "task_id": source_task_id,
        },
    )
    return invoice


def emit_milestone_invoice(project, task, actor_id):
    """
    Issue the milestone invoice for an approved task (milestone = task order).

    Raises:
        InvalidStateError: completion projects never get milestone invoices;
            they are paid through the readiness gate and the executor.
    """
    if project.invoicing_method != InvoicingMethod.MILESTONE:
        raise InvalidStateError(
            "Milestone invoices cannot be generated for completion projects",
            {
                "project_id": project.project_id,
                "invoicing_method": project.invoicing_method,
            },
        )

    existing = Invoice.objects.filter(
        project=project, kind=InvoiceKind.MILESTONE, source_task_id=task.task_id
    ).first()
    if existing:
        return existing

    computed = calculation.milestone_invoice(project, task.order)
    invoice = create_invoice(
        project,
        computed,
        source_task_id=task.task_id,
        description=f"{computed.description} (task {task.task_id}: {task.title})",
        actor_id=actor_id,
    )
    notifications.publish(
        notifications.INVOICE_SENT,
        actor_id=project.freelancer_id,
        target_id=project.commissioner_id,
        project_id=project.project_id,
        task_id=task.task_id,
        invoice_number=invoice.invoice_number,
        context={"amount": str(invoice.total_amount)},
    )
    return invoice


def issue_upfront_invoice(project_id, actor_id):
    """
    Issue the upfront commitment invoice of a completion project, once.

    Returns:
        Invoice: the sent upfront invoice

    Raises:
        NotFoundError, PermissionDeniedError, InvalidStateError
        AlreadyProcessedError: the project already has its upfront invoice
    """
    with transaction.atomic():
        project = (
            Project.objects.select_for_update().filter(project_id=project_id).first()
        )
        if project is None:
            raise NotFoundError(f"Project {project_id} does not exist")
        if str(project.commissioner_id) != str(actor_id):
            raise PermissionDeniedError(
                "Only the project's commissioner can issue its upfront invoice"
            )
        if project.invoicing_method != InvoicingMethod.COMPLETION:
            raise InvalidStateError(
                "Upfront invoices exist only for completion projects",
                {"project_id": project_id},
            )

        try:
            claim = entity_store.create_only(
                IdempotencyKey, key=project_id, operation=ISSUE_UPFRONT_INVOICE
            )
        except AlreadyExists:
            existing = IdempotencyKey.objects.get(
                key=project_id, operation=ISSUE_UPFRONT_INVOICE
            )
            raise AlreadyProcessedError(
                "Upfront invoice already issued",
                {"projectId": project_id, "invoiceNumber": existing.target_object_id},
            )

        percent = getattr(
            settings, "UPFRONT_PERCENT", calculation.DEFAULT_UPFRONT_PERCENT
        )
        computed = calculation.upfront_invoice(project, percent)
        invoice = create_invoice(project, computed, actor_id=actor_id)
        entity_store.write(claim, target_object_id=invoice.invoice_number)

    notifications.publish(
        notifications.INVOICE_SENT,
        actor_id=actor_id,
        target_id=project.commissioner_id,
        project_id=project_id,
        invoice_number=invoice.invoice_number,
        context={"amount": str(invoice.total_amount), "kind": invoice.kind},
    )
    return invoice
