"""
Payment executor: moves money for invoices.

Every payment path claims a create-only marker before its first side
effect, inside one database transaction:

- final payout: FinalPayoutMarker keyed by project
- manual partial payout: IdempotencyKey(trigger token, MANUAL_PARTIAL_PAYOUT)
- invoice payment: IdempotencyKey(invoice number, PAY_INVOICE)

A second caller loses the claim and gets AlreadyProcessedError, even when
the readiness gate it consulted said "ready". A failure after the claim
rolls the claim back with everything else, so the trigger can be retried.
"""

import logging

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from apps.audit.services import create_audit_entry
from apps.notifications import services as notifications
from apps.payments import calculation, readiness
from apps.payments.models import (
    FinalPayoutMarker,
    IdempotencyKey,
    Invoice,
    InvoiceKind,
    InvoiceStatus,
    PaymentTransaction,
    WalletDirection,
    WalletEntry,
)
from apps.payments.services import create_invoice, invoice_snapshot
from apps.projects.allocator import allocate_invoice_number
from apps.projects.models import InvoicingMethod, Project, ProjectStatus
from apps.projects.state_machine import validate_transition
from apps.store import entity_store
from apps.store.entity_store import AlreadyExists
from core.exceptions import (
    AlreadyProcessedError,
    DomainError,
    InsufficientBudgetError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MANUAL_PARTIAL_PAYOUT = "MANUAL_PARTIAL_PAYOUT"
PAY_INVOICE = "PAY_INVOICE"

TRIGGER_TASK_APPROVAL = "taskApproval"
TRIGGER_MANUAL = "manual"
TRIGGER_INVOICE_PAYMENT = "invoicePayment"


def _lock_project(project_id):
    project = Project.objects.select_for_update().filter(project_id=project_id).first()
    if project is None:
        raise NotFoundError(f"Project {project_id} does not exist")
    return project


def _require_commissioner(project, actor_id, action):
    if str(project.commissioner_id) != str(actor_id):
        raise PermissionDeniedError(
            f"Only the project's commissioner can {action}",
            {"project_id": project.project_id},
        )


def settle_invoice(invoice, project, trigger, actor_id=None):
    """
    Record the money movement for an invoice: invoice paid, wallet credit,
    payment transaction, paid_to_date. Caller holds the project lock and
    an open transaction.
    """
    previous = invoice_snapshot(invoice)
    if invoice.status != InvoiceStatus.PAID:
        entity_store.write(invoice, status=InvoiceStatus.PAID, paid_at=timezone.now())

    try:
        entity_store.create_only(
            PaymentTransaction,
            transaction_id=f"TXN-{invoice.invoice_number}",
            invoice_number=invoice.invoice_number,
            project_id=project.project_id,
            source_task_id=invoice.source_task_id,
            amount=invoice.total_amount,
            trigger=trigger,
        )
    except AlreadyExists:
        raise AlreadyProcessedError(
            f"Invoice {invoice.invoice_number} already paid",
            {"invoiceNumber": invoice.invoice_number},
        )

    if invoice.total_amount > 0:
        WalletEntry.objects.create(
            user_id=invoice.freelancer_id,
            amount=invoice.total_amount,
            direction=WalletDirection.CREDIT,
            invoice_number=invoice.invoice_number,
            project_id=project.project_id,
            source_task_id=invoice.source_task_id,
        )

    Project.objects.filter(project_id=project.project_id).update(
        paid_to_date=F("paid_to_date") + invoice.total_amount
    )
    project.refresh_from_db(fields=["paid_to_date"])

    create_audit_entry(
        event_type="INVOICE_PAID",
        actor_id=actor_id,
        entity_type="Invoice",
        entity_id=invoice.invoice_number,
        previous_state=previous,
        new_state=invoice_snapshot(invoice),
        task_id=invoice.source_task_id,
    )
    notifications.publish(
        notifications.INVOICE_PAID,
        actor_id=actor_id,
        target_id=invoice.freelancer_id,
        project_id=project.project_id,
        task_id=invoice.source_task_id,
        invoice_number=invoice.invoice_number,
        context={"amount": str(invoice.total_amount), "trigger": trigger},
    )
    logger.info(
        "invoice_paid",
        extra={
            "operation": "SETTLE_INVOICE",
            "entity_id": invoice.invoice_number,
            "task_id": invoice.source_task_id,
        },
    )
    return invoice


def _audit_failure(event_type, project_id, actor_id, exc, task_id=None):
    create_audit_entry(
        event_type=event_type,
        actor_id=actor_id,
        entity_type="Project",
        entity_id=project_id,
        new_state={
            "error": getattr(exc, "code", type(exc).__name__),
            "message": str(exc),
        },
        task_id=task_id,
    )


def execute_final(
    project_id, trigger=TRIGGER_TASK_APPROVAL, actor_id=None, task_id=None
):
    """
    Pay the remaining budget of a completion project, at most once.

    Returns:
        Invoice: the paid completionPayout invoice

    Raises:
        InvalidStateError: the readiness gate says not ready
        AlreadyProcessedError: the final payout marker is already claimed
    """
    gate = readiness.check(project_id)
    if not gate.ready:
        marker = FinalPayoutMarker.objects.filter(project_id=project_id).first()
        if marker is not None:
            raise AlreadyProcessedError(
                "Final payout already processed",
                {
                    "projectId": project_id,
                    "invoiceNumber": marker.triggering_invoice_number,
                },
            )
        if gate.reason == readiness.REASON_PROJECT_NOT_FOUND:
            exc = NotFoundError(f"Project {project_id} does not exist")
        else:
            exc = InvalidStateError(
                f"Project {project_id} is not ready for final payout: {gate.reason}",
                gate.as_dict(),
            )
        logger.warning(
            "final_payout_not_ready",
            extra={
                "operation": "EXECUTE_FINAL_PAYOUT",
                "entity_id": project_id,
                "reason": gate.reason,
            },
        )
        _audit_failure("FINAL_PAYOUT_FAILED", project_id, actor_id, exc, task_id)
        raise exc

    try:
        with transaction.atomic():
            project = _lock_project(project_id)
            computed = calculation.completion_invoice(project)
            invoice_number = allocate_invoice_number(project_id)

            try:
                entity_store.create_only(
                    FinalPayoutMarker,
                    project_id=project_id,
                    triggering_invoice_number=invoice_number,
                    trigger=trigger,
                )
            except AlreadyExists:
                marker = FinalPayoutMarker.objects.get(project_id=project_id)
                raise AlreadyProcessedError(
                    "Final payout already processed",
                    {
                        "projectId": project_id,
                        "invoiceNumber": marker.triggering_invoice_number,
                    },
                )

            invoice = create_invoice(
                project,
                computed,
                status=InvoiceStatus.PAID,
                invoice_number=invoice_number,
                source_task_id=task_id,
                paid_at=timezone.now(),
                actor_id=actor_id,
            )
            settle_invoice(invoice, project, trigger, actor_id=actor_id)

            if project.status != ProjectStatus.COMPLETED:
                previous_status = project.status
                validate_transition("Project", previous_status, ProjectStatus.COMPLETED)
                entity_store.write(project, status=ProjectStatus.COMPLETED)
                create_audit_entry(
                    event_type="PROJECT_COMPLETED",
                    actor_id=actor_id,
                    entity_type="Project",
                    entity_id=project_id,
                    previous_state={"status": previous_status},
                    new_state={"status": ProjectStatus.COMPLETED},
                    task_id=task_id,
                )

            for event_type in (
                notifications.PROJECT_COMPLETED,
                notifications.FINAL_PAYMENT,
                notifications.RATING_PROMPT,
            ):
                notifications.publish(
                    event_type,
                    actor_id=project.commissioner_id,
                    target_id=project.freelancer_id,
                    project_id=project_id,
                    task_id=task_id,
                    invoice_number=invoice.invoice_number,
                    context={"amount": str(invoice.total_amount)},
                )

            create_audit_entry(
                event_type="FINAL_PAYOUT_EXECUTED",
                actor_id=actor_id,
                entity_type="Project",
                entity_id=project_id,
                previous_state={
                    "paidToDate": str(project.paid_to_date - invoice.total_amount)
                },
                new_state={
                    "paidToDate": str(project.paid_to_date),
                    "invoiceNumber": invoice.invoice_number,
                    "trigger": trigger,
                },
                task_id=task_id,
            )
    except AlreadyProcessedError:
        logger.info(
            "final_payout_already_processed",
            extra={"operation": "EXECUTE_FINAL_PAYOUT", "entity_id": project_id},
        )
        raise
    except (DomainError, DatabaseError) as exc:
        logger.exception(
            "final_payout_failed",
            extra={"operation": "EXECUTE_FINAL_PAYOUT", "entity_id": project_id},
        )
        _audit_failure("FINAL_PAYOUT_FAILED", project_id, actor_id, exc, task_id)
        raise

    logger.info(
        "final_payout_executed",
        extra={
            "operation": "EXECUTE_FINAL_PAYOUT",
            "entity_id": project_id,
            "task_id": task_id,
        },
    )
    return invoice


def execute_manual_partial(project_id, trigger_token, amount, actor_id, task_id=None):
    """
    Pay an ad-hoc amount of a completion project's budget.

    The trigger token (the caller's Idempotency-Key) is claimed first, so a
    replayed webhook pays nothing and reports the original invoice.

    Raises:
        ValidationError: missing token or non-positive amount
        InsufficientBudgetError: amount exceeds remaining budget
        AlreadyProcessedError: the token was already used
    """
    try:
        invoice = _pay_manual_partial(
            project_id, trigger_token, amount, actor_id, task_id
        )
    except AlreadyProcessedError:
        logger.info(
            "manual_payout_already_processed",
            extra={"operation": "EXECUTE_MANUAL_PAYOUT", "entity_id": project_id},
        )
        raise
    except (DomainError, DatabaseError) as exc:
        logger.warning(
            "manual_payout_failed",
            extra={
                "operation": "EXECUTE_MANUAL_PAYOUT",
                "entity_id": project_id,
                "error": getattr(exc, "code", type(exc).__name__),
            },
        )
        _audit_failure("MANUAL_PAYOUT_FAILED", project_id, actor_id, exc, task_id)
        raise

    logger.info(
        "manual_payout_executed",
        extra={
            "operation": "EXECUTE_MANUAL_PAYOUT",
            "entity_id": project_id,
            "task_id": task_id,
        },
    )
    return invoice


def _pay_manual_partial(project_id, trigger_token, amount, actor_id, task_id):
    if not trigger_token:
        raise ValidationError("A trigger token is required for manual payouts")
    value = calculation.to_amount(amount)
    if value <= 0:
        raise ValidationError("Payment amount must be positive", {"amount": str(value)})
    value = calculation.round2(value)

    with transaction.atomic():
        project = _lock_project(project_id)
        _require_commissioner(project, actor_id, "trigger manual payouts")
        if project.invoicing_method != InvoicingMethod.COMPLETION:
            raise InvalidStateError(
                "Manual payouts exist only for completion projects",
                {"project_id": project_id},
            )

        try:
            claim = entity_store.create_only(
                IdempotencyKey, key=trigger_token, operation=MANUAL_PARTIAL_PAYOUT
            )
        except AlreadyExists:
            existing = IdempotencyKey.objects.get(
                key=trigger_token, operation=MANUAL_PARTIAL_PAYOUT
            )
            raise AlreadyProcessedError(
                "Manual payout already processed for this trigger",
                {"projectId": project_id, "invoiceNumber": existing.target_object_id},
            )

        check = calculation.validate_budget_integrity(project, value)
        if not check.is_valid:
            raise InsufficientBudgetError(
                check.errors[0],
                {
                    "project_id": project_id,
                    "amount": str(value),
                    "remaining": str(check.remaining),
                },
            )

        computed = calculation.ComputedInvoice(
            kind=InvoiceKind.MANUAL_PARTIAL,
            amount=value,
            milestone_number=None,
            description=f"Manual payment for {project_id}"
            + (f" (task {task_id})" if task_id else ""),
        )
        invoice = create_invoice(
            project,
            computed,
            status=InvoiceStatus.PAID,
            source_task_id=task_id,
            paid_at=timezone.now(),
            actor_id=actor_id,
        )
        entity_store.write(claim, target_object_id=invoice.invoice_number)
        settle_invoice(invoice, project, TRIGGER_MANUAL, actor_id=actor_id)
        notifications.publish(
            notifications.MANUAL_PAYMENT,
            actor_id=actor_id,
            target_id=project.freelancer_id,
            project_id=project_id,
            task_id=task_id,
            invoice_number=invoice.invoice_number,
            context={"amount": str(value)},
        )
    return invoice


def pay_invoice(invoice_number, actor_id):
    """
    Pay a sent milestone or upfront invoice.

    Raises:
        NotFoundError, PermissionDeniedError
        InvalidStateError: invoice is a draft
        AlreadyProcessedError: invoice already paid
    """
    with transaction.atomic():
        invoice = (
            Invoice.objects.select_for_update()
            .filter(invoice_number=invoice_number)
            .first()
        )
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_number} does not exist")
        project = _lock_project(invoice.project_id)
        _require_commissioner(project, actor_id, "pay its invoices")

        if invoice.status == InvoiceStatus.PAID:
            raise AlreadyProcessedError(
                f"Invoice {invoice_number} already paid",
                {"invoiceNumber": invoice_number},
            )
        if invoice.status != InvoiceStatus.SENT:
            raise InvalidStateError(
                f"Cannot pay invoice with status {invoice.status}",
                {"invoiceNumber": invoice_number, "status": invoice.status},
            )

        try:
            entity_store.create_only(
                IdempotencyKey,
                key=invoice_number,
                operation=PAY_INVOICE,
                target_object_id=invoice_number,
            )
        except AlreadyExists:
            raise AlreadyProcessedError(
                f"Invoice {invoice_number} already paid",
                {"invoiceNumber": invoice_number},
            )

        settle_invoice(invoice, project, TRIGGER_INVOICE_PAYMENT, actor_id=actor_id)

    return invoice
