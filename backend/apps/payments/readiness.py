"""
Payout readiness gate for completion-billed projects.

check() is read-only. It answers "would a final payout be correct right
now?" using an ordered short-circuit, so the first failing condition is
the reported reason. A ready answer can go stale before the payout runs;
the executor's marker claim is what makes the payout at-most-once.
"""

import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import List

from django.conf import settings

from apps.payments import calculation
from apps.payments.models import (
    FinalPayoutMarker,
    Invoice,
    InvoiceKind,
    InvoiceStatus,
)
from apps.projects.models import InvoicingMethod, Project, TaskStatus

logger = logging.getLogger(__name__)

REASON_READY = "ready"
REASON_PROJECT_NOT_FOUND = "project_not_found"
REASON_NOT_COMPLETION = "not_completion_project"
REASON_NO_TASKS = "no_tasks"
REASON_TASKS_PENDING = "tasks_pending"
REASON_NO_REMAINING_BUDGET = "no_remaining_budget"
REASON_ALREADY_PAID = "final_payout_already_processed"


@dataclass(frozen=True)
class PayoutReadiness:
    ready: bool
    reason: str
    total_tasks: int = 0
    approved_tasks: int = 0
    remaining_budget: Decimal = Decimal("0.00")
    already_processed: bool = False

    def as_dict(self):
        data = asdict(self)
        data["remaining_budget"] = str(self.remaining_budget)
        return data


@dataclass
class PaymentState:
    is_valid: bool
    upfront_paid: bool = False
    manual_payments_count: int = 0
    manual_payments_total: Decimal = Decimal("0.00")
    remaining_amount: Decimal = Decimal("0.00")
    errors: List[str] = field(default_factory=list)


def check(project_id) -> PayoutReadiness:
    """
    Evaluate, in order: completion method, all tasks approved (at least
    one task), remaining budget > 0, no final payout marker.
    """
    project = Project.objects.filter(project_id=project_id).first()
    if project is None:
        return PayoutReadiness(ready=False, reason=REASON_PROJECT_NOT_FOUND)

    if project.invoicing_method != InvoicingMethod.COMPLETION:
        return PayoutReadiness(ready=False, reason=REASON_NOT_COMPLETION)

    statuses = list(project.tasks.values_list("status", flat=True))
    total = len(statuses)
    approved = sum(1 for s in statuses if s == TaskStatus.APPROVED)
    remaining = calculation.remaining_budget(project)
    counts = {
        "total_tasks": total,
        "approved_tasks": approved,
        "remaining_budget": remaining,
    }

    if total == 0:
        return PayoutReadiness(ready=False, reason=REASON_NO_TASKS, **counts)
    if approved != total:
        return PayoutReadiness(ready=False, reason=REASON_TASKS_PENDING, **counts)
    if remaining <= 0:
        return PayoutReadiness(
            ready=False, reason=REASON_NO_REMAINING_BUDGET, **counts
        )
    if FinalPayoutMarker.objects.filter(project_id=project.project_id).exists():
        return PayoutReadiness(
            ready=False, reason=REASON_ALREADY_PAID, already_processed=True, **counts
        )

    logger.info(
        "payout_ready",
        extra={"operation": "CHECK_PAYOUT_READINESS", "entity_id": project_id},
    )
    return PayoutReadiness(ready=True, reason=REASON_READY, **counts)


def _paid(project, kind):
    return Invoice.objects.filter(
        project=project, kind=kind, status=InvoiceStatus.PAID
    )


def payment_state(project_id) -> PaymentState:
    """Consistency snapshot of a completion project's payments."""
    project = Project.objects.filter(project_id=project_id).first()
    if project is None:
        return PaymentState(is_valid=False, errors=["Project not found"])
    if project.invoicing_method != InvoicingMethod.COMPLETION:
        return PaymentState(is_valid=False, errors=["Project is not completion-based"])

    errors = []
    upfront_paid = _paid(project, InvoiceKind.UPFRONT_PAYOUT).exists()
    if not upfront_paid:
        errors.append("Upfront payment not completed")

    manual = list(
        _paid(project, InvoiceKind.MANUAL_PARTIAL).values_list(
            "total_amount", flat=True
        )
    )
    manual_total = sum(manual, Decimal("0.00"))

    paid_total = sum(
        Invoice.objects.filter(
            project=project, status=InvoiceStatus.PAID
        ).values_list("total_amount", flat=True),
        Decimal("0.00"),
    )
    if paid_total > project.total_budget:
        errors.append(
            f"Total payments ({paid_total}) exceed project budget "
            f"({project.total_budget})"
        )

    return PaymentState(
        is_valid=not errors,
        upfront_paid=upfront_paid,
        manual_payments_count=len(manual),
        manual_payments_total=manual_total,
        remaining_amount=calculation.remaining_budget(project),
        errors=errors,
    )


def payout_progress(project_id):
    """Upfront share (12%) once the upfront invoice is paid, the rest once the
    final payout ran."""
    upfront_share = getattr(settings, "UPFRONT_PERCENT", 12)
    project = Project.objects.filter(project_id=project_id).first()
    if project is None:
        return None

    upfront_done = _paid(project, InvoiceKind.UPFRONT_PAYOUT).exists()
    final_done = _paid(project, InvoiceKind.COMPLETION_PAYOUT).exists()
    progress = 0
    if upfront_done:
        progress += upfront_share
    if final_done:
        progress += 100 - upfront_share

    statuses = list(project.tasks.values_list("status", flat=True))
    return {
        "projectId": project.project_id,
        "progressPercentage": progress,
        "upfrontCompleted": upfront_done,
        "manualPaymentsCount": _paid(project, InvoiceKind.MANUAL_PARTIAL).count(),
        "finalPaymentCompleted": final_done,
        "totalTasks": len(statuses),
        "approvedTasks": sum(1 for s in statuses if s == TaskStatus.APPROVED),
    }
