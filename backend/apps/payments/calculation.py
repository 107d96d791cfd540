"""
Invoice amount calculation.

Pure functions: no database, no clock. Inputs are any objects carrying the
project fields used (project_id, total_budget, paid_to_date,
milestone_count), so callers can pass a Project or a plain record.

Milestone splits round each share independently; the remainder is not
redistributed, so N shares may sum to the budget +/- a few cents.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional

from core.exceptions import ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
DEFAULT_UPFRONT_PERCENT = 12

KIND_MILESTONE = "milestone"
KIND_UPFRONT = "upfrontPayout"
KIND_COMPLETION = "completionPayout"
KIND_MANUAL = "manualPartial"


@dataclass(frozen=True)
class ComputedInvoice:
    kind: str
    amount: Decimal
    milestone_number: Optional[int]
    description: str


@dataclass(frozen=True)
class BudgetCheck:
    is_valid: bool
    remaining: Decimal
    would_result_in_negative: bool
    errors: List[str]


def round2(value) -> Decimal:
    """Round half-up to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_amount(value, field="amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a decimal amount", {field: str(value)})
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal amount", {field: str(value)})
    return amount


def _budget(project) -> Decimal:
    total = to_amount(project.total_budget, "total_budget")
    if total < 0:
        raise ValidationError(
            "Project budget cannot be negative",
            {"project_id": project.project_id, "total_budget": str(total)},
        )
    return total


def milestone_invoice(project, milestone_index: int) -> ComputedInvoice:
    """Equal share of the budget for one milestone (1-based index)."""
    total = _budget(project)
    count = project.milestone_count
    if not count or count <= 0:
        raise ValidationError(
            "Milestone projects need a positive milestone count",
            {"project_id": project.project_id, "milestone_count": count},
        )
    if milestone_index < 1 or milestone_index > count:
        raise ValidationError(
            f"Milestone {milestone_index} is out of range 1..{count}",
            {"project_id": project.project_id, "milestone_index": milestone_index},
        )
    return ComputedInvoice(
        kind=KIND_MILESTONE,
        amount=round2(total / Decimal(count)),
        milestone_number=milestone_index,
        description=f"Milestone {milestone_index} of {count} for {project.project_id}",
    )


def upfront_invoice(project, percent=DEFAULT_UPFRONT_PERCENT) -> ComputedInvoice:
    """Upfront commitment payment, a fixed percentage of the budget."""
    total = _budget(project)
    pct = to_amount(percent, "percent")
    if pct <= 0 or pct > HUNDRED:
        raise ValidationError(
            "Upfront percent must be in (0, 100]", {"percent": str(pct)}
        )
    return ComputedInvoice(
        kind=KIND_UPFRONT,
        amount=round2(total * pct / HUNDRED),
        milestone_number=None,
        description=f"Upfront payment ({pct}%) for {project.project_id}",
    )


def completion_invoice(project) -> ComputedInvoice:
    """Whatever the budget has left once everything already paid is subtracted."""
    total = _budget(project)
    paid = to_amount(project.paid_to_date, "paid_to_date")
    return ComputedInvoice(
        kind=KIND_COMPLETION,
        amount=round2(total - paid),
        milestone_number=None,
        description=f"Final completion payment for {project.project_id}",
    )


def manual_invoice_amount(
    total_budget, task_count, upfront_percent=DEFAULT_UPFRONT_PERCENT
):
    """Per-task share of the non-upfront portion (88% split across all tasks)."""
    total = to_amount(total_budget, "total_budget")
    if total <= 0:
        raise ValidationError(
            "Total budget must be positive", {"total_budget": str(total)}
        )
    if task_count <= 0:
        raise ValidationError(
            "Total tasks must be positive", {"task_count": task_count}
        )
    task_portion = total * (HUNDRED - Decimal(upfront_percent)) / HUNDRED
    return round2(task_portion / Decimal(task_count))


def remaining_budget(project) -> Decimal:
    return round2(_budget(project) - to_amount(project.paid_to_date, "paid_to_date"))


def validate_budget_integrity(project, proposed_amount) -> BudgetCheck:
    """Check that a proposed payment fits in what is left of the budget."""
    remaining = remaining_budget(project)
    amount = to_amount(proposed_amount, "amount")
    errors = []
    if amount <= 0:
        errors.append("Payment amount must be positive")
    would_result_in_negative = remaining - amount < 0
    if would_result_in_negative:
        errors.append(
            f"Payment of {amount} would exceed remaining budget of {remaining}"
        )
    return BudgetCheck(
        is_valid=not errors,
        remaining=remaining,
        would_result_in_negative=would_result_in_negative,
        errors=errors,
    )
