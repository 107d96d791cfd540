"""
Project domain models: Project, Task, IdCounter, ProjectIdClaim.

Monetary fields are Decimal(15, 2). Enumerated fields are closed choices
backed by CheckConstraints.
"""

import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class ProjectStatus(models.TextChoices):
    ONGOING = "Ongoing"
    PAUSED = "Paused"
    COMPLETED = "Completed"


class InvoicingMethod(models.TextChoices):
    MILESTONE = "milestone"
    COMPLETION = "completion"


class ProjectOrigin(models.TextChoices):
    MATCH = "match"
    REQUEST = "request"


class TaskStatus(models.TextChoices):
    ONGOING = "Ongoing"
    IN_REVIEW = "InReview"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class AllocationMode(models.TextChoices):
    REQUEST = "request"
    LEGACY = "legacy"


def _new_task_id():
    return str(uuid.uuid4())


class Project(models.Model):
    """A contracted body of work between one commissioner and one freelancer."""

    project_id = models.CharField(primary_key=True, max_length=32)
    title = models.CharField(max_length=255)
    status = models.CharField(
        max_length=20, choices=ProjectStatus.choices, default=ProjectStatus.ONGOING
    )
    invoicing_method = models.CharField(max_length=20, choices=InvoicingMethod.choices)
    total_budget = models.DecimalField(
        max_digits=15, decimal_places=2, validators=[MinValueValidator(Decimal("0"))]
    )
    paid_to_date = models.DecimalField(
        max_digits=15, decimal_places=2, default=Decimal("0.00")
    )
    milestone_count = models.PositiveIntegerField(null=True, blank=True)
    origin = models.CharField(
        max_length=20, choices=ProjectOrigin.choices, default=ProjectOrigin.MATCH
    )
    freelancer = models.ForeignKey(
        "users.User", on_delete=models.PROTECT, related_name="freelance_projects"
    )
    commissioner = models.ForeignKey(
        "users.User", on_delete=models.PROTECT, related_name="commissioned_projects"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "projects"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(status__in=["Ongoing", "Paused", "Completed"]),
                name="valid_project_status",
            ),
            models.CheckConstraint(
                condition=models.Q(invoicing_method__in=["milestone", "completion"]),
                name="valid_invoicing_method",
            ),
            models.CheckConstraint(
                condition=models.Q(origin__in=["match", "request"]),
                name="valid_project_origin",
            ),
            models.CheckConstraint(
                condition=models.Q(total_budget__gte=0), name="non_negative_budget"
            ),
            models.CheckConstraint(
                condition=models.Q(paid_to_date__gte=0), name="non_negative_paid_to_date"
            ),
        ]

    def __str__(self):
        return f"{self.project_id} - {self.title}"


class Task(models.Model):
    """A unit of deliverable work within a project."""

    task_id = models.CharField(primary_key=True, max_length=64, default=_new_task_id)
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="tasks")
    title = models.CharField(max_length=255)
    order = models.PositiveIntegerField()
    status = models.CharField(
        max_length=20, choices=TaskStatus.choices, default=TaskStatus.ONGOING
    )
    completed = models.BooleanField(default=False)
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="approved_tasks",
    )
    rejection_count = models.PositiveIntegerField(default=0)
    last_feedback = models.TextField(blank=True, default="")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "tasks"
        ordering = ["order"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(
                    status__in=["Ongoing", "InReview", "Approved", "Rejected"]
                ),
                name="valid_task_status",
            ),
            models.UniqueConstraint(
                fields=["project", "order"], name="unique_task_order_per_project"
            ),
        ]

    def __str__(self):
        return f"{self.task_id} ({self.status})"


class IdCounter(models.Model):
    """
    Per-prefix sequence. Advanced only forward by the allocator, never
    incremented blindly.
    """

    prefix = models.CharField(primary_key=True, max_length=64)
    next_sequence = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "id_counters"

    def __str__(self):
        return f"{self.prefix}:{self.next_sequence}"


class ProjectIdClaim(models.Model):
    """Create-only placeholder proving a project identifier was handed out."""

    identifier = models.CharField(primary_key=True, max_length=32)
    mode = models.CharField(max_length=10, choices=AllocationMode.choices)
    origin = models.CharField(max_length=20, choices=ProjectOrigin.choices)
    claimed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "project_id_claims"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(mode__in=["request", "legacy"]),
                name="valid_allocation_mode",
            ),
        ]

    def __str__(self):
        return self.identifier
