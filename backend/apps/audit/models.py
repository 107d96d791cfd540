"""
AuditLog model - immutable chronological record of pipeline events.

Audit logs are append-only. No update or delete operations, including
queryset-level bulk operations.
"""

import uuid
from django.db import models


class AuditLogQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise ValueError("AuditLog entries are append-only. Updates are not allowed.")

    def delete(self):
        raise ValueError("AuditLog entries are append-only. Deletions are not allowed.")


class AuditLog(models.Model):
    """One before/after record per transition, computation or side effect."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_type = models.CharField(max_length=64)
    actor = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_actions",
    )
    entity_type = models.CharField(max_length=50)
    # Projects and invoices use string identifiers (T-R001, INV-T-R001-001).
    entity_id = models.CharField(max_length=64)
    # Causal tag: the approval that led to this event, if any.
    task_id = models.CharField(max_length=64, null=True, blank=True)
    request_id = models.CharField(max_length=64, null=True, blank=True)
    previous_state = models.JSONField(null=True, blank=True)
    new_state = models.JSONField(null=True, blank=True)
    occurred_at = models.DateTimeField(auto_now_add=True)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        db_table = "audit_logs"
        indexes = [
            models.Index(fields=["entity_type", "entity_id"], name="idx_audit_entity"),
            models.Index(fields=["task_id"], name="idx_audit_task"),
            models.Index(fields=["occurred_at"], name="idx_audit_occurred"),
        ]
        ordering = ["occurred_at"]

    def __str__(self):
        return (
            f"{self.event_type} - {self.entity_type}:{self.entity_id} at "
            f"{self.occurred_at}"
        )

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(
                "AuditLog entries are append-only. Updates are not allowed."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("AuditLog entries are append-only. Deletions are not allowed.")
