"""
NotificationEvent model - outbound domain events for downstream consumers.

Delivery is at-least-once. Consumers dedupe on (event_type, project_id,
task_id, invoice_number). Rendering is not done here.
"""

import uuid
from django.db import models


class NotificationEvent(models.Model):
    event_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_type = models.CharField(max_length=64)
    actor = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_notifications",
    )
    target = models.ForeignKey(
        "users.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="received_notifications",
    )
    project_id = models.CharField(max_length=32)
    task_id = models.CharField(max_length=64, null=True, blank=True)
    invoice_number = models.CharField(max_length=64, null=True, blank=True)
    context = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "notification_events"
        indexes = [
            models.Index(fields=["project_id"], name="idx_notification_project"),
            models.Index(fields=["task_id"], name="idx_notification_task"),
        ]
        ordering = ["created_at"]

    def __str__(self):
        return f"{self.event_type} -> {self.target_id} ({self.project_id})"
