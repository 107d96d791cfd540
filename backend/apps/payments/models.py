"""
Payment domain models: Invoice, WalletEntry, PaymentTransaction,
FinalPayoutMarker, IdempotencyKey.

Invoices and wallet entries are removed only by the rollback tool.
FinalPayoutMarker and IdempotencyKey rows are claims: they are created
once and never updated.
"""

import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class InvoiceKind(models.TextChoices):
    MILESTONE = "milestone"
    UPFRONT_PAYOUT = "upfrontPayout"
    COMPLETION_PAYOUT = "completionPayout"
    MANUAL_PARTIAL = "manualPartial"


class InvoiceStatus(models.TextChoices):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"


class WalletDirection(models.TextChoices):
    CREDIT = "credit"
    DEBIT = "debit"


class Invoice(models.Model):
    """A billable amount owed to the freelancer of a project."""

    invoice_number = models.CharField(primary_key=True, max_length=64)
    project = models.ForeignKey(
        "projects.Project", on_delete=models.PROTECT, related_name="invoices"
    )
    kind = models.CharField(max_length=20, choices=InvoiceKind.choices)
    milestone_number = models.PositiveIntegerField(null=True, blank=True)
    total_amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    status = models.CharField(
        max_length=10, choices=InvoiceStatus.choices, default=InvoiceStatus.SENT
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    source_task_id = models.CharField(max_length=64, null=True, blank=True)
    description = models.TextField(blank=True, default="")
    freelancer = models.ForeignKey(
        "users.User", on_delete=models.PROTECT, related_name="invoices_received"
    )
    commissioner = models.ForeignKey(
        "users.User", on_delete=models.PROTECT, related_name="invoices_issued"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "invoices"
        ordering = ["created_at", "invoice_number"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(
                    kind__in=[
                        "milestone",
                        "upfrontPayout",
                        "completionPayout",
                        "manualPartial",
                    ]
                ),
                name="valid_invoice_kind",
            ),
            models.CheckConstraint(
                condition=models.Q(status__in=["draft", "sent", "paid"]),
                name="valid_invoice_status",
            ),
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name="non_negative_invoice_amount",
            ),
            models.UniqueConstraint(
                fields=["project"],
                condition=models.Q(kind="completionPayout"),
                name="unique_completion_payout_per_project",
            ),
            models.UniqueConstraint(
                fields=["project"],
                condition=models.Q(kind="upfrontPayout"),
                name="unique_upfront_payout_per_project",
            ),
        ]
        indexes = [
            models.Index(fields=["source_task_id"], name="idx_invoice_source_task"),
        ]

    def __str__(self):
        return f"{self.invoice_number} ({self.kind}, {self.status})"


class WalletEntry(models.Model):
    """Credit or debit on a user's wallet caused by a paid invoice."""

    entry_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        "users.User", on_delete=models.PROTECT, related_name="wallet_entries"
    )
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    direction = models.CharField(max_length=10, choices=WalletDirection.choices)
    invoice_number = models.CharField(max_length=64)
    project_id = models.CharField(max_length=32)
    source_task_id = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "wallet_entries"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(direction__in=["credit", "debit"]),
                name="valid_wallet_direction",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0), name="positive_wallet_amount"
            ),
        ]
        indexes = [
            models.Index(fields=["project_id"], name="idx_wallet_project"),
            models.Index(fields=["invoice_number"], name="idx_wallet_invoice"),
        ]

    def __str__(self):
        return f"{self.direction} {self.amount} ({self.invoice_number})"


class PaymentTransaction(models.Model):
    """Payment ledger row, one per paid invoice."""

    transaction_id = models.CharField(primary_key=True, max_length=80)
    invoice_number = models.CharField(max_length=64, unique=True)
    project_id = models.CharField(max_length=32)
    source_task_id = models.CharField(max_length=64, null=True, blank=True)
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    status = models.CharField(max_length=10, default="paid")
    trigger = models.CharField(max_length=64)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payment_transactions"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["project_id"], name="idx_txn_project"),
        ]

    def __str__(self):
        return self.transaction_id


class FinalPayoutMarker(models.Model):
    """Proof that a project's final payout ran. Created exactly once."""

    project_id = models.CharField(primary_key=True, max_length=32)
    processed_at = models.DateTimeField(auto_now_add=True)
    triggering_invoice_number = models.CharField(max_length=64)
    trigger = models.CharField(max_length=64)

    class Meta:
        db_table = "final_payout_markers"

    def __str__(self):
        return f"{self.project_id} paid via {self.triggering_invoice_number}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("FinalPayoutMarker rows are create-only.")
        super().save(*args, **kwargs)


class IdempotencyKey(models.Model):
    """Idempotency key for preventing duplicate financial operations."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    key = models.CharField(max_length=255, db_index=True)
    operation = models.CharField(max_length=100)
    target_object_id = models.CharField(max_length=64, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
        constraints = [
            models.UniqueConstraint(
                fields=["key", "operation"], name="unique_idempotency_per_operation"
            )
        ]

    def __str__(self):
        return f"{self.operation}:{self.key}"
