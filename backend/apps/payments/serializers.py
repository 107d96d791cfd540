"""
Serializers for invoices and payout requests.

No business logic in serializers - validation only.
"""

from rest_framework import serializers

from apps.payments.models import Invoice


class InvoiceSerializer(serializers.ModelSerializer):
    invoiceNumber = serializers.CharField(source="invoice_number", read_only=True)
    projectId = serializers.CharField(source="project_id", read_only=True)
    milestoneNumber = serializers.IntegerField(
        source="milestone_number", read_only=True, allow_null=True
    )
    totalAmount = serializers.DecimalField(
        source="total_amount", max_digits=15, decimal_places=2, read_only=True
    )
    paidAt = serializers.DateTimeField(source="paid_at", read_only=True)
    sourceTaskId = serializers.CharField(
        source="source_task_id", read_only=True, allow_null=True
    )
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "invoiceNumber",
            "projectId",
            "kind",
            "milestoneNumber",
            "totalAmount",
            "status",
            "paidAt",
            "sourceTaskId",
            "description",
            "createdAt",
        ]
        read_only_fields = fields


class ManualPayoutSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    taskId = serializers.CharField(required=False, allow_null=True, default=None)


class RollbackSerializer(serializers.Serializer):
    projectId = serializers.CharField(required=False, allow_null=True, default=None)
