"""
Serializers for projects and tasks.

No business logic in serializers - validation only.
All mutations flow through service layer.
"""

from rest_framework import serializers

from apps.projects.models import (
    AllocationMode,
    InvoicingMethod,
    Project,
    ProjectOrigin,
    Task,
)


class TaskSerializer(serializers.ModelSerializer):
    taskId = serializers.CharField(source="task_id", read_only=True)
    projectId = serializers.CharField(source="project_id", read_only=True)
    submittedAt = serializers.DateTimeField(source="submitted_at", read_only=True)
    approvedAt = serializers.DateTimeField(source="approved_at", read_only=True)
    approvedBy = serializers.UUIDField(
        source="approved_by_id", read_only=True, allow_null=True
    )
    rejectionCount = serializers.IntegerField(source="rejection_count", read_only=True)
    feedback = serializers.CharField(source="last_feedback", read_only=True)

    class Meta:
        model = Task
        fields = [
            "taskId",
            "projectId",
            "title",
            "order",
            "status",
            "completed",
            "submittedAt",
            "approvedAt",
            "approvedBy",
            "rejectionCount",
            "feedback",
        ]
        read_only_fields = fields


class ProjectSerializer(serializers.ModelSerializer):
    projectId = serializers.CharField(source="project_id", read_only=True)
    invoicingMethod = serializers.CharField(source="invoicing_method", read_only=True)
    totalBudget = serializers.DecimalField(
        source="total_budget", max_digits=15, decimal_places=2, read_only=True
    )
    paidToDate = serializers.DecimalField(
        source="paid_to_date", max_digits=15, decimal_places=2, read_only=True
    )
    milestoneCount = serializers.IntegerField(
        source="milestone_count", read_only=True, allow_null=True
    )
    freelancerId = serializers.UUIDField(source="freelancer_id", read_only=True)
    commissionerId = serializers.UUIDField(source="commissioner_id", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    tasks = TaskSerializer(many=True, read_only=True)

    class Meta:
        model = Project
        fields = [
            "projectId",
            "title",
            "status",
            "invoicingMethod",
            "totalBudget",
            "paidToDate",
            "milestoneCount",
            "origin",
            "freelancerId",
            "commissionerId",
            "createdAt",
            "tasks",
        ]
        read_only_fields = fields


class AllocateProjectIdSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(
        choices=AllocationMode.choices, default=AllocationMode.REQUEST
    )
    orgLetter = serializers.CharField(max_length=1)
    origin = serializers.ChoiceField(
        choices=ProjectOrigin.choices, default=ProjectOrigin.REQUEST
    )


class CreateProjectSerializer(serializers.Serializer):
    orgLetter = serializers.CharField(max_length=1)
    mode = serializers.ChoiceField(
        choices=AllocationMode.choices, default=AllocationMode.REQUEST
    )
    origin = serializers.ChoiceField(
        choices=ProjectOrigin.choices, default=ProjectOrigin.REQUEST
    )
    title = serializers.CharField(max_length=255)
    invoicingMethod = serializers.ChoiceField(choices=InvoicingMethod.choices)
    totalBudget = serializers.DecimalField(
        max_digits=15, decimal_places=2, min_value=0
    )
    milestoneCount = serializers.IntegerField(min_value=1, required=False)
    freelancerId = serializers.UUIDField()
    tasks = serializers.ListField(
        child=serializers.CharField(max_length=255), allow_empty=False
    )


class RejectTaskSerializer(serializers.Serializer):
    comment = serializers.CharField(required=False, allow_blank=True, default="")
