"""
Payout API views.

All mutations flow through service layer.
All endpoints define permission_classes per API contract.
"""

import logging

from django.db import IntegrityError
from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from core.exceptions import DomainError, NotFoundError, ValidationError
from core.permissions import IsAdmin, IsAuthenticatedReadOnly, IsCommissioner
from apps.payments import executor, readiness, rollback, services
from apps.payments.serializers import (
    InvoiceSerializer,
    ManualPayoutSerializer,
    RollbackSerializer,
)
from apps.projects.models import Project
from apps.projects.views import ensure_participant

logger = logging.getLogger(__name__)

EXCEL_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _conflict(message):
    return Response(
        {"error": {"code": "CONFLICT", "message": message, "details": {}}},
        status=status.HTTP_409_CONFLICT,
    )


def _get_project(request, project_id):
    project = Project.objects.filter(project_id=project_id).first()
    if project is None:
        raise NotFoundError(f"Project {project_id} does not exist")
    ensure_participant(request, project)
    return project


@api_view(["GET"])
@permission_classes([IsAuthenticatedReadOnly])
def payout_readiness(request, projectId):
    """
    GET /api/v1/projects/{projectId}/payout-readiness

    Readiness gate answer plus payout progress. Read-only.
    """
    _get_project(request, projectId)
    gate = readiness.check(projectId)
    data = gate.as_dict()
    data["progress"] = readiness.payout_progress(projectId)
    state = readiness.payment_state(projectId)
    data["paymentState"] = {
        "isValid": state.is_valid,
        "upfrontPaid": state.upfront_paid,
        "manualPaymentsCount": state.manual_payments_count,
        "manualPaymentsTotal": str(state.manual_payments_total),
        "remainingAmount": str(state.remaining_amount),
        "errors": state.errors,
    }
    return Response({"data": data}, status=status.HTTP_200_OK)


@api_view(["POST"])
@permission_classes([IsCommissioner])
def execute_manual_payout(request, projectId):
    """
    POST /api/v1/projects/{projectId}/manual-payouts

    Pay part of a completion project's budget. The Idempotency-Key header
    is the trigger token: replays return a no-op naming the original invoice.
    """
    serializer = ManualPayoutSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        invoice = executor.execute_manual_partial(
            projectId,
            getattr(request, "idempotency_key", None),
            serializer.validated_data["amount"],
            request.user.id,
            task_id=serializer.validated_data.get("taskId"),
        )
    except DomainError:
        raise
    except IntegrityError:
        return _conflict("Manual payout conflict")
    return Response(
        {"data": InvoiceSerializer(invoice).data}, status=status.HTTP_201_CREATED
    )


@api_view(["POST"])
@permission_classes([IsCommissioner])
def issue_upfront_invoice(request, projectId):
    """
    POST /api/v1/projects/{projectId}/upfront-invoice

    Issue the upfront commitment invoice of a completion project.
    """
    try:
        invoice = services.issue_upfront_invoice(projectId, request.user.id)
    except DomainError:
        raise
    except IntegrityError:
        return _conflict("Upfront invoice conflict")
    return Response(
        {"data": InvoiceSerializer(invoice).data}, status=status.HTTP_201_CREATED
    )


@api_view(["POST"])
@permission_classes([IsCommissioner])
def pay_invoice(request, invoiceNumber):
    """
    POST /api/v1/invoices/{invoiceNumber}/pay

    Pay a sent milestone or upfront invoice.
    """
    try:
        invoice = executor.pay_invoice(invoiceNumber, request.user.id)
    except DomainError:
        raise
    except IntegrityError:
        return _conflict("Invoice payment conflict")
    return Response(
        {"data": InvoiceSerializer(invoice).data}, status=status.HTTP_200_OK
    )


@api_view(["POST"])
@permission_classes([IsAdmin])
def rollback_task_approval(request, taskId):
    """
    POST /api/v1/tasks/{taskId}/rollback

    Administrative compensation of an approval. Always returns the
    per-step report; failed steps are listed in "errors".
    """
    serializer = RollbackSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    report = rollback.rollback(
        taskId,
        project_id=serializer.validated_data.get("projectId"),
        actor_id=request.user.id,
    )
    return Response(
        {"data": report.as_dict()},
        status=status.HTTP_200_OK if report.success else status.HTTP_207_MULTI_STATUS,
    )


@api_view(["GET"])
@permission_classes([IsAuthenticatedReadOnly])
def export_statement(request, projectId):
    """
    GET /api/v1/projects/{projectId}/statement?format=pdf|excel

    Export the project's invoice statement.
    """
    from apps.payments.statement_export import (
        export_project_statement_excel,
        export_project_statement_pdf,
    )

    format_param = request.query_params.get("format", "pdf").lower()
    if format_param not in ("pdf", "excel"):
        raise ValidationError(
            "Format must be 'pdf' or 'excel'", {"format": format_param}
        )

    _get_project(request, projectId)
    if format_param == "pdf":
        content, filename = export_project_statement_pdf(projectId)
        content_type = "application/pdf"
    else:
        content, filename = export_project_statement_excel(projectId)
        content_type = EXCEL_CONTENT_TYPE

    response = HttpResponse(content, content_type=content_type)
    response["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response
