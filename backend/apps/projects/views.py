"""
Project and task API views.

All mutations flow through service layer.
All endpoints define permission_classes per API contract.
"""

import logging

from django.db import IntegrityError
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from core.exceptions import DomainError, NotFoundError, PermissionDeniedError
from core.permissions import (
    IsAuthenticatedReadOnly,
    IsCommissioner,
    IsFreelancer,
    current_actor,
)
from apps.projects import services
from apps.projects.models import Project
from apps.projects.serializers import (
    AllocateProjectIdSerializer,
    CreateProjectSerializer,
    ProjectSerializer,
    RejectTaskSerializer,
    TaskSerializer,
)

logger = logging.getLogger(__name__)


def _conflict(message):
    return Response(
        {"error": {"code": "CONFLICT", "message": message, "details": {}}},
        status=status.HTTP_409_CONFLICT,
    )


@api_view(["POST"])
@permission_classes([IsCommissioner])
def allocate_project_id(request):
    """
    POST /api/v1/projects/allocate-id

    Reserve a project identifier without creating the project.
    """
    serializer = AllocateProjectIdSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = services.allocate_project_id(
        data["mode"],
        data["orgLetter"],
        origin=data["origin"],
        actor_id=request.user.id,
    )
    return Response(
        {"data": {"projectId": result.id, "attempts": result.attempts}},
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([IsCommissioner])
def create_project(request):
    """
    POST /api/v1/projects

    Create a project (commissioned by the caller) with its tasks.
    """
    serializer = CreateProjectSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        project = services.create_project(
            org_letter=data["orgLetter"],
            mode=data["mode"],
            origin=data["origin"],
            title=data["title"],
            invoicing_method=data["invoicingMethod"],
            total_budget=data["totalBudget"],
            milestone_count=data.get("milestoneCount"),
            freelancer_id=data["freelancerId"],
            commissioner_id=request.user.id,
            task_titles=data["tasks"],
            actor_id=request.user.id,
        )
    except DomainError:
        raise
    except IntegrityError:
        return _conflict("Project creation conflict")
    return Response(
        {"data": ProjectSerializer(project).data}, status=status.HTTP_201_CREATED
    )


@api_view(["GET"])
@permission_classes([IsAuthenticatedReadOnly])
def get_project(request, projectId):
    """
    GET /api/v1/projects/{projectId}

    Project with its tasks. Visible to its participants and admins.
    """
    project = (
        Project.objects.prefetch_related("tasks").filter(project_id=projectId).first()
    )
    if project is None:
        raise NotFoundError(f"Project {projectId} does not exist")
    ensure_participant(request, project)
    return Response(
        {"data": ProjectSerializer(project).data}, status=status.HTTP_200_OK
    )


def ensure_participant(request, project):
    actor = current_actor(request)
    if actor["role"] == "ADMIN":
        return
    if str(actor["userId"]) not in (
        str(project.freelancer_id),
        str(project.commissioner_id),
    ):
        raise PermissionDeniedError(
            "Only project participants can view this project",
            {"project_id": project.project_id},
        )


@api_view(["POST"])
@permission_classes([IsFreelancer])
def submit_task(request, taskId):
    """
    POST /api/v1/tasks/{taskId}/submit

    Hand a task in for review.
    """
    task = services.submit_task(taskId, request.user.id)
    return Response({"data": TaskSerializer(task).data}, status=status.HTTP_200_OK)


@api_view(["POST"])
@permission_classes([IsCommissioner])
def approve_task(request, taskId):
    """
    POST /api/v1/tasks/{taskId}/approve

    Approve a task under review. Replays return status "already_approved".
    """
    try:
        result = services.approve_task(taskId, request.user.id)
    except DomainError:
        raise
    except IntegrityError:
        return _conflict("Approval conflict")
    return Response({"data": result.as_dict()}, status=status.HTTP_200_OK)


@api_view(["POST"])
@permission_classes([IsCommissioner])
def reject_task(request, taskId):
    """
    POST /api/v1/tasks/{taskId}/reject

    Send a task back to the freelancer with optional feedback.
    """
    serializer = RejectTaskSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    task = services.reject_task(
        taskId, request.user.id, serializer.validated_data["comment"]
    )
    return Response({"data": TaskSerializer(task).data}, status=status.HTTP_200_OK)
