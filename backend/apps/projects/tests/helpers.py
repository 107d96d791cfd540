"""Shared fixtures for project and payout tests."""

from decimal import Decimal

from apps.projects.models import Project, Task
from apps.users.models import User


def make_user(username, role):
    return User.objects.create_user(
        username=username,
        password="testpass123",
        display_name=username.replace("_", " ").title(),
        role=role,
    )


def make_participants(prefix="t"):
    commissioner = make_user(f"{prefix}_commissioner", "COMMISSIONER")
    freelancer = make_user(f"{prefix}_freelancer", "FREELANCER")
    return commissioner, freelancer


def make_project(
    commissioner,
    freelancer,
    *,
    project_id="T-R001",
    method="milestone",
    budget="5000.00",
    tasks=3,
    task_status="InReview",
    milestone_count=None,
):
    project = Project.objects.create(
        project_id=project_id,
        title=f"Project {project_id}",
        invoicing_method=method,
        total_budget=Decimal(budget),
        milestone_count=(milestone_count or tasks) if method == "milestone" else None,
        origin="request",
        freelancer=freelancer,
        commissioner=commissioner,
    )
    for order in range(1, tasks + 1):
        Task.objects.create(
            project=project, title=f"Task {order}", order=order, status=task_status
        )
    return project


def task_at(project, order):
    return Task.objects.get(project=project, order=order)
