"""
URL routing for project and task endpoints.
"""

from django.urls import path
from apps.projects import views

app_name = "projects"

urlpatterns = [
    path("projects", views.create_project, name="create-project"),
    path(
        "projects/allocate-id",
        views.allocate_project_id,
        name="allocate-project-id",
    ),
    path("projects/<str:projectId>", views.get_project, name="get-project"),
    path("tasks/<str:taskId>/submit", views.submit_task, name="submit-task"),
    path("tasks/<str:taskId>/approve", views.approve_task, name="approve-task"),
    path("tasks/<str:taskId>/reject", views.reject_task, name="reject-task"),
]
