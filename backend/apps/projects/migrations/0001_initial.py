from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import migrations, models
import django.db.models.deletion
from decimal import Decimal

import apps.projects.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Project",
            fields=[
                (
                    "project_id",
                    models.CharField(max_length=32, primary_key=True, serialize=False),
                ),
                ("title", models.CharField(max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("Ongoing", "Ongoing"),
                            ("Paused", "Paused"),
                            ("Completed", "Completed"),
                        ],
                        default="Ongoing",
                        max_length=20,
                    ),
                ),
                (
                    "invoicing_method",
                    models.CharField(
                        choices=[
                            ("milestone", "Milestone"),
                            ("completion", "Completion"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "total_budget",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=15,
                        validators=[MinValueValidator(Decimal("0"))],
                    ),
                ),
                (
                    "paid_to_date",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("0.00"), max_digits=15
                    ),
                ),
                ("milestone_count", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "origin",
                    models.CharField(
                        choices=[("match", "Match"), ("request", "Request")],
                        default="match",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "freelancer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="freelance_projects",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "commissioner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commissioned_projects",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "projects",
            },
        ),
        migrations.CreateModel(
            name="Task",
            fields=[
                (
                    "task_id",
                    models.CharField(
                        default=apps.projects.models._new_task_id,
                        max_length=64,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("title", models.CharField(max_length=255)),
                ("order", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("Ongoing", "Ongoing"),
                            ("InReview", "In Review"),
                            ("Approved", "Approved"),
                            ("Rejected", "Rejected"),
                        ],
                        default="Ongoing",
                        max_length=20,
                    ),
                ),
                ("completed", models.BooleanField(default=False)),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_count", models.PositiveIntegerField(default=0)),
                ("last_feedback", models.TextField(blank=True, default="")),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="approved_tasks",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tasks",
                        to="projects.project",
                    ),
                ),
            ],
            options={
                "db_table": "tasks",
                "ordering": ["order"],
            },
        ),
        migrations.CreateModel(
            name="IdCounter",
            fields=[
                (
                    "prefix",
                    models.CharField(max_length=64, primary_key=True, serialize=False),
                ),
                ("next_sequence", models.PositiveIntegerField(default=1)),
            ],
            options={
                "db_table": "id_counters",
            },
        ),
        migrations.CreateModel(
            name="ProjectIdClaim",
            fields=[
                (
                    "identifier",
                    models.CharField(max_length=32, primary_key=True, serialize=False),
                ),
                (
                    "mode",
                    models.CharField(
                        choices=[("request", "Request"), ("legacy", "Legacy")],
                        max_length=10,
                    ),
                ),
                (
                    "origin",
                    models.CharField(
                        choices=[("match", "Match"), ("request", "Request")],
                        max_length=20,
                    ),
                ),
                ("claimed_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "project_id_claims",
            },
        ),
        migrations.AddConstraint(
            model_name="project",
            constraint=models.CheckConstraint(
                condition=models.Q(status__in=["Ongoing", "Paused", "Completed"]),
                name="valid_project_status",
            ),
        ),
        migrations.AddConstraint(
            model_name="project",
            constraint=models.CheckConstraint(
                condition=models.Q(invoicing_method__in=["milestone", "completion"]),
                name="valid_invoicing_method",
            ),
        ),
        migrations.AddConstraint(
            model_name="project",
            constraint=models.CheckConstraint(
                condition=models.Q(origin__in=["match", "request"]),
                name="valid_project_origin",
            ),
        ),
        migrations.AddConstraint(
            model_name="project",
            constraint=models.CheckConstraint(
                condition=models.Q(total_budget__gte=0), name="non_negative_budget"
            ),
        ),
        migrations.AddConstraint(
            model_name="project",
            constraint=models.CheckConstraint(
                condition=models.Q(paid_to_date__gte=0), name="non_negative_paid_to_date"
            ),
        ),
        migrations.AddConstraint(
            model_name="task",
            constraint=models.CheckConstraint(
                condition=models.Q(
                    status__in=["Ongoing", "InReview", "Approved", "Rejected"]
                ),
                name="valid_task_status",
            ),
        ),
        migrations.AddConstraint(
            model_name="task",
            constraint=models.UniqueConstraint(
                fields=["project", "order"], name="unique_task_order_per_project"
            ),
        ),
        migrations.AddConstraint(
            model_name="projectidclaim",
            constraint=models.CheckConstraint(
                condition=models.Q(mode__in=["request", "legacy"]),
                name="valid_allocation_mode",
            ),
        ),
    ]
