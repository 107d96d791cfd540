import uuid
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="NotificationEvent",
            fields=[
                (
                    "event_id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("event_type", models.CharField(max_length=64)),
                ("project_id", models.CharField(max_length=32)),
                ("task_id", models.CharField(blank=True, max_length=64, null=True)),
                (
                    "invoice_number",
                    models.CharField(blank=True, max_length=64, null=True),
                ),
                ("context", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sent_notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "target",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="received_notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "notification_events",
                "ordering": ["created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="notificationevent",
            index=models.Index(fields=["project_id"], name="idx_notification_project"),
        ),
        migrations.AddIndex(
            model_name="notificationevent",
            index=models.Index(fields=["task_id"], name="idx_notification_task"),
        ),
    ]
