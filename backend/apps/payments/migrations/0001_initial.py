import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("projects", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Invoice",
            fields=[
                (
                    "invoice_number",
                    models.CharField(max_length=64, primary_key=True, serialize=False),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("milestone", "Milestone"),
                            ("upfrontPayout", "Upfront Payout"),
                            ("completionPayout", "Completion Payout"),
                            ("manualPartial", "Manual Partial"),
                        ],
                        max_length=20,
                    ),
                ),
                ("milestone_number", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "total_amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=15,
                        validators=[MinValueValidator(Decimal("0.00"))],
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("draft", "Draft"), ("sent", "Sent"), ("paid", "Paid")],
                        default="sent",
                        max_length=10,
                    ),
                ),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                (
                    "source_task_id",
                    models.CharField(blank=True, max_length=64, null=True),
                ),
                ("description", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="projects.project",
                    ),
                ),
                (
                    "freelancer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "commissioner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices_issued",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "invoices",
                "ordering": ["created_at", "invoice_number"],
            },
        ),
        migrations.CreateModel(
            name="WalletEntry",
            fields=[
                (
                    "entry_id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=15)),
                (
                    "direction",
                    models.CharField(
                        choices=[("credit", "Credit"), ("debit", "Debit")],
                        max_length=10,
                    ),
                ),
                ("invoice_number", models.CharField(max_length=64)),
                ("project_id", models.CharField(max_length=32)),
                (
                    "source_task_id",
                    models.CharField(blank=True, max_length=64, null=True),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="wallet_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "wallet_entries",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                (
                    "transaction_id",
                    models.CharField(max_length=80, primary_key=True, serialize=False),
                ),
                ("invoice_number", models.CharField(max_length=64, unique=True)),
                ("project_id", models.CharField(max_length=32)),
                (
                    "source_task_id",
                    models.CharField(blank=True, max_length=64, null=True),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=15)),
                ("status", models.CharField(default="paid", max_length=10)),
                ("trigger", models.CharField(max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "payment_transactions",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="FinalPayoutMarker",
            fields=[
                (
                    "project_id",
                    models.CharField(max_length=32, primary_key=True, serialize=False),
                ),
                ("processed_at", models.DateTimeField(auto_now_add=True)),
                ("triggering_invoice_number", models.CharField(max_length=64)),
                ("trigger", models.CharField(max_length=64)),
            ],
            options={
                "db_table": "final_payout_markers",
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("key", models.CharField(db_index=True, max_length=255)),
                ("operation", models.CharField(max_length=100)),
                ("target_object_id", models.CharField(max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "idempotency_keys",
            },
        ),
        migrations.AddConstraint(
            model_name="invoice",
            constraint=models.CheckConstraint(
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
        ),
        migrations.AddConstraint(
            model_name="invoice",
            constraint=models.CheckConstraint(
                condition=models.Q(status__in=["draft", "sent", "paid"]),
                name="valid_invoice_status",
            ),
        ),
        migrations.AddConstraint(
            model_name="invoice",
            constraint=models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name="non_negative_invoice_amount",
            ),
        ),
        migrations.AddConstraint(
            model_name="invoice",
            constraint=models.UniqueConstraint(
                condition=models.Q(kind="completionPayout"),
                fields=["project"],
                name="unique_completion_payout_per_project",
            ),
        ),
        migrations.AddConstraint(
            model_name="invoice",
            constraint=models.UniqueConstraint(
                condition=models.Q(kind="upfrontPayout"),
                fields=["project"],
                name="unique_upfront_payout_per_project",
            ),
        ),
        migrations.AddIndex(
            model_name="invoice",
            index=models.Index(
                fields=["source_task_id"], name="idx_invoice_source_task"
            ),
        ),
        migrations.AddConstraint(
            model_name="walletentry",
            constraint=models.CheckConstraint(
                condition=models.Q(direction__in=["credit", "debit"]),
                name="valid_wallet_direction",
            ),
        ),
        migrations.AddConstraint(
            model_name="walletentry",
            constraint=models.CheckConstraint(
                condition=models.Q(amount__gt=0), name="positive_wallet_amount"
            ),
        ),
        migrations.AddIndex(
            model_name="walletentry",
            index=models.Index(fields=["project_id"], name="idx_wallet_project"),
        ),
        migrations.AddIndex(
            model_name="walletentry",
            index=models.Index(fields=["invoice_number"], name="idx_wallet_invoice"),
        ),
        migrations.AddIndex(
            model_name="paymenttransaction",
            index=models.Index(fields=["project_id"], name="idx_txn_project"),
        ),
        migrations.AddConstraint(
            model_name="idempotencykey",
            constraint=models.UniqueConstraint(
                fields=["key", "operation"], name="unique_idempotency_per_operation"
            ),
        ),
    ]
