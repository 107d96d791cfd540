"""
URL routing for payout endpoints.
"""

from django.urls import path
from apps.payments import views

app_name = "payments"

urlpatterns = [
    path(
        "projects/<str:projectId>/payout-readiness",
        views.payout_readiness,
        name="payout-readiness",
    ),
    path(
        "projects/<str:projectId>/manual-payouts",
        views.execute_manual_payout,
        name="manual-payouts",
    ),
    path(
        "projects/<str:projectId>/upfront-invoice",
        views.issue_upfront_invoice,
        name="upfront-invoice",
    ),
    path(
        "projects/<str:projectId>/statement",
        views.export_statement,
        name="export-statement",
    ),
    path("invoices/<str:invoiceNumber>/pay", views.pay_invoice, name="pay-invoice"),
    path(
        "tasks/<str:taskId>/rollback",
        views.rollback_task_approval,
        name="rollback-task-approval",
    ),
]
