"""
Compensating rollback of task approvals.
"""

import json
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import TestCase

from apps.audit.models import AuditLog
from apps.notifications.models import NotificationEvent
from apps.payments import executor, rollback
from apps.payments.models import (
    FinalPayoutMarker,
    IdempotencyKey,
    Invoice,
    PaymentTransaction,
    WalletEntry,
)
from apps.projects import services as project_services
from apps.projects.tests.helpers import make_participants, make_project, task_at
from core.exceptions import NotFoundError, ValidationError


class MilestoneRollbackTests(TestCase):
    def setUp(self):
        self.commissioner, self.freelancer = make_participants("rb")
        self.project = make_project(self.commissioner, self.freelancer, tasks=1)
        self.task = task_at(self.project, 1)
        result = project_services.approve_task(self.task.task_id, self.commissioner.id)
        self.invoice_number = result.invoice_number
        executor.pay_invoice(self.invoice_number, self.commissioner.id)

    def test_restores_pre_approval_state(self):
        report = rollback.rollback(self.task.task_id, actor_id=self.commissioner.id)

        self.assertTrue(report.success)
        self.assertEqual(report.invoice_numbers, [self.invoice_number])
        self.task.refresh_from_db()
        self.assertEqual(self.task.status, "InReview")
        self.assertFalse(self.task.completed)
        self.assertIsNone(self.task.approved_by)
        self.project.refresh_from_db()
        self.assertEqual(self.project.status, "Ongoing")
        self.assertEqual(self.project.paid_to_date, Decimal("0.00"))
        self.assertFalse(Invoice.objects.exists())
        self.assertFalse(PaymentTransaction.objects.exists())
        self.assertFalse(WalletEntry.objects.exists())
        self.assertFalse(
            NotificationEvent.objects.filter(task_id=self.task.task_id).exists()
        )
        self.assertTrue(
            AuditLog.objects.filter(event_type="TASK_APPROVAL_ROLLED_BACK").exists()
        )
        self.assertTrue(AuditLog.objects.filter(event_type="PROJECT_REOPENED").exists())

    def test_reapproval_gets_a_fresh_invoice_number(self):
        rollback.rollback(self.task.task_id)
        result = project_services.approve_task(self.task.task_id, self.commissioner.id)
        self.assertEqual(result.status, "approved")
        self.assertNotEqual(result.invoice_number, self.invoice_number)
        self.assertEqual(result.invoice_number, "INV-T-R001-002")

    def test_second_rollback_reports_nothing_to_do(self):
        rollback.rollback(self.task.task_id)
        report = rollback.rollback(self.task.task_id)
        self.assertTrue(report.success)
        self.assertEqual(report.steps["task_rollback"].count, 0)
        self.assertEqual(report.steps["invoice_rollback"].count, 0)

    def test_project_must_own_task(self):
        with self.assertRaises(ValidationError):
            rollback.rollback(self.task.task_id, project_id="X-R001")

    def test_unknown_task(self):
        with self.assertRaises(NotFoundError):
            rollback.rollback("missing")


class HeuristicMatchTests(TestCase):
    def test_unlinked_invoice_found_by_description(self):
        commissioner, freelancer = make_participants("hm")
        project = make_project(commissioner, freelancer, tasks=1)
        task = task_at(project, 1)
        project_services.approve_task(task.task_id, commissioner.id)
        Invoice.objects.filter(project=project).update(source_task_id=None)

        report = rollback.rollback(task.task_id)

        step = report.steps["invoice_rollback"]
        self.assertTrue(step.heuristic)
        self.assertEqual(step.count, 1)
        self.assertTrue(report.as_dict()["invoice_rollback"]["heuristic"])
        self.assertFalse(Invoice.objects.exists())


class CompletionRollbackTests(TestCase):
    def setUp(self):
        self.commissioner, self.freelancer = make_participants("crb")
        self.project = make_project(
            self.commissioner,
            self.freelancer,
            project_id="C-R010",
            method="completion",
            tasks=2,
        )
        project_services.approve_task(
            task_at(self.project, 1).task_id, self.commissioner.id
        )
        self.last = task_at(self.project, 2)
        self.result = project_services.approve_task(
            self.last.task_id, self.commissioner.id
        )

    def test_releases_final_payout_marker(self):
        self.assertTrue(FinalPayoutMarker.objects.filter(project_id="C-R010").exists())

        report = rollback.rollback(self.last.task_id, project_id="C-R010")

        self.assertTrue(report.success)
        self.assertIn(
            "final payout marker released", report.steps["invoice_rollback"].message
        )
        self.assertFalse(FinalPayoutMarker.objects.exists())
        self.project.refresh_from_db()
        self.assertEqual(self.project.status, "Ongoing")
        self.assertEqual(self.project.paid_to_date, Decimal("0.00"))

        again = project_services.approve_task(self.last.task_id, self.commissioner.id)
        self.assertEqual(again.payout_reason, "ready")
        self.assertNotEqual(
            again.payout_invoice_number, self.result.payout_invoice_number
        )
        self.assertEqual(Invoice.objects.filter(kind="completionPayout").count(), 1)


class ManualPayoutRollbackTests(TestCase):
    def setUp(self):
        self.commissioner, self.freelancer = make_participants("mrb")
        self.project = make_project(
            self.commissioner,
            self.freelancer,
            project_id="C-R011",
            method="completion",
            tasks=2,
        )
        self.task = task_at(self.project, 1)
        project_services.approve_task(self.task.task_id, self.commissioner.id)
        self.invoice = executor.execute_manual_partial(
            "C-R011",
            "hook-rb",
            "250.00",
            self.commissioner.id,
            task_id=self.task.task_id,
        )

    def test_trigger_token_is_released(self):
        report = rollback.rollback(self.task.task_id, project_id="C-R011")

        self.assertTrue(report.success)
        self.assertEqual(report.invoice_numbers, [self.invoice.invoice_number])
        self.assertIn(
            "1 payout claims released", report.steps["invoice_rollback"].message
        )
        self.assertFalse(
            IdempotencyKey.objects.filter(
                key="hook-rb", operation=executor.MANUAL_PARTIAL_PAYOUT
            ).exists()
        )

    def test_same_token_pays_again_after_rollback(self):
        rollback.rollback(self.task.task_id, project_id="C-R011")

        again = executor.execute_manual_partial(
            "C-R011",
            "hook-rb",
            "250.00",
            self.commissioner.id,
            task_id=self.task.task_id,
        )

        self.assertNotEqual(again.invoice_number, self.invoice.invoice_number)
        self.assertTrue(Invoice.objects.filter(pk=again.invoice_number).exists())
        claim = IdempotencyKey.objects.get(
            key="hook-rb", operation=executor.MANUAL_PARTIAL_PAYOUT
        )
        self.assertEqual(claim.target_object_id, again.invoice_number)
        self.project.refresh_from_db()
        self.assertEqual(self.project.paid_to_date, Decimal("250.00"))
        self.assertEqual(WalletEntry.objects.count(), 1)


class PartialFailureTests(TestCase):
    def setUp(self):
        self.commissioner, self.freelancer = make_participants("pf")
        self.project = make_project(self.commissioner, self.freelancer, tasks=1)
        self.task = task_at(self.project, 1)
        result = project_services.approve_task(self.task.task_id, self.commissioner.id)
        executor.pay_invoice(result.invoice_number, self.commissioner.id)

    def test_failed_step_is_reported_and_the_rest_still_run(self):
        with mock.patch(
            "apps.payments.rollback._rollback_notifications",
            side_effect=DatabaseError("notification store unavailable"),
        ):
            report = rollback.rollback(self.task.task_id)

        self.assertFalse(report.success)
        failed = report.steps["notification_rollback"]
        self.assertFalse(failed.success)
        self.assertEqual(failed.message, "notification store unavailable")
        for name in (
            "task_rollback",
            "invoice_rollback",
            "payment_rollback",
            "wallet_rollback",
        ):
            self.assertTrue(report.steps[name].success, name)
        self.assertEqual(
            report.errors, ["notification_rollback: notification store unavailable"]
        )

        self.task.refresh_from_db()
        self.assertEqual(self.task.status, "InReview")
        self.assertFalse(Invoice.objects.exists())
        self.assertFalse(PaymentTransaction.objects.exists())
        self.assertFalse(WalletEntry.objects.exists())
        self.assertTrue(
            NotificationEvent.objects.filter(task_id=self.task.task_id).exists()
        )

        entry = AuditLog.objects.get(event_type="TASK_APPROVAL_ROLLED_BACK")
        self.assertFalse(entry.new_state["success"])
        self.assertFalse(entry.new_state["notification_rollback"]["success"])


class RollbackCommandTests(TestCase):
    def test_json_report(self):
        commissioner, freelancer = make_participants("cmd")
        project = make_project(commissioner, freelancer, tasks=1)
        task = task_at(project, 1)
        project_services.approve_task(task.task_id, commissioner.id)

        out = StringIO()
        call_command("rollback_task_approval", task.task_id, "--json", stdout=out)

        report = json.loads(out.getvalue())
        self.assertTrue(report["success"])
        self.assertEqual(report["taskId"], task.task_id)
        self.assertEqual(report["invoiceNumbers"], ["INV-T-R001-001"])

    def test_unknown_task(self):
        with self.assertRaises(CommandError):
            call_command("rollback_task_approval", "missing", stdout=StringIO())
