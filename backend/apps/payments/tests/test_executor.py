"""
Payment executor tests: at-most-once final payout, manual partial payouts,
invoice payment and the upfront invoice.
"""

import threading
from decimal import Decimal
from unittest import mock

from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase

from apps.audit.models import AuditLog
from apps.notifications.models import NotificationEvent
from apps.payments import executor, services
from apps.payments.models import (
    FinalPayoutMarker,
    IdempotencyKey,
    Invoice,
    PaymentTransaction,
    WalletEntry,
)
from apps.payments.readiness import PayoutReadiness
from apps.projects import services as project_services
from apps.projects.models import Project
from apps.projects.tests.helpers import make_participants, make_project, task_at
from core.exceptions import (
    AlreadyProcessedError,
    InsufficientBudgetError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


class FinalPayoutTests(TestCase):
    def setUp(self):
        self.commissioner, self.freelancer = make_participants("fp")
        self.project = make_project(
            self.commissioner,
            self.freelancer,
            project_id="C-R001",
            method="completion",
            tasks=2,
            task_status="Approved",
        )

    def test_pays_remaining_budget_once(self):
        invoice = executor.execute_final("C-R001", actor_id=self.commissioner.id)

        self.assertEqual(invoice.kind, "completionPayout")
        self.assertEqual(invoice.status, "paid")
        self.assertEqual(invoice.total_amount, Decimal("5000.00"))
        self.project.refresh_from_db()
        self.assertEqual(self.project.paid_to_date, Decimal("5000.00"))
        self.assertEqual(self.project.status, "Completed")

        entry = WalletEntry.objects.get(invoice_number=invoice.invoice_number)
        self.assertEqual(entry.user, self.freelancer)
        self.assertEqual(entry.direction, "credit")
        self.assertTrue(
            PaymentTransaction.objects.filter(
                invoice_number=invoice.invoice_number
            ).exists()
        )
        self.assertTrue(
            AuditLog.objects.filter(event_type="FINAL_PAYOUT_EXECUTED").exists()
        )
        for event_type in (
            "completion.project_completed",
            "completion.final_payment",
            "completion.rating_prompt",
        ):
            self.assertTrue(
                NotificationEvent.objects.filter(event_type=event_type).exists()
            )

    def test_second_call_is_a_no_op(self):
        first = executor.execute_final("C-R001")
        with self.assertRaises(AlreadyProcessedError) as ctx:
            executor.execute_final("C-R001")

        self.assertEqual(WalletEntry.objects.count(), 1)
        self.assertEqual(Invoice.objects.filter(kind="completionPayout").count(), 1)
        self.assertEqual(ctx.exception.details["invoiceNumber"], first.invoice_number)

    def test_stale_gate_loses_marker_race(self):
        first = executor.execute_final("C-R001")
        stale = PayoutReadiness(ready=True, reason="ready")

        with mock.patch("apps.payments.readiness.check", return_value=stale):
            with self.assertRaises(AlreadyProcessedError) as ctx:
                executor.execute_final("C-R001")

        self.assertEqual(ctx.exception.details["invoiceNumber"], first.invoice_number)
        self.assertEqual(Invoice.objects.filter(kind="completionPayout").count(), 1)
        self.assertEqual(WalletEntry.objects.count(), 1)
        self.assertEqual(PaymentTransaction.objects.count(), 1)
        self.project.refresh_from_db()
        self.assertEqual(self.project.paid_to_date, Decimal("5000.00"))

    def test_not_ready(self):
        Project.objects.filter(pk="C-R001").update(invoicing_method="milestone")
        with self.assertRaises(InvalidStateError) as ctx:
            executor.execute_final("C-R001")
        self.assertEqual(ctx.exception.details["reason"], "not_completion_project")
        self.assertFalse(FinalPayoutMarker.objects.exists())
        entry = AuditLog.objects.get(event_type="FINAL_PAYOUT_FAILED")
        self.assertEqual(entry.entity_id, "C-R001")
        self.assertEqual(entry.new_state["error"], "INVALID_STATE")

    def test_unknown_project(self):
        with self.assertRaises(NotFoundError):
            executor.execute_final("C-R404")
        self.assertTrue(
            AuditLog.objects.filter(
                event_type="FINAL_PAYOUT_FAILED", entity_id="C-R404"
            ).exists()
        )

    def test_already_processed_is_not_a_failure(self):
        executor.execute_final("C-R001")
        with self.assertRaises(AlreadyProcessedError):
            executor.execute_final("C-R001")
        self.assertFalse(
            AuditLog.objects.filter(event_type="FINAL_PAYOUT_FAILED").exists()
        )

    def test_failure_after_claim_releases_marker(self):
        with mock.patch(
            "apps.payments.executor.settle_invoice",
            side_effect=ValidationError("ledger unavailable"),
        ):
            with self.assertRaises(ValidationError):
                executor.execute_final("C-R001")

        self.assertFalse(FinalPayoutMarker.objects.exists())
        self.assertFalse(Invoice.objects.exists())
        self.assertTrue(
            AuditLog.objects.filter(event_type="FINAL_PAYOUT_FAILED").exists()
        )
        # Retry succeeds once the failure is gone.
        invoice = executor.execute_final("C-R001")
        self.assertEqual(invoice.total_amount, Decimal("5000.00"))


class ConcurrentFinalPayoutTests(TransactionTestCase):
    """Two callers race for the same final payout on separate connections."""

    def setUp(self):
        self.commissioner, self.freelancer = make_participants("cfp")
        make_project(
            self.commissioner,
            self.freelancer,
            project_id="C-R020",
            method="completion",
            tasks=2,
            task_status="Approved",
        )

    def _race(self, callers=2):
        barrier = threading.Barrier(callers)
        outcomes = []
        lock = threading.Lock()

        def worker():
            try:
                barrier.wait(timeout=5)
                invoice = executor.execute_final(
                    "C-R020", actor_id=self.commissioner.id
                )
                outcome = ("paid", invoice.invoice_number)
            except AlreadyProcessedError as exc:
                outcome = ("already_processed", exc.details.get("invoiceNumber"))
            except InvalidStateError as exc:
                outcome = ("not_ready", exc.details.get("reason"))
            except DatabaseError as exc:
                # SQLite reports a locked table instead of waiting on the row.
                outcome = ("locked", str(exc))
            finally:
                connection.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(callers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return outcomes

    def test_final_payout_fires_once(self):
        outcomes = self._race()

        self.assertEqual(len(outcomes), 2)
        paid = [number for kind, number in outcomes if kind == "paid"]
        self.assertLessEqual(len(paid), 1)
        if not paid:
            paid = [executor.execute_final("C-R020").invoice_number]

        with self.assertRaises(AlreadyProcessedError) as ctx:
            executor.execute_final("C-R020")
        self.assertEqual(ctx.exception.details["invoiceNumber"], paid[0])

        self.assertEqual(Invoice.objects.filter(kind="completionPayout").count(), 1)
        self.assertEqual(WalletEntry.objects.count(), 1)
        self.assertEqual(PaymentTransaction.objects.count(), 1)
        marker = FinalPayoutMarker.objects.get(project_id="C-R020")
        self.assertEqual(marker.triggering_invoice_number, paid[0])
        project = Project.objects.get(pk="C-R020")
        self.assertEqual(project.paid_to_date, Decimal("5000.00"))
        self.assertEqual(project.status, "Completed")


class CompletionLifecycleTests(TestCase):
    """Upfront 12% at activation, the rest when the last task is approved."""

    def setUp(self):
        self.commissioner, self.freelancer = make_participants("lc")
        self.project = make_project(
            self.commissioner,
            self.freelancer,
            project_id="C-R002",
            method="completion",
            tasks=2,
        )

    def test_upfront_then_final_sum_to_budget(self):
        upfront = services.issue_upfront_invoice("C-R002", self.commissioner.id)
        self.assertEqual(upfront.total_amount, Decimal("600.00"))
        self.assertEqual(upfront.status, "sent")
        executor.pay_invoice(upfront.invoice_number, self.commissioner.id)

        project_services.approve_task(
            task_at(self.project, 1).task_id, self.commissioner.id
        )
        result = project_services.approve_task(
            task_at(self.project, 2).task_id, self.commissioner.id
        )

        final = Invoice.objects.get(invoice_number=result.payout_invoice_number)
        self.assertEqual(final.total_amount, Decimal("4400.00"))
        credited = sum(
            WalletEntry.objects.filter(user=self.freelancer).values_list(
                "amount", flat=True
            ),
            Decimal("0.00"),
        )
        self.assertEqual(credited, Decimal("5000.00"))
        self.project.refresh_from_db()
        self.assertEqual(self.project.paid_to_date, Decimal("5000.00"))

    def test_upfront_issued_once(self):
        first = services.issue_upfront_invoice("C-R002", self.commissioner.id)
        with self.assertRaises(AlreadyProcessedError) as ctx:
            services.issue_upfront_invoice("C-R002", self.commissioner.id)
        self.assertEqual(ctx.exception.details["invoiceNumber"], first.invoice_number)
        self.assertEqual(Invoice.objects.filter(kind="upfrontPayout").count(), 1)

    def test_upfront_only_for_completion_projects(self):
        make_project(self.commissioner, self.freelancer, project_id="M-R001")
        with self.assertRaises(InvalidStateError):
            services.issue_upfront_invoice("M-R001", self.commissioner.id)


class ManualPartialPayoutTests(TestCase):
    def setUp(self):
        self.commissioner, self.freelancer = make_participants("mp")
        self.project = make_project(
            self.commissioner,
            self.freelancer,
            project_id="C-R003",
            method="completion",
            tasks=2,
        )

    def test_pays_and_records_claim(self):
        invoice = executor.execute_manual_partial(
            "C-R003", "hook-1", "250.00", self.commissioner.id
        )
        self.assertEqual(invoice.kind, "manualPartial")
        self.assertEqual(invoice.total_amount, Decimal("250.00"))
        claim = IdempotencyKey.objects.get(
            key="hook-1", operation=executor.MANUAL_PARTIAL_PAYOUT
        )
        self.assertEqual(claim.target_object_id, invoice.invoice_number)
        self.project.refresh_from_db()
        self.assertEqual(self.project.paid_to_date, Decimal("250.00"))

    def test_replayed_trigger_pays_nothing(self):
        first = executor.execute_manual_partial(
            "C-R003", "hook-2", "250.00", self.commissioner.id
        )
        with self.assertRaises(AlreadyProcessedError) as ctx:
            executor.execute_manual_partial(
                "C-R003", "hook-2", "250.00", self.commissioner.id
            )
        self.assertEqual(ctx.exception.details["invoiceNumber"], first.invoice_number)
        self.assertEqual(WalletEntry.objects.count(), 1)
        self.project.refresh_from_db()
        self.assertEqual(self.project.paid_to_date, Decimal("250.00"))
        self.assertFalse(
            AuditLog.objects.filter(event_type="MANUAL_PAYOUT_FAILED").exists()
        )

    def test_insufficient_budget_keeps_token_usable(self):
        with self.assertRaises(InsufficientBudgetError):
            executor.execute_manual_partial(
                "C-R003", "hook-3", "5000.01", self.commissioner.id
            )
        self.assertFalse(IdempotencyKey.objects.filter(key="hook-3").exists())
        failure = AuditLog.objects.get(event_type="MANUAL_PAYOUT_FAILED")
        self.assertEqual(failure.entity_id, "C-R003")
        self.assertEqual(failure.new_state["error"], "INSUFFICIENT_BUDGET")
        self.assertEqual(failure.actor, self.commissioner)
        invoice = executor.execute_manual_partial(
            "C-R003", "hook-3", "5000.00", self.commissioner.id
        )
        self.assertEqual(invoice.total_amount, Decimal("5000.00"))

    def test_validation(self):
        with self.assertRaises(ValidationError):
            executor.execute_manual_partial("C-R003", "", "10", self.commissioner.id)
        with self.assertRaises(ValidationError):
            executor.execute_manual_partial(
                "C-R003", "hook-4", "-5", self.commissioner.id
            )

    def test_only_commissioner(self):
        with self.assertRaises(PermissionDeniedError):
            executor.execute_manual_partial(
                "C-R003", "hook-5", "10", self.freelancer.id
            )
        self.assertTrue(
            AuditLog.objects.filter(
                event_type="MANUAL_PAYOUT_FAILED", actor=self.freelancer
            ).exists()
        )


class PayInvoiceTests(TestCase):
    def setUp(self):
        self.commissioner, self.freelancer = make_participants("pi")
        self.project = make_project(self.commissioner, self.freelancer, tasks=1)
        result = project_services.approve_task(
            task_at(self.project, 1).task_id, self.commissioner.id
        )
        self.invoice_number = result.invoice_number

    def test_pay_sent_invoice(self):
        invoice = executor.pay_invoice(self.invoice_number, self.commissioner.id)
        self.assertEqual(invoice.status, "paid")
        self.assertIsNotNone(invoice.paid_at)
        self.project.refresh_from_db()
        self.assertEqual(self.project.paid_to_date, Decimal("5000.00"))
        txn = PaymentTransaction.objects.get(invoice_number=self.invoice_number)
        self.assertEqual(txn.trigger, "invoicePayment")

    def test_second_payment_is_a_no_op(self):
        executor.pay_invoice(self.invoice_number, self.commissioner.id)
        with self.assertRaises(AlreadyProcessedError):
            executor.pay_invoice(self.invoice_number, self.commissioner.id)
        self.assertEqual(WalletEntry.objects.count(), 1)

    def test_draft_cannot_be_paid(self):
        Invoice.objects.filter(pk=self.invoice_number).update(status="draft")
        with self.assertRaises(InvalidStateError):
            executor.pay_invoice(self.invoice_number, self.commissioner.id)

    def test_freelancer_cannot_pay(self):
        with self.assertRaises(PermissionDeniedError):
            executor.pay_invoice(self.invoice_number, self.freelancer.id)

    def test_unknown_invoice(self):
        with self.assertRaises(NotFoundError):
            executor.pay_invoice("INV-X-001", self.commissioner.id)
