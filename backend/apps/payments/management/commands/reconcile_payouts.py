"""
Payout reconciliation management command.

Verifies the payout invariants that are not enforced by a lock.
Run: python manage.py reconcile_payouts [--project T-R001]
"""

from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Count, Sum

from apps.payments.models import (
    FinalPayoutMarker,
    Invoice,
    InvoiceKind,
    InvoiceStatus,
    PaymentTransaction,
    WalletEntry,
)
from apps.projects.models import InvoicingMethod, Project


class Command(BaseCommand):
    help = "Reconcile project payouts and verify payout invariants"

    def add_arguments(self, parser):
        parser.add_argument(
            "--project", help="Only reconcile this project id", default=None
        )

    def handle(self, *args, **options):
        self.stdout.write("Starting payout reconciliation...")

        projects = Project.objects.all().order_by("project_id")
        if options["project"]:
            projects = projects.filter(project_id=options["project"])
        project_ids = list(projects.values_list("project_id", flat=True))
        paid = Invoice.objects.filter(
            project_id__in=project_ids, status=InvoiceStatus.PAID
        )
        errors = []

        # Check 1: paid_to_date equals the sum of paid invoices
        self.stdout.write("\n[1] Checking paid_to_date against paid invoices...")
        sums = dict(
            paid.values("project_id")
            .annotate(total=Sum("total_amount"))
            .values_list("project_id", "total")
        )
        found = len(errors)
        for project in projects:
            expected = sums.get(project.project_id) or Decimal("0.00")
            if project.paid_to_date != expected:
                errors.append(
                    f"Project {project.project_id}: paid_to_date="
                    f"{project.paid_to_date}, paid invoices={expected}"
                )
        if len(errors) == found:
            self.stdout.write(self.style.SUCCESS("  ✓ paid_to_date consistent"))

        # Check 2: at most one paid completion payout per completion project
        self.stdout.write("\n[2] Checking single final payout per project...")
        found = len(errors)
        duplicates = (
            paid.filter(kind=InvoiceKind.COMPLETION_PAYOUT)
            .values("project_id")
            .annotate(n=Count("invoice_number"))
            .filter(n__gt=1)
        )
        for row in duplicates:
            errors.append(
                f"Project {row['project_id']} has {row['n']} completion payouts"
            )
        milestone_final = paid.filter(
            kind=InvoiceKind.COMPLETION_PAYOUT,
            project__invoicing_method=InvoicingMethod.MILESTONE,
        )
        for invoice in milestone_final:
            errors.append(
                f"Milestone project {invoice.project_id} has completion payout "
                f"{invoice.invoice_number}"
            )
        if len(errors) == found:
            self.stdout.write(self.style.SUCCESS("  ✓ Final payouts unique"))

        # Check 3: final payout markers and completion invoices agree
        self.stdout.write("\n[3] Checking final payout markers...")
        found = len(errors)
        markers = {
            m.project_id: m
            for m in FinalPayoutMarker.objects.filter(project_id__in=project_ids)
        }
        final_invoices = {
            inv.project_id: inv
            for inv in paid.filter(kind=InvoiceKind.COMPLETION_PAYOUT)
        }
        for project_id, marker in markers.items():
            invoice = final_invoices.get(project_id)
            if invoice is None:
                errors.append(
                    f"Marker for {project_id} points at missing invoice "
                    f"{marker.triggering_invoice_number}"
                )
            elif invoice.invoice_number != marker.triggering_invoice_number:
                errors.append(
                    f"Marker for {project_id} names "
                    f"{marker.triggering_invoice_number}, paid final invoice is "
                    f"{invoice.invoice_number}"
                )
        for project_id in final_invoices.keys() - markers.keys():
            errors.append(f"Final payout of {project_id} has no marker")
        if len(errors) == found:
            self.stdout.write(self.style.SUCCESS("  ✓ Markers consistent"))

        # Check 4: every paid invoice has its transaction and wallet credit
        self.stdout.write("\n[4] Checking payment transactions and wallet...")
        found = len(errors)
        numbers = list(paid.values_list("invoice_number", flat=True))
        with_txn = set(
            PaymentTransaction.objects.filter(invoice_number__in=numbers).values_list(
                "invoice_number", flat=True
            )
        )
        credited = set(
            WalletEntry.objects.filter(invoice_number__in=numbers).values_list(
                "invoice_number", flat=True
            )
        )
        for invoice in paid:
            if invoice.invoice_number not in with_txn:
                errors.append(f"Invoice {invoice.invoice_number} has no transaction")
            if invoice.total_amount > 0 and invoice.invoice_number not in credited:
                errors.append(f"Invoice {invoice.invoice_number} has no wallet credit")
        if len(errors) == found:
            self.stdout.write(
                self.style.SUCCESS("  ✓ Transactions and wallet present")
            )

        self.stdout.write("\n" + "=" * 50)
        if errors:
            for error in errors:
                self.stdout.write(self.style.ERROR(f"  - {error}"))
            raise CommandError(f"Reconciliation failed: {len(errors)} error(s)")

        self.stdout.write(self.style.SUCCESS("\n✅ RECONCILIATION PASSED"))
        self.stdout.write(f"{len(project_ids)} project(s) verified.")
