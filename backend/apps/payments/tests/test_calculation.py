from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase

from apps.payments import calculation
from core.exceptions import ValidationError


def project(total="5000.00", paid="0.00", milestones=3, project_id="C-R001"):
    return SimpleNamespace(
        project_id=project_id,
        total_budget=Decimal(total),
        paid_to_date=Decimal(paid),
        milestone_count=milestones,
    )


class MilestoneInvoiceTests(SimpleTestCase):
    def test_three_way_split_rounds_each_share(self):
        shares = [
            calculation.milestone_invoice(project(), idx).amount for idx in (1, 2, 3)
        ]
        self.assertEqual(shares, [Decimal("1666.67")] * 3)
        self.assertEqual(sum(shares), Decimal("5000.01"))

    def test_numbering_and_description(self):
        invoice = calculation.milestone_invoice(project(), 2)
        self.assertEqual(invoice.kind, "milestone")
        self.assertEqual(invoice.milestone_number, 2)
        self.assertIn("Milestone 2 of 3", invoice.description)

    def test_index_out_of_range(self):
        with self.assertRaises(ValidationError):
            calculation.milestone_invoice(project(), 4)
        with self.assertRaises(ValidationError):
            calculation.milestone_invoice(project(), 0)

    def test_zero_milestones(self):
        with self.assertRaises(ValidationError):
            calculation.milestone_invoice(project(milestones=0), 1)

    def test_negative_budget(self):
        with self.assertRaises(ValidationError):
            calculation.milestone_invoice(project(total="-1"), 1)

    def test_zero_budget_bills_nothing(self):
        invoice = calculation.milestone_invoice(project(total="0"), 1)
        self.assertEqual(invoice.amount, Decimal("0.00"))


class CompletionInvoiceTests(SimpleTestCase):
    def test_upfront_is_twelve_percent(self):
        invoice = calculation.upfront_invoice(project())
        self.assertEqual(invoice.amount, Decimal("600.00"))
        self.assertEqual(invoice.kind, "upfrontPayout")

    def test_completion_pays_the_rest(self):
        invoice = calculation.completion_invoice(project(paid="600.00"))
        self.assertEqual(invoice.amount, Decimal("4400.00"))
        self.assertEqual(invoice.kind, "completionPayout")

    def test_upfront_plus_completion_equals_budget(self):
        p = project(total="1234.57")
        upfront = calculation.upfront_invoice(p).amount
        p.paid_to_date = upfront
        final = calculation.completion_invoice(p).amount
        self.assertEqual(upfront + final, Decimal("1234.57"))

    def test_upfront_percent_bounds(self):
        with self.assertRaises(ValidationError):
            calculation.upfront_invoice(project(), 0)
        with self.assertRaises(ValidationError):
            calculation.upfront_invoice(project(), 101)

    def test_manual_invoice_amount(self):
        self.assertEqual(
            calculation.manual_invoice_amount("5000", 4), Decimal("1100.00")
        )
        with self.assertRaises(ValidationError):
            calculation.manual_invoice_amount("5000", 0)


class BudgetTests(SimpleTestCase):
    def test_round_half_up(self):
        self.assertEqual(calculation.round2(Decimal("0.005")), Decimal("0.01"))
        self.assertEqual(calculation.round2(Decimal("2.675")), Decimal("2.68"))

    def test_budget_integrity(self):
        p = project(paid="4000.00")
        ok = calculation.validate_budget_integrity(p, "1000.00")
        self.assertTrue(ok.is_valid)
        self.assertEqual(ok.remaining, Decimal("1000.00"))

        over = calculation.validate_budget_integrity(p, "1000.01")
        self.assertFalse(over.is_valid)
        self.assertTrue(over.would_result_in_negative)

        zero = calculation.validate_budget_integrity(p, "0")
        self.assertFalse(zero.is_valid)
        self.assertIn("Payment amount must be positive", zero.errors)

    def test_to_amount_rejects_garbage(self):
        with self.assertRaises(ValidationError):
            calculation.to_amount("abc")
        with self.assertRaises(ValidationError):
            calculation.to_amount("NaN")
