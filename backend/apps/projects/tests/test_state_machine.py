from django.test import SimpleTestCase

from apps.projects.state_machine import validate_transition
from core.exceptions import InvalidStateError


class TaskTransitionTests(SimpleTestCase):
    def test_review_cycle(self):
        self.assertTrue(validate_transition("Task", "Ongoing", "InReview"))
        self.assertTrue(validate_transition("Task", "InReview", "Approved"))
        self.assertTrue(validate_transition("Task", "InReview", "Rejected"))
        self.assertTrue(validate_transition("Task", "Rejected", "Ongoing"))
        self.assertTrue(validate_transition("Task", "Rejected", "InReview"))

    def test_rollback_edge(self):
        self.assertTrue(validate_transition("Task", "Approved", "InReview"))

    def test_cannot_approve_without_review(self):
        with self.assertRaises(InvalidStateError) as ctx:
            validate_transition("Task", "Ongoing", "Approved")
        self.assertEqual(ctx.exception.details["allowed_transitions"], ["InReview"])

    def test_approved_cannot_be_rejected(self):
        with self.assertRaises(InvalidStateError):
            validate_transition("Task", "Approved", "Rejected")

    def test_unknown_status(self):
        with self.assertRaises(InvalidStateError):
            validate_transition("Task", "Archived", "Ongoing")

    def test_unknown_entity(self):
        with self.assertRaises(ValueError):
            validate_transition("Invoice", "sent", "paid")


class ProjectTransitionTests(SimpleTestCase):
    def test_completion_and_reopen(self):
        self.assertTrue(validate_transition("Project", "Ongoing", "Completed"))
        self.assertTrue(validate_transition("Project", "Completed", "Ongoing"))

    def test_completed_cannot_pause(self):
        with self.assertRaises(InvalidStateError):
            validate_transition("Project", "Completed", "Paused")
