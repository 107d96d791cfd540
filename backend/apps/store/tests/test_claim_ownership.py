"""
Claim rows may only be written by their owning modules.
"""

import importlib.util
from pathlib import Path

from django.test import SimpleTestCase

BACKEND = Path(__file__).resolve().parents[3]


def _load_checker():
    spec = importlib.util.spec_from_file_location(
        "enforce_service_layer", BACKEND / "scripts" / "enforce_service_layer.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class ClaimOwnershipTests(SimpleTestCase):
    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls.checker = _load_checker()

    def test_tree_is_clean(self):
        self.assertEqual(self.checker.scan_tree(BACKEND), [])

    def test_direct_marker_create_is_flagged(self):
        source = "FinalPayoutMarker.objects.create(project_id='A-R001')\n"
        issues = self.checker.scan_source(source, "apps/projects/services.py")
        self.assertEqual(issues, [(1, "FinalPayoutMarker")])

    def test_create_only_outside_owner_is_flagged(self):
        source = "entity_store.create_only(IdempotencyKey, key='k', operation='X')\n"
        issues = self.checker.scan_source(source, "apps/payments/views.py")
        self.assertEqual(issues, [(1, "IdempotencyKey")])

    def test_chained_delete_is_flagged(self):
        source = "IdCounter.objects.filter(prefix='A:request').delete()\n"
        issues = self.checker.scan_source(source, "apps/payments/rollback.py")
        self.assertEqual(issues, [(1, "IdCounter")])

    def test_reads_are_allowed(self):
        source = "FinalPayoutMarker.objects.filter(project_id='A-R001').exists()\n"
        self.assertEqual(
            self.checker.scan_source(source, "apps/payments/readiness.py"), []
        )

    def test_owner_may_write(self):
        source = "entity_store.create_only(FinalPayoutMarker, project_id='A-R001')\n"
        self.assertEqual(
            self.checker.scan_source(source, "apps/payments/executor.py"), []
        )
