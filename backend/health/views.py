from django.apps import apps
from django.core.cache import caches
from django.db import connection
from django.db.migrations.executor import MigrationExecutor
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

# Tables the payout pipeline claims markers in; unreadable means not ready.
CLAIM_TABLES = {
    "final_payout_markers": ("payments", "FinalPayoutMarker"),
    "idempotency_keys": ("payments", "IdempotencyKey"),
    "id_counters": ("projects", "IdCounter"),
}


class LiveView(APIView):
    """Liveness probe: process is running. No DB or external deps."""

    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({"status": "alive"})


class ReadyView(APIView):
    """Readiness probe: DB, migrations, cache, claim tables."""

    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        checks = {
            "database": self._check_database(),
            "migrations": self._check_migrations(),
            "cache": self._check_cache(),
        }
        for name, (app_label, model_name) in CLAIM_TABLES.items():
            checks[name] = self._check_table(app_label, model_name)

        ready = all(v == "ok" for v in checks.values())
        return Response(
            {"status": "ready" if ready else "not_ready", "checks": checks},
            status=200 if ready else 503,
        )

    def _check_database(self):
        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1;")
        except Exception:
            return "error"
        return "ok"

    def _check_migrations(self):
        try:
            executor = MigrationExecutor(connection)
            plan = executor.migration_plan(executor.loader.graph.leaf_nodes())
        except Exception:
            return "error"
        return "ok" if not plan else "pending"

    def _check_cache(self):
        try:
            cache = caches["default"]
            cache.set("health_check", "ok", timeout=5)
            return "ok" if cache.get("health_check") == "ok" else "error"
        except Exception:
            return "error"

    def _check_table(self, app_label, model_name):
        try:
            apps.get_model(app_label, model_name).objects.exists()
        except Exception:
            return "error"
        return "ok"
