"""
Roll back the side effects of a task approval.

Run: python manage.py rollback_task_approval <task_id> [--project T-R001]
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.payments.rollback import STEPS, rollback
from core.exceptions import DomainError


class Command(BaseCommand):
    help = "Undo a task approval: task, invoices, payments, notifications, wallet"

    def add_arguments(self, parser):
        parser.add_argument("task_id")
        parser.add_argument("--project", default=None)
        parser.add_argument(
            "--json", action="store_true", help="Print the report as JSON"
        )

    def handle(self, *args, **options):
        try:
            report = rollback(options["task_id"], project_id=options["project"])
        except DomainError as exc:
            raise CommandError(exc.message)

        if options["json"]:
            self.stdout.write(json.dumps(report.as_dict(), indent=2))
        else:
            for name in STEPS:
                step = report.steps[name]
                line = f"{name}: {step.message} ({step.count})"
                if step.heuristic:
                    line += " [heuristic match]"
                style = self.style.SUCCESS if step.success else self.style.ERROR
                self.stdout.write(style(line))

        if not report.success:
            raise CommandError(
                "Rollback finished with errors: " + "; ".join(report.errors)
            )
