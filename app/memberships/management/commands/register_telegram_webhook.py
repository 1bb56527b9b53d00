"""
Register Telegram webhooks for active projects.

Usage:
    python manage.py register_telegram_webhook
    python manage.py register_telegram_webhook --project <uuid>
    python manage.py register_telegram_webhook --info
"""

from django.core.management.base import BaseCommand, CommandError

from memberships.models import Project
from memberships.services import WebhookRegistrationService


class Command(BaseCommand):
    help = "Point each active project's bot at this service (setWebhook)."

    def add_arguments(self, parser):
        parser.add_argument("--project", help="Only this project id")
        parser.add_argument(
            "--info",
            action="store_true",
            help="Show getWebhookInfo instead of registering",
        )

    def handle(self, *args, **options):
        projects = Project.objects.filter(is_active=True)
        if options["project"]:
            projects = projects.filter(pk=options["project"])
        if not projects.exists():
            raise CommandError("No active project matched")

        failures = 0
        for project in projects:
            if options["info"]:
                result = WebhookRegistrationService.info(project)
                if result.success:
                    data = result.data or {}
                    self.stdout.write(
                        f"{project.name}: url={data.get('url', '')} "
                        f"pending={data.get('pending_update_count', 0)}"
                    )
                    continue
            else:
                result = WebhookRegistrationService.register(project)
                if result.success:
                    self.stdout.write(self.style.SUCCESS(f"{project.name}: {result.data}"))
                    continue

            failures += 1
            self.stderr.write(self.style.ERROR(f"{project.name}: {result.error}"))

        if failures:
            raise CommandError(f"{failures} project(s) failed")
