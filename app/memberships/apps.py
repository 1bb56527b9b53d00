"""
Django app configuration for memberships.
"""

from django.apps import AppConfig


class MembershipsConfig(AppConfig):
    """Configuration for the memberships application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "memberships"
    verbose_name = "Memberships"

    def ready(self):
        """
        Import handler modules so their registries are populated.

        Bot commands/callbacks and Stripe event handlers register
        themselves with decorators at import time.
        """
        from memberships.bot import handlers  # noqa: F401
        from memberships.webhooks import handlers as webhook_handlers  # noqa: F401
