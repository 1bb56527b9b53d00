"""
Memberships admin configuration.

Subscriber status is never edited directly: bulk actions run the same
SubscriberService transitions as the admin API, so notifications and
compare-and-set rules apply.
"""

from django.contrib import admin, messages

from memberships.models import FailedNotification, Plan, Project, Subscriber, WebhookEvent
from memberships.services import SubscriberService, WebhookRegistrationService


class PlanInline(admin.TabularInline):
    model = Plan
    extra = 0
    fields = ["name", "price", "currency", "duration_days", "is_active"]


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    """
    Admin configuration for Project.

    The bot token is write-only in the form and never shown in lists.
    """

    list_display = ["name", "channel_id", "manual_payment_enabled", "stripe_enabled", "is_active"]
    list_filter = ["is_active", "manual_payment_enabled", "stripe_enabled"]
    search_fields = ["name", "channel_id"]
    readonly_fields = ["id", "created_at", "updated_at"]
    inlines = [PlanInline]
    actions = ["register_webhook"]

    @admin.action(description="Register Telegram webhook")
    def register_webhook(self, request, queryset):
        for project in queryset:
            result = WebhookRegistrationService.register(project)
            if result.success:
                self.message_user(request, f"Registered webhook for {project.name}.")
            else:
                self.message_user(
                    request,
                    f"Webhook registration failed for {project.name}: {result.error}",
                    level=messages.ERROR,
                )


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ["name", "project", "price", "currency", "duration_days", "is_active"]
    list_filter = ["is_active", "currency", "project"]
    search_fields = ["name", "project__name"]
    readonly_fields = ["id", "created_at", "updated_at"]


@admin.register(Subscriber)
class SubscriberAdmin(admin.ModelAdmin):
    """
    Admin configuration for Subscriber.

    Lifecycle fields are read-only; use the actions.
    """

    list_display = [
        "telegram_user_id",
        "first_name",
        "username",
        "project",
        "status",
        "plan",
        "payment_method",
        "expiry_date",
    ]
    list_filter = ["status", "payment_method", "project"]
    search_fields = ["telegram_user_id", "username", "first_name"]
    readonly_fields = [
        "id",
        "project",
        "telegram_user_id",
        "status",
        "plan",
        "payment_method",
        "payment_proof_url",
        "payment_proof_key",
        "start_date",
        "expiry_date",
        "invite_link",
        "suspended_at",
        "suspension_reason",
        "rejection_reason",
        "expiry_reminder_sent",
        "final_reminder_sent",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]
    actions = ["approve", "reject", "suspend", "reactivate", "extend_30_days", "revoke"]

    def has_add_permission(self, request) -> bool:
        """Subscribers are created by the bot."""
        return False

    def _run(self, request, queryset, operation, label, **kwargs):
        done = 0
        for subscriber in queryset:
            result = operation(subscriber.pk, **kwargs)
            if result.success:
                done += 1
                for warning in result.warnings:
                    self.message_user(request, warning, level=messages.WARNING)
            else:
                self.message_user(
                    request,
                    f"{subscriber}: {result.error}",
                    level=messages.ERROR,
                )
        self.message_user(request, f"{label} {done} subscriber(s).")

    @admin.action(description="Approve payment")
    def approve(self, request, queryset):
        self._run(request, queryset, SubscriberService.approve, "Approved")

    @admin.action(description="Reject payment")
    def reject(self, request, queryset):
        self._run(request, queryset, SubscriberService.reject, "Rejected")

    @admin.action(description="Suspend")
    def suspend(self, request, queryset):
        self._run(request, queryset, SubscriberService.suspend, "Suspended")

    @admin.action(description="Reactivate")
    def reactivate(self, request, queryset):
        self._run(request, queryset, SubscriberService.reactivate, "Reactivated")

    @admin.action(description="Extend by 30 days")
    def extend_30_days(self, request, queryset):
        self._run(request, queryset, SubscriberService.extend, "Extended", days=30)

    @admin.action(description="Revoke access")
    def revoke(self, request, queryset):
        self._run(request, queryset, SubscriberService.revoke, "Revoked")


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Read-only ledger of inbound events.
    """

    list_display = ["event_id", "provider", "event_type", "status", "retry_count", "created_at"]
    list_filter = ["provider", "status", "event_type"]
    search_fields = ["event_id"]
    readonly_fields = [
        "id",
        "provider",
        "event_id",
        "event_type",
        "project",
        "payload",
        "status",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(FailedNotification)
class FailedNotificationAdmin(admin.ModelAdmin):
    list_display = ["subscriber", "action", "retry_count", "max_retries", "next_retry_at", "processed_at"]
    list_filter = ["action"]
    readonly_fields = ["id", "subscriber", "action", "payload", "created_at", "updated_at"]
    ordering = ["next_retry_at"]
