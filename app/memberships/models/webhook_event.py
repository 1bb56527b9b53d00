"""
WebhookEvent model: ledger of inbound Telegram updates and Stripe events.

Every inbound webhook is recorded here before it is processed. The unique
(provider, event_id) constraint turns redelivered updates into no-ops and
gives failed events a row the retry task can pick up.

Event ids:
    Telegram: "<project uuid>:<update_id>" (update ids are per bot)
    Stripe: the event id (evt_xxx)

Usage:
    from memberships.models import WebhookEvent
    from memberships.state_machines import WebhookEventStatus, WebhookProvider

    event, created = WebhookEvent.objects.get_or_create(
        provider=WebhookProvider.TELEGRAM,
        event_id=f"{project.id}:{update_id}",
        defaults={"event_type": "message", "payload": update, "project": project},
    )

    if not created and event.status == WebhookEventStatus.PROCESSED:
        # Redelivery - already handled
        ...
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from memberships.state_machines import WebhookEventStatus, WebhookProvider


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks inbound webhook events for idempotent processing.

    Processing Flow:
        1. Gateway authenticates the request
        2. get_or_create on (provider, event_id)
        3. Already PROCESSED -> acknowledge without reprocessing
        4. Otherwise queue process_webhook_event
        5. Task marks PROCESSING, dispatches, marks PROCESSED or FAILED
        6. FAILED events are retried by retry_failed_webhooks

    Fields:
        provider: telegram or stripe
        event_id: Provider-scoped unique id
        event_type: Update kind (message, callback_query) or Stripe type
        payload: Raw JSON body
        project: Resolved project (Telegram events only)
        status: Processing status
        processed_at: When processing succeeded
        error_message: Last failure
        retry_count: Number of processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    provider = models.CharField(
        max_length=20,
        choices=WebhookProvider.choices,
        help_text="Source of the event",
    )

    event_id = models.CharField(
        max_length=255,
        help_text="Provider-scoped event id - unique with provider for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Update kind or Stripe event type",
    )

    project = models.ForeignKey(
        "memberships.Project",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="webhook_events",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(help_text="Raw webhook body (JSON)")

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="memberships_status_8a27c5_idx"),
            models.Index(fields=["status", "retry_count"], name="memberships_status_51f0de_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "event_id"],
                name="unique_webhook_event_per_provider",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider}:{self.event_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Failed with attempts left (WEBHOOK_MAX_RETRIES, default 5)."""
        max_retries = getattr(settings, "WEBHOOK_MAX_RETRIES", 5)
        return self.is_failed and self.retry_count < max_retries

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def claim(self) -> bool:
        """
        Move a PENDING or FAILED event to PROCESSING with a conditional update.

        Only one worker wins the claim for a given attempt, so a redelivered
        update cannot be handled twice at the same time. Saves on success.

        Returns:
            True if this caller now owns the event
        """
        claimed = type(self).objects.filter(
            pk=self.pk,
            status__in=[WebhookEventStatus.PENDING, WebhookEventStatus.FAILED],
        ).update(
            status=WebhookEventStatus.PROCESSING,
            retry_count=F("retry_count") + 1,
            updated_at=timezone.now(),
        )
        if claimed:
            self.refresh_from_db(fields=["status", "retry_count", "updated_at"])
        return bool(claimed)

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
