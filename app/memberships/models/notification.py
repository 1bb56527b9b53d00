"""
FailedNotification model: user-facing messages that could not be delivered.

A committed transition never rolls back because its notification failed.
Instead the dispatcher records the attempt here and the
retry_failed_notifications task resends it with exponential backoff.
"""

from __future__ import annotations

from datetime import timedelta

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from memberships.state_machines import NotifyAction, SubscriberStatus


class FailedNotificationQuerySet(models.QuerySet):
    def due(self, now=None) -> FailedNotificationQuerySet:
        """Unprocessed rows whose next attempt is due and that have attempts left."""
        now = now or timezone.now()
        return self.filter(
            processed_at__isnull=True,
            next_retry_at__lte=now,
            retry_count__lt=models.F("max_retries"),
        )


class FailedNotification(UUIDPrimaryKeyMixin, BaseModel):
    """
    A notification queued for redelivery.

    Fields:
        subscriber: Recipient
        action: NotifyAction value
        subscriber_status: Status the notification announced; a retry is
            dropped once the subscriber has moved on
        payload: Keyword arguments for the dispatcher (reason, expiry_date, days)
        retry_count: Delivery attempts made by the retry task
        max_retries: Attempts before giving up
        next_retry_at: Earliest time of the next attempt
        processed_at: Set once delivered (or abandoned)
        error_message: Last delivery error
    """

    subscriber = models.ForeignKey(
        "memberships.Subscriber",
        on_delete=models.CASCADE,
        related_name="failed_notifications",
    )

    action = models.CharField(max_length=20, choices=NotifyAction.choices)

    subscriber_status = models.CharField(
        max_length=20,
        choices=SubscriberStatus.choices,
        blank=True,
        default="",
    )

    payload = models.JSONField(default=dict, blank=True)

    retry_count = models.PositiveSmallIntegerField(default=0)

    max_retries = models.PositiveSmallIntegerField(default=5)

    next_retry_at = models.DateTimeField(default=timezone.now, db_index=True)

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(blank=True, default="")

    objects = FailedNotificationQuerySet.as_manager()

    class Meta:
        ordering = ["next_retry_at"]
        verbose_name = "Failed Notification"
        verbose_name_plural = "Failed Notifications"

    def __str__(self) -> str:
        return f"FailedNotification({self.action}, attempts={self.retry_count})"

    @property
    def is_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def schedule_next_attempt(self, error_message: str, now=None) -> None:
        """
        Record a failed attempt and push next_retry_at out by 2^n minutes.

        Note: Does not save - caller must save after calling.
        """
        now = now or timezone.now()
        self.retry_count += 1
        self.error_message = error_message
        self.next_retry_at = now + timedelta(minutes=2**self.retry_count)

    def mark_delivered(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_superseded(self, current_status: str) -> None:
        """
        Close the row without sending: the subscriber is no longer in the
        status this notification announced.

        Note: Does not save - caller must save after calling.
        """
        self.processed_at = timezone.now()
        self.error_message = f"Superseded: subscriber is now {current_status}"
