"""
Celery tasks for the subscription bot.

This module provides async tasks for:
- Processing recorded webhook events (Telegram updates, Stripe events)
- Retrying failed and resetting stuck webhook events
- The expiry sweep: reminders before expiry, expiry + removal after
- Retrying failed subscriber notifications

Periodic schedules are created by the 0002 data migration
(django-celery-beat).

Usage:
    from memberships.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from core.exceptions import ConcurrencyConflict

from memberships.exceptions import LockAcquisitionError
from memberships.locks import DistributedLock
from memberships.models import FailedNotification, Subscriber, WebhookEvent
from memberships.services import NotificationDispatcher, SubscriberService
from memberships.state_machines import NotifyAction, SubscriberStatus, WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_WEBHOOK_RETRIES = 5
STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100

EXPIRY_SWEEP_LOCK_KEY = "memberships:expiry-sweep"
EXPIRY_SWEEP_LOCK_TTL = 600


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a recorded webhook event.

    1. Loads the WebhookEvent by ID
    2. Skips it if already processed
    3. Claims it (PENDING/FAILED -> PROCESSING), skipping if another worker has it
    4. Dispatches to the router or a Stripe handler
    5. Marks as processed or failed

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    from memberships.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.select_related("project").get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.status == WebhookEventStatus.PROCESSED:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={"webhook_event_id": str(webhook_event_id), "event_id": webhook_event.event_id},
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    if not webhook_event.claim():
        logger.info(
            "WebhookEvent is being processed by another worker, skipping",
            extra={"webhook_event_id": str(webhook_event_id), "event_id": webhook_event.event_id},
        )
        return {"status": "already_claimed", "webhook_event_id": str(webhook_event_id)}

    log_extra = {
        "webhook_event_id": str(webhook_event_id),
        "provider": webhook_event.provider,
        "event_id": webhook_event.event_id,
        "event_type": webhook_event.event_type,
    }
    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={**log_extra, "retry_count": webhook_event.retry_count},
    )

    # Runs outside a transaction; each subscriber transition commits on its own
    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save()
        logger.exception("Webhook processing failed with exception", extra=log_extra)
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save()
        logger.info("Webhook processed successfully", extra=log_extra)
        return {"status": "processed", "webhook_event_id": str(webhook_event_id)}

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg)
    webhook_event.save()
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={**log_extra, "error_code": result.error_code},
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": error_msg,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """Re-queue failed webhook events that still have attempts left."""
    max_retries = getattr(settings, "WEBHOOK_MAX_RETRIES", MAX_WEBHOOK_RETRIES)
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=max_retries,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "event_id": webhook.event_id,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Reset webhooks stuck in PROCESSING to FAILED so they are retried.

    Covers workers that crashed mid-event.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={"webhook_event_id": str(webhook.id), "event_id": webhook.event_id},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Expiry Sweep
# =============================================================================


@shared_task
def check_expiring_subscriptions() -> dict:
    """
    Send expiry reminders and expire lapsed subscriptions.

    Reminders go out once per flag: EXPIRY_REMINDER_DAYS (3) before
    expiry and FINAL_REMINDER_DAYS (1) before. Subscribers past their
    expiry are moved ACTIVE -> EXPIRED, removed from the channel and
    notified. Overlapping runs are excluded by a distributed lock.
    """
    stats = {"reminders_sent": 0, "expired": 0, "conflicts": 0}
    try:
        with DistributedLock(EXPIRY_SWEEP_LOCK_KEY, ttl=EXPIRY_SWEEP_LOCK_TTL, blocking=False):
            now = timezone.now()
            stats["reminders_sent"] = _send_expiry_reminders(now)
            stats["expired"], stats["conflicts"] = _expire_lapsed(now)
    except LockAcquisitionError:
        logger.info("Expiry sweep already running, skipping")
        return {"status": "skipped"}

    logger.info("Expiry sweep completed", extra=stats)
    return stats


def _send_expiry_reminders(now) -> int:
    reminder_days = getattr(settings, "EXPIRY_REMINDER_DAYS", 3)
    final_days = getattr(settings, "FINAL_REMINDER_DAYS", 1)

    candidates = (
        Subscriber.objects.select_related("project", "plan")
        .filter(
            status=SubscriberStatus.ACTIVE,
            expiry_date__gt=now,
            expiry_date__lte=now + timedelta(days=reminder_days),
            project__is_active=True,
        )
        .exclude(expiry_reminder_sent=True, final_reminder_sent=True)
        .order_by("expiry_date")
    )

    sent = 0
    for subscriber in candidates:
        if subscriber.expiry_date <= now + timedelta(days=final_days):
            if subscriber.final_reminder_sent:
                continue
            claimed = SubscriberService.mark_reminder_sent(subscriber, "final_reminder_sent")
            # The earlier reminder is moot once the final one goes out
            if claimed and not subscriber.expiry_reminder_sent:
                SubscriberService.mark_reminder_sent(subscriber, "expiry_reminder_sent")
        elif subscriber.expiry_reminder_sent:
            continue
        else:
            claimed = SubscriberService.mark_reminder_sent(subscriber, "expiry_reminder_sent")

        if not claimed:
            continue

        NotificationDispatcher.notify(
            subscriber,
            NotifyAction.EXPIRING_SOON,
            expiry_date=subscriber.expiry_date,
            days=subscriber.days_remaining(now),
        )
        sent += 1
    return sent


def _expire_lapsed(now) -> tuple[int, int]:
    lapsed = (
        Subscriber.objects.select_related("project", "plan")
        .filter(status=SubscriberStatus.ACTIVE, expiry_date__lte=now)
        .order_by("expiry_date")
    )

    expired = conflicts = 0
    for subscriber in lapsed:
        try:
            SubscriberService.expire(subscriber)
        except ConcurrencyConflict as e:
            conflicts += 1
            logger.info(
                "Skipped expiry, subscriber changed concurrently",
                extra={"subscriber_id": str(subscriber.id), "error_code": e.error_code},
            )
            continue
        expired += 1
    return expired, conflicts


# =============================================================================
# Notification Retry
# =============================================================================


@shared_task
def retry_failed_notifications() -> dict:
    """
    Redeliver failed notifications whose backoff has elapsed.

    Each attempt pushes next_retry_at out by 2^n minutes until
    max_retries is reached. Rows whose subscriber has changed status since
    are closed without sending.
    """
    now = timezone.now()
    due = FailedNotification.objects.due(now).select_related(
        "subscriber", "subscriber__project", "subscriber__plan"
    )[:RETRY_BATCH_SIZE]

    delivered = failed = superseded = 0
    for notification in due:
        outcome = NotificationDispatcher.redeliver(notification)
        if outcome.superseded:
            notification.mark_superseded(notification.subscriber.status)
            superseded += 1
        elif outcome.message_sent:
            notification.mark_delivered()
            delivered += 1
        else:
            notification.schedule_next_attempt(outcome.error or "Delivery failed", now=now)
            failed += 1
            if notification.is_exhausted:
                logger.warning(
                    "Notification retries exhausted",
                    extra={
                        "failed_notification_id": str(notification.id),
                        "subscriber_id": str(notification.subscriber_id),
                        "action": notification.action,
                    },
                )
        notification.save()

    logger.info(
        "Notification retry completed",
        extra={"delivered": delivered, "failed": failed, "superseded": superseded},
    )
    return {"delivered": delivered, "failed": failed, "superseded": superseded}
