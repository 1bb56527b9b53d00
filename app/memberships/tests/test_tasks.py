"""
Tests for memberships Celery tasks.

Tasks are called directly; Redis is replaced by the mock_redis fixture and
Telegram by the shared telegram mock.
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from memberships.exceptions import TelegramAPIError
from memberships.models import FailedNotification, Subscriber, WebhookEvent
from memberships.services import SubscriberService
from memberships.state_machines import NotifyAction, SubscriberStatus, WebhookEventStatus
from memberships.tasks import (
    EXPIRY_SWEEP_LOCK_KEY,
    check_expiring_subscriptions,
    cleanup_stuck_webhooks,
    process_webhook_event,
    retry_failed_notifications,
    retry_failed_webhooks,
)
from memberships.tests.conftest import sent_texts
from memberships.tests.factories import (
    ActiveSubscriberFactory,
    FailedNotificationFactory,
    ProjectFactory,
    StripeWebhookEventFactory,
    WebhookEventFactory,
)


def active_expiring_in(project, plan, delta, **kwargs):
    now = timezone.now()
    return ActiveSubscriberFactory(
        project=project,
        plan=plan,
        start_date=now - timedelta(days=30),
        expiry_date=now + delta,
        **kwargs,
    )


# =============================================================================
# Webhook Processing
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    """Tests for process_webhook_event task."""

    def test_processes_telegram_update(self, telegram):
        event = WebhookEventFactory()

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.processed_at is not None
        assert event.retry_count == 1
        telegram.send_message.assert_called_once()

    def test_skips_processed_event(self, telegram):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_processed"
        telegram.send_message.assert_not_called()

    def test_event_held_by_another_worker_is_skipped(self, telegram):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSING, retry_count=1)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_claimed"
        telegram.send_message.assert_not_called()
        event.refresh_from_db()
        assert event.retry_count == 1

    def test_failed_event_is_claimed_again(self, telegram):
        event = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event.refresh_from_db()
        assert event.retry_count == 2

    def test_committed_transition_survives_later_failure(
        self, project, plan, subscriber, mocker
    ):
        """A handler error after a transition does not undo the transition."""
        event = WebhookEventFactory(project=project)

        def select_plan_then_fail(project_arg, payload):
            SubscriberService.transition(subscriber, "select_plan", plan=plan)
            raise RuntimeError("worker lost")

        mocker.patch(
            "memberships.webhooks.handlers.route_update", side_effect=select_plan_then_fail
        )

        with pytest.raises(RuntimeError):
            process_webhook_event(str(event.id))

        subscriber.refresh_from_db()
        assert subscriber.plan == plan
        assert subscriber.version == 2
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED

    def test_missing_event(self):
        result = process_webhook_event("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "not_found"

    def test_handler_failure_marks_failed(self):
        event = StripeWebhookEventFactory()

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert "client_reference_id" in event.error_message

    def test_exception_marks_failed_and_reraises(self, mocker):
        event = WebhookEventFactory()
        mocker.patch(
            "memberships.webhooks.handlers.dispatch_webhook",
            side_effect=RuntimeError("database went away"),
        )

        with pytest.raises(RuntimeError):
            process_webhook_event(str(event.id))

        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "RuntimeError: database went away"

    def test_redelivered_update_is_not_replayed(self, telegram):
        """A duplicate delivery of an already processed update does nothing."""
        event = WebhookEventFactory()
        process_webhook_event(str(event.id))
        process_webhook_event(str(event.id))

        assert telegram.send_message.call_count == 1


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    """Tests for retry_failed_webhooks task."""

    def test_queues_failed_with_attempts_left(self, mocker):
        delay = mocker.patch("memberships.tasks.process_webhook_event.delay")
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=2)
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=5)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        delay.assert_called_once_with(str(retryable.id))


@pytest.mark.django_db
class TestCleanupStuckWebhooks:
    """Tests for cleanup_stuck_webhooks task."""

    def test_resets_old_processing_events(self):
        stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        fresh = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk=stuck.pk).update(
            updated_at=timezone.now() - timedelta(hours=1)
        )

        result = cleanup_stuck_webhooks()

        assert result == {"reset_count": 1}
        stuck.refresh_from_db()
        fresh.refresh_from_db()
        assert stuck.status == WebhookEventStatus.FAILED
        assert fresh.status == WebhookEventStatus.PROCESSING


# =============================================================================
# Expiry Sweep
# =============================================================================


@pytest.mark.django_db
class TestCheckExpiringSubscriptions:
    """Tests for check_expiring_subscriptions task."""

    def test_first_reminder_sent_once(self, project, plan, telegram, mock_redis):
        subscriber = active_expiring_in(project, plan, timedelta(days=2, hours=12))

        first = check_expiring_subscriptions()
        second = check_expiring_subscriptions()

        assert first["reminders_sent"] == 1
        assert second["reminders_sent"] == 0
        assert "Expiring Soon" in sent_texts(telegram)[0]
        subscriber.refresh_from_db()
        assert subscriber.expiry_reminder_sent is True
        assert subscriber.final_reminder_sent is False

    def test_final_reminder_after_first(self, project, plan, telegram, mock_redis):
        subscriber = active_expiring_in(
            project, plan, timedelta(hours=12), expiry_reminder_sent=True
        )

        result = check_expiring_subscriptions()

        assert result["reminders_sent"] == 1
        subscriber.refresh_from_db()
        assert subscriber.final_reminder_sent is True

    def test_final_window_sets_both_flags(self, project, plan, telegram, mock_redis):
        subscriber = active_expiring_in(project, plan, timedelta(hours=12))

        check_expiring_subscriptions()
        result = check_expiring_subscriptions()

        assert result["reminders_sent"] == 0
        assert telegram.send_message.call_count == 1
        subscriber.refresh_from_db()
        assert subscriber.expiry_reminder_sent is True
        assert subscriber.final_reminder_sent is True

    def test_outside_window_is_left_alone(self, project, plan, telegram, mock_redis):
        active_expiring_in(project, plan, timedelta(days=10))

        result = check_expiring_subscriptions()

        assert result == {"reminders_sent": 0, "expired": 0, "conflicts": 0}
        telegram.send_message.assert_not_called()

    def test_inactive_project_gets_no_reminders(self, plan, telegram, mock_redis):
        project = ProjectFactory(is_active=False)
        active_expiring_in(project, plan, timedelta(days=2))

        assert check_expiring_subscriptions()["reminders_sent"] == 0

    def test_expires_and_removes_lapsed(
        self, project, plan, telegram, mock_redis, django_capture_on_commit_callbacks
    ):
        lapsed = active_expiring_in(project, plan, -timedelta(hours=1))

        with django_capture_on_commit_callbacks(execute=True):
            result = check_expiring_subscriptions()

        assert result["expired"] == 1
        lapsed.refresh_from_db()
        assert lapsed.status == SubscriberStatus.EXPIRED
        telegram.ban_chat_member.assert_called_once_with(
            project.channel_id, lapsed.telegram_user_id
        )
        assert "Subscription Expired" in sent_texts(telegram)[-1]

    def test_changed_subscriber_counts_as_conflict(
        self, project, plan, telegram, mock_redis, mocker
    ):
        """A row that leaves ACTIVE mid-sweep is neither expired nor kicked."""
        lapsed = active_expiring_in(project, plan, -timedelta(hours=1))

        def suspend_first(subscriber, name, **kwargs):
            Subscriber.objects.filter(pk=subscriber.pk).update(status=SubscriberStatus.SUSPENDED)
            return original(subscriber, name, **kwargs)

        original = SubscriberService.transition
        mocker.patch.object(SubscriberService, "transition", side_effect=suspend_first)

        result = check_expiring_subscriptions()

        assert result["expired"] == 0
        assert result["conflicts"] == 1
        lapsed.refresh_from_db()
        # The injected write shares the refused transaction and rolls back with it
        assert lapsed.status == SubscriberStatus.ACTIVE
        telegram.ban_chat_member.assert_not_called()

    @freeze_time("2026-03-01 12:00:00")
    def test_reminders_then_expiry_over_time(
        self, project, plan, telegram, mock_redis, django_capture_on_commit_callbacks
    ):
        subscriber = ActiveSubscriberFactory(
            project=project,
            plan=plan,
            start_date=timezone.now(),
            expiry_date=timezone.now() + timedelta(days=30),
        )

        with freeze_time("2026-03-20 12:00:00"):
            assert check_expiring_subscriptions()["reminders_sent"] == 0

        # Three days out
        with freeze_time("2026-03-28 13:00:00"):
            assert check_expiring_subscriptions()["reminders_sent"] == 1
            assert check_expiring_subscriptions()["reminders_sent"] == 0

        # Final day
        with freeze_time("2026-03-30 18:00:00"):
            assert check_expiring_subscriptions()["reminders_sent"] == 1

        with freeze_time("2026-03-31 12:00:01"), django_capture_on_commit_callbacks(execute=True):
            result = check_expiring_subscriptions()

        assert result["expired"] == 1
        subscriber.refresh_from_db()
        assert subscriber.status == SubscriberStatus.EXPIRED
        assert telegram.send_message.call_count == 3

    def test_skipped_when_lock_held(self, project, plan, telegram, mock_redis):
        mock_redis.set.return_value = None
        active_expiring_in(project, plan, timedelta(days=2))

        result = check_expiring_subscriptions()

        assert result == {"status": "skipped"}
        telegram.send_message.assert_not_called()
        assert mock_redis.set.call_args.args[0] == f"lock:{EXPIRY_SWEEP_LOCK_KEY}"

    def test_lock_released(self, mock_redis, db):
        check_expiring_subscriptions()

        mock_redis.eval.assert_called_once()


# =============================================================================
# Notification Retry
# =============================================================================


@pytest.mark.django_db
class TestRetryFailedNotifications:
    """Tests for retry_failed_notifications task."""

    def test_delivers_due_notification(self, telegram):
        failed = FailedNotificationFactory()

        result = retry_failed_notifications()

        assert result == {"delivered": 1, "failed": 0, "superseded": 0}
        failed.refresh_from_db()
        assert failed.processed_at is not None
        assert "Subscription Extended" in sent_texts(telegram)[0]

    def test_failure_backs_off(self, telegram):
        failed = FailedNotificationFactory()
        telegram.send_message.side_effect = TelegramAPIError("Telegram sendMessage failed: HTTP 502")
        before = timezone.now()

        result = retry_failed_notifications()

        assert result == {"delivered": 0, "failed": 1, "superseded": 0}
        failed.refresh_from_db()
        assert failed.retry_count == 1
        assert failed.processed_at is None
        assert failed.next_retry_at >= before + timedelta(minutes=2)
        # Redelivery never records a second row
        assert FailedNotification.objects.count() == 1

    def test_reactivated_subscriber_is_not_suspended_again(
        self, suspended_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        failed = FailedNotificationFactory(
            subscriber=suspended_subscriber, action=NotifyAction.SUSPENDED
        )
        with django_capture_on_commit_callbacks(execute=True):
            SubscriberService.reactivate(suspended_subscriber.pk)
        telegram.reset_mock()

        result = retry_failed_notifications()

        assert result == {"delivered": 0, "failed": 0, "superseded": 1}
        telegram.ban_chat_member.assert_not_called()
        telegram.send_message.assert_not_called()
        failed.refresh_from_db()
        assert failed.processed_at is not None
        assert "now active" in failed.error_message
        suspended_subscriber.refresh_from_db()
        assert suspended_subscriber.status == SubscriberStatus.ACTIVE

    def test_not_due_is_left_alone(self, telegram):
        FailedNotificationFactory(next_retry_at=timezone.now() + timedelta(minutes=10))

        assert retry_failed_notifications() == {"delivered": 0, "failed": 0, "superseded": 0}
        telegram.send_message.assert_not_called()

    def test_exhausted_is_not_retried_again(self, telegram):
        failed = FailedNotificationFactory(retry_count=4, max_retries=5)
        telegram.send_message.side_effect = TelegramAPIError("Telegram sendMessage failed")

        retry_failed_notifications()
        failed.refresh_from_db()
        assert failed.is_exhausted

        assert retry_failed_notifications() == {"delivered": 0, "failed": 0, "superseded": 0}
