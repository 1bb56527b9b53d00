"""
Tests for SubscriberService and ChannelMembershipService.

Administrative operations schedule their notification with
transaction.on_commit, so the tests run them inside
django_capture_on_commit_callbacks(execute=True).
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from core.exceptions import NotFoundError
from memberships.exceptions import (
    InvalidStateTransitionError,
    StaleTransitionError,
    TelegramAPIError,
    TelegramForbiddenError,
)
from memberships.models import FailedNotification, Subscriber
from memberships.services import ChannelMembershipService, MembershipCheck, SubscriberService
from memberships.state_machines import NotifyAction, PaymentMethod, SubscriberStatus
from memberships.tests.conftest import INVITE_LINK
from memberships.tests.factories import PlanFactory, ProjectFactory


# =============================================================================
# Lookup & Upsert
# =============================================================================


@pytest.mark.django_db
class TestUpsert:
    """Tests for SubscriberService.upsert."""

    def test_creates_subscriber_at_plan_selection(self, project):
        subscriber, created = SubscriberService.upsert(project, 777, first_name="Grace")

        assert created is True
        assert subscriber.status == SubscriberStatus.PENDING_PAYMENT
        assert subscriber.first_name == "Grace"

    def test_refreshes_profile_without_bumping_version(self, subscriber):
        updated, created = SubscriberService.upsert(
            subscriber.project,
            subscriber.telegram_user_id,
            first_name="Renamed",
            username="new_handle",
        )

        assert created is False
        stored = Subscriber.objects.get(pk=subscriber.pk)
        assert stored.first_name == "Renamed"
        assert stored.username == "new_handle"
        assert stored.version == subscriber.version

    def test_same_user_in_two_projects_is_two_subscribers(self, subscriber):
        other_project = ProjectFactory()

        other, created = SubscriberService.upsert(other_project, subscriber.telegram_user_id)

        assert created is True
        assert other.pk != subscriber.pk


# =============================================================================
# Transition Runner
# =============================================================================


@pytest.mark.django_db
class TestTransition:
    """Tests for SubscriberService.transition."""

    def test_applies_transition_to_fresh_row(self, subscriber, plan):
        updated = SubscriberService.transition(subscriber, "choose_manual_payment", plan=plan)

        assert updated.status == SubscriberStatus.AWAITING_PROOF
        assert updated.version == subscriber.version + 1

    def test_reloads_instead_of_trusting_stale_instance(self, awaiting_subscriber):
        """A stale in-memory copy cannot apply a transition twice."""
        SubscriberService.transition(awaiting_subscriber, "submit_proof", proof_url="telegram_file:1")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            SubscriberService.transition(
                awaiting_subscriber, "submit_proof", proof_url="telegram_file:2"
            )

        assert exc_info.value.details["current_status"] == SubscriberStatus.PENDING_APPROVAL
        stored = Subscriber.objects.get(pk=awaiting_subscriber.pk)
        assert stored.payment_proof_url == "telegram_file:1"

    def test_lost_race_raises_stale_transition(self, awaiting_subscriber, mocker):
        """A concurrent writer between read and write makes the update match nothing."""
        original_get = SubscriberService.get.__func__

        def get_then_race(cls, subscriber_id):
            current = original_get(cls, subscriber_id)
            Subscriber.objects.filter(pk=subscriber_id).update(version=current.version + 1)
            return current

        mocker.patch.object(SubscriberService, "get", classmethod(get_then_race))

        with pytest.raises(StaleTransitionError):
            SubscriberService.transition(
                awaiting_subscriber, "submit_proof", proof_url="telegram_file:1"
            )

        stored = Subscriber.objects.get(pk=awaiting_subscriber.pk)
        assert stored.status == SubscriberStatus.AWAITING_PROOF

    def test_unknown_subscriber_raises_not_found(self, db):
        with pytest.raises(NotFoundError):
            SubscriberService.transition(
                "00000000-0000-0000-0000-000000000000", "expire"
            )


# =============================================================================
# Administrative Operations
# =============================================================================


@pytest.mark.django_db
class TestApprove:
    """Tests for SubscriberService.approve."""

    def test_approve_activates_and_sends_invite(
        self, pending_approval_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.approve(pending_approval_subscriber.pk)

        assert result.success
        assert result.warnings == []
        subscriber = Subscriber.objects.get(pk=pending_approval_subscriber.pk)
        assert subscriber.status == SubscriberStatus.ACTIVE
        assert subscriber.expiry_date - subscriber.start_date == timedelta(days=30)
        assert subscriber.invite_link == INVITE_LINK

        invite_kwargs = telegram.create_chat_invite_link.call_args.kwargs
        assert invite_kwargs["member_limit"] == 1
        sent = telegram.send_message.call_args.kwargs
        assert sent["chat_id"] == subscriber.telegram_user_id
        assert "Payment Approved" in sent["text"]
        assert sent["reply_markup"]["inline_keyboard"][0][0]["url"] == INVITE_LINK

    def test_approve_active_renews_from_current_expiry(
        self, active_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        previous_start = active_subscriber.start_date
        previous_expiry = active_subscriber.expiry_date

        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.approve(active_subscriber.pk)

        assert result.success
        subscriber = Subscriber.objects.get(pk=active_subscriber.pk)
        assert subscriber.start_date == previous_start
        assert subscriber.expiry_date == previous_expiry + timedelta(days=30)

    def test_approve_with_explicit_plan(
        self, pending_approval_subscriber, project, telegram, django_capture_on_commit_callbacks
    ):
        weekly = PlanFactory(project=project, name="Weekly", duration_days=7)

        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.approve(pending_approval_subscriber.pk, plan_id=weekly.id)

        assert result.success
        assert result.data.plan_id == weekly.id
        assert result.data.expiry_date - result.data.start_date == timedelta(days=7)

    def test_approve_with_other_projects_plan_fails(self, pending_approval_subscriber):
        foreign_plan = PlanFactory()

        result = SubscriberService.approve(pending_approval_subscriber.pk, plan_id=foreign_plan.id)

        assert not result.success
        assert result.error_code == "PLAN_NOT_FOUND"

    def test_approve_without_any_plan_fails(self, subscriber):
        result = SubscriberService.approve(subscriber.pk)

        assert not result.success
        assert result.error_code == "PLAN_REQUIRED"

    def test_approve_rejected_subscriber_is_conflict(self, pending_approval_subscriber):
        Subscriber.objects.filter(pk=pending_approval_subscriber.pk).update(
            status=SubscriberStatus.REJECTED
        )

        result = SubscriberService.approve(pending_approval_subscriber.pk)

        assert not result.success
        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_unknown_subscriber(self, db):
        result = SubscriberService.approve("00000000-0000-0000-0000-000000000000")

        assert result.error_code == "SUBSCRIBER_NOT_FOUND"

    def test_invite_failure_still_activates(
        self, pending_approval_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        """Activation stands even when Telegram refuses the invite link."""
        telegram.create_chat_invite_link.side_effect = TelegramAPIError(
            "Telegram createChatInviteLink failed: Bad Request: not enough rights",
            telegram_error_code=400,
        )

        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.approve(pending_approval_subscriber.pk)

        assert result.success
        assert Subscriber.objects.get(pk=pending_approval_subscriber.pk).is_active
        text = telegram.send_message.call_args.kwargs["text"]
        assert "Could not generate invite link" in text

    def test_notification_failure_is_a_warning(
        self, pending_approval_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        """A failed message never rolls back the approval."""
        telegram.send_message.side_effect = TelegramAPIError(
            "Telegram sendMessage failed: HTTP 502", is_retryable=True
        )

        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.approve(pending_approval_subscriber.pk)

        assert result.success
        assert len(result.warnings) == 1
        assert "not notified" in result.warnings[0]
        assert Subscriber.objects.get(pk=pending_approval_subscriber.pk).is_active
        failed = FailedNotification.objects.get(subscriber=pending_approval_subscriber)
        assert failed.action == NotifyAction.APPROVED


@pytest.mark.django_db
class TestRejectSuspendReactivate:
    """Tests for reject, suspend, reactivate, extend and revoke."""

    def test_reject_notifies_with_escaped_reason(
        self, pending_approval_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.reject(pending_approval_subscriber.pk, "<b>fake</b> receipt")

        assert result.success
        subscriber = Subscriber.objects.get(pk=pending_approval_subscriber.pk)
        assert subscriber.status == SubscriberStatus.REJECTED
        assert subscriber.start_date is None
        assert subscriber.expiry_date is None
        text = telegram.send_message.call_args.kwargs["text"]
        assert "&lt;b&gt;fake&lt;/b&gt; receipt" in text
        telegram.ban_chat_member.assert_not_called()

    def test_suspend_reactivate_extend_scenario(
        self, active_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        """Suspend kicks, reactivate re-invites, extend adds to the kept expiry."""
        expiry = active_subscriber.expiry_date

        with django_capture_on_commit_callbacks(execute=True):
            suspended = SubscriberService.suspend(active_subscriber.pk, "Chargeback")
        assert suspended.success
        assert suspended.data.status == SubscriberStatus.SUSPENDED
        telegram.ban_chat_member.assert_called_once_with(
            active_subscriber.project.channel_id, active_subscriber.telegram_user_id
        )
        telegram.unban_chat_member.assert_called_once()

        with django_capture_on_commit_callbacks(execute=True):
            reactivated = SubscriberService.reactivate(active_subscriber.pk)
        assert reactivated.data.status == SubscriberStatus.ACTIVE
        assert reactivated.data.expiry_date == expiry
        telegram.create_chat_invite_link.assert_called_once()

        with django_capture_on_commit_callbacks(execute=True):
            extended = SubscriberService.extend(active_subscriber.pk, 7)
        assert extended.data.expiry_date == expiry + timedelta(days=7)

        stored = Subscriber.objects.get(pk=active_subscriber.pk)
        assert stored.version == active_subscriber.version + 3

    def test_extend_suspended_is_conflict(self, suspended_subscriber):
        result = SubscriberService.extend(suspended_subscriber.pk, 7)

        assert not result.success
        assert result.error_code == "INVALID_STATE_TRANSITION"

    @pytest.mark.parametrize("days", [0, -3, 3651, True, "7"])
    def test_extend_rejects_invalid_days(self, active_subscriber, days):
        result = SubscriberService.extend(active_subscriber.pk, days)

        assert not result.success
        assert result.error_code == "INVALID_DAYS"

    def test_extend_lapsed_active_extends_from_now(
        self, active_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        Subscriber.objects.filter(pk=active_subscriber.pk).update(
            expiry_date=timezone.now() - timedelta(days=2)
        )

        before = timezone.now()
        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.extend(active_subscriber.pk, 5)

        assert result.data.expiry_date >= before + timedelta(days=5)

    def test_revoke_suspended_expires_and_kicks(
        self, suspended_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.revoke(suspended_subscriber.pk, "Terms violation")

        assert result.data.status == SubscriberStatus.EXPIRED
        assert result.data.suspended_at is None
        assert "Revoked: Terms violation" in result.data.notes
        telegram.ban_chat_member.assert_called_once()
        assert "Access Revoked" in telegram.send_message.call_args.kwargs["text"]

    def test_blocked_bot_is_not_queued_for_retry(
        self, active_subscriber, telegram, django_capture_on_commit_callbacks
    ):
        telegram.send_message.side_effect = TelegramForbiddenError(
            "Telegram sendMessage forbidden: bot was blocked by the user",
            telegram_error_code=403,
        )

        with django_capture_on_commit_callbacks(execute=True):
            result = SubscriberService.suspend(active_subscriber.pk)

        assert result.success
        assert result.warnings
        assert not FailedNotification.objects.exists()


# =============================================================================
# Sweep Helpers
# =============================================================================


@pytest.mark.django_db
class TestMarkReminderSent:
    """Tests for SubscriberService.mark_reminder_sent."""

    def test_claims_flag_once(self, active_subscriber):
        stale_copy = Subscriber.objects.get(pk=active_subscriber.pk)

        assert SubscriberService.mark_reminder_sent(active_subscriber, "expiry_reminder_sent")
        assert not SubscriberService.mark_reminder_sent(stale_copy, "expiry_reminder_sent")
        assert Subscriber.objects.get(pk=active_subscriber.pk).expiry_reminder_sent

    def test_unknown_flag(self, active_subscriber):
        with pytest.raises(ValueError):
            SubscriberService.mark_reminder_sent(active_subscriber, "status")


# =============================================================================
# Channel Membership
# =============================================================================


@pytest.mark.django_db
class TestChannelMembershipService:
    """Tests for invite issuance, removal and membership checks."""

    def test_issue_invite_stores_link(self, active_subscriber, telegram):
        link = ChannelMembershipService.issue_invite(
            active_subscriber.project, active_subscriber, telegram
        )

        assert link == INVITE_LINK
        assert Subscriber.objects.get(pk=active_subscriber.pk).invite_link == INVITE_LINK

    def test_remove_member_treats_absent_user_as_removed(self, active_subscriber, telegram):
        telegram.ban_chat_member.side_effect = TelegramAPIError(
            "Telegram banChatMember failed: Bad Request: USER_NOT_PARTICIPANT user is not a member",
            telegram_error_code=400,
        )

        removed = ChannelMembershipService.remove_member(
            active_subscriber.project, active_subscriber.telegram_user_id, telegram
        )

        assert removed is True
        telegram.unban_chat_member.assert_not_called()

    def test_remove_member_reports_permission_failure(self, active_subscriber, telegram):
        telegram.ban_chat_member.side_effect = TelegramAPIError(
            "Telegram banChatMember failed: Bad Request: not enough rights",
            telegram_error_code=400,
        )

        removed = ChannelMembershipService.remove_member(
            active_subscriber.project, active_subscriber.telegram_user_id, telegram
        )

        assert removed is False

    def test_failed_unban_still_counts_as_removed(self, active_subscriber, telegram):
        telegram.unban_chat_member.side_effect = TelegramAPIError("Telegram unbanChatMember failed")

        assert ChannelMembershipService.remove_member(
            active_subscriber.project, active_subscriber.telegram_user_id, telegram
        )

    @pytest.mark.parametrize(
        "member_status,is_member",
        [
            ("member", True),
            ("restricted", True),
            ("creator", True),
            ("left", False),
            ("kicked", False),
        ],
    )
    def test_check_member(self, active_subscriber, telegram, member_status, is_member):
        telegram.get_chat_member.return_value = {"status": member_status}

        check = ChannelMembershipService.check_member(
            active_subscriber.project, active_subscriber.telegram_user_id
        )

        assert check == MembershipCheck(is_member=is_member, status=member_status)
        telegram.get_chat_member.assert_called_once_with(
            active_subscriber.project.channel_id, active_subscriber.telegram_user_id
        )

    def test_check_member_unknown_user_never_joined(self, active_subscriber, telegram):
        telegram.get_chat_member.side_effect = TelegramAPIError(
            "Telegram getChatMember failed: Bad Request: user not found",
            telegram_error_code=400,
        )

        check = ChannelMembershipService.check_member(
            active_subscriber.project, active_subscriber.telegram_user_id
        )

        assert check == MembershipCheck(is_member=False, status="never_joined")

    def test_check_member_failure_is_unknown(self, active_subscriber, telegram):
        telegram.get_chat_member.side_effect = TelegramAPIError("Telegram getChatMember failed: HTTP 502")

        check = ChannelMembershipService.check_member(
            active_subscriber.project, active_subscriber.telegram_user_id
        )

        assert check.status == "unknown"
        assert check.is_member is False
        assert Subscriber.objects.get(pk=active_subscriber.pk).status == SubscriberStatus.ACTIVE
