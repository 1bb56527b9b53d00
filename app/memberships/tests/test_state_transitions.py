"""
Tests for the Subscriber state machine and lifecycle date rules.

Covers:
- Approval period: fresh grant vs. renewal of an active subscription
- Extension: never backdates
- django-fsm transition sources and side effects
- Compare-and-set persistence (commit_transition)
"""

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django_fsm import TransitionNotAllowed, can_proceed

from memberships.exceptions import StaleTransitionError
from memberships.models import Subscriber, compute_approval_period, compute_extended_expiry
from memberships.state_machines import PaymentMethod, SubscriberStatus

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=dt_timezone.utc)


# =============================================================================
# Date Rules
# =============================================================================


class TestComputeApprovalPeriod:
    """Tests for compute_approval_period."""

    def test_fresh_grant_starts_now(self):
        """Should start now and run for the plan duration."""
        start, expiry = compute_approval_period(
            SubscriberStatus.PENDING_APPROVAL, None, None, 30, NOW
        )

        assert start == NOW
        assert expiry == NOW + timedelta(days=30)

    def test_active_renewal_appends_to_current_expiry(self):
        """Should keep the start date and add the duration to the future expiry."""
        original_start = NOW - timedelta(days=20)
        current_expiry = NOW + timedelta(days=10)

        start, expiry = compute_approval_period(
            SubscriberStatus.ACTIVE, original_start, current_expiry, 30, NOW
        )

        assert start == original_start
        assert expiry == NOW + timedelta(days=40)

    def test_active_with_lapsed_expiry_gets_fresh_grant(self):
        """An active row whose expiry already passed restarts from now."""
        start, expiry = compute_approval_period(
            SubscriberStatus.ACTIVE,
            NOW - timedelta(days=40),
            NOW - timedelta(days=1),
            30,
            NOW,
        )

        assert start == NOW
        assert expiry == NOW + timedelta(days=30)

    def test_expired_subscriber_gets_fresh_grant(self):
        start, expiry = compute_approval_period(
            SubscriberStatus.EXPIRED,
            NOW - timedelta(days=60),
            NOW - timedelta(days=30),
            7,
            NOW,
        )

        assert start == NOW
        assert expiry == NOW + timedelta(days=7)


class TestComputeExtendedExpiry:
    """Tests for compute_extended_expiry."""

    def test_extends_future_expiry(self):
        assert compute_extended_expiry(NOW + timedelta(days=5), 7, NOW) == NOW + timedelta(days=12)

    def test_never_backdates(self):
        """A lapsed expiry is extended from now, not from the past date."""
        assert compute_extended_expiry(NOW - timedelta(days=5), 7, NOW) == NOW + timedelta(days=7)

    def test_missing_expiry_extends_from_now(self):
        assert compute_extended_expiry(None, 3, NOW) == NOW + timedelta(days=3)


# =============================================================================
# FSM Transitions
# =============================================================================


@pytest.mark.django_db
class TestSubscriberTransitions:
    """Tests for django-fsm transitions on Subscriber."""

    def test_choose_manual_payment_moves_to_awaiting_proof(self, subscriber, plan):
        subscriber.choose_manual_payment(plan=plan)

        assert subscriber.status == SubscriberStatus.AWAITING_PROOF
        assert subscriber.plan == plan
        assert subscriber.payment_method == PaymentMethod.MANUAL

    def test_choose_hosted_payment_keeps_status(self, subscriber, plan):
        """Hosted checkout waits for Stripe; status stays PENDING_PAYMENT."""
        subscriber.choose_hosted_payment(plan=plan)

        assert subscriber.status == SubscriberStatus.PENDING_PAYMENT
        assert subscriber.payment_method == PaymentMethod.STRIPE

    def test_select_plan_keeps_active_subscriber_active(self, active_subscriber, plan):
        active_subscriber.select_plan(plan=plan)

        assert active_subscriber.status == SubscriberStatus.ACTIVE

    def test_select_plan_restarts_expired_subscriber(self, subscriber, plan):
        subscriber.status = SubscriberStatus.EXPIRED

        subscriber.select_plan(plan=plan)

        assert subscriber.status == SubscriberStatus.PENDING_PAYMENT

    def test_submit_proof_records_reference(self, awaiting_subscriber):
        awaiting_subscriber.submit_proof(proof_url="telegram_file:AgAD", proof_key="")

        assert awaiting_subscriber.status == SubscriberStatus.PENDING_APPROVAL
        assert awaiting_subscriber.payment_proof_url == "telegram_file:AgAD"

    def test_submit_proof_requires_awaiting_proof(self, subscriber):
        with pytest.raises(TransitionNotAllowed):
            subscriber.submit_proof(proof_url="telegram_file:AgAD")

    def test_approve_sets_dates_and_clears_reminders(self, pending_approval_subscriber, plan):
        pending_approval_subscriber.expiry_reminder_sent = True

        pending_approval_subscriber.approve(plan=plan, now=NOW)

        assert pending_approval_subscriber.status == SubscriberStatus.ACTIVE
        assert pending_approval_subscriber.start_date == NOW
        assert pending_approval_subscriber.expiry_date == NOW + timedelta(days=30)
        assert pending_approval_subscriber.expiry_reminder_sent is False

    def test_reject_keeps_dates(self, pending_approval_subscriber):
        """Rejection records the reason and leaves start/expiry untouched."""
        pending_approval_subscriber.start_date = None
        pending_approval_subscriber.expiry_date = None

        pending_approval_subscriber.reject(reason="Blurry screenshot")

        assert pending_approval_subscriber.status == SubscriberStatus.REJECTED
        assert pending_approval_subscriber.rejection_reason == "Blurry screenshot"
        assert pending_approval_subscriber.start_date is None
        assert pending_approval_subscriber.expiry_date is None

    def test_reject_not_allowed_from_active(self, active_subscriber):
        assert not can_proceed(active_subscriber.reject)

    def test_suspend_and_reactivate_keep_expiry(self, active_subscriber):
        expiry = active_subscriber.expiry_date

        active_subscriber.suspend(reason="Chargeback", now=NOW)
        assert active_subscriber.status == SubscriberStatus.SUSPENDED
        assert active_subscriber.suspended_at == NOW

        active_subscriber.reactivate()
        assert active_subscriber.status == SubscriberStatus.ACTIVE
        assert active_subscriber.suspended_at is None
        assert active_subscriber.suspension_reason == ""
        assert active_subscriber.expiry_date == expiry

    def test_extend_only_from_active(self, suspended_subscriber):
        assert not can_proceed(suspended_subscriber.extend)

    def test_expire_only_from_active(self, suspended_subscriber):
        """The sweep never expires a suspended row; revoke does."""
        assert not can_proceed(suspended_subscriber.expire)
        assert can_proceed(suspended_subscriber.revoke)

    def test_revoke_appends_reason_to_notes(self, active_subscriber):
        active_subscriber.notes = "VIP"

        active_subscriber.revoke(reason="Shared the invite link")

        assert active_subscriber.status == SubscriberStatus.EXPIRED
        assert active_subscriber.notes.startswith("VIP\n[")
        assert active_subscriber.notes.endswith("Revoked: Shared the invite link")

    def test_revoke_without_reason_keeps_notes(self, active_subscriber):
        active_subscriber.revoke()

        assert active_subscriber.notes == ""

    def test_restart_clears_rejection_reason(self, subscriber):
        subscriber.status = SubscriberStatus.REJECTED
        subscriber.rejection_reason = "Wrong amount"

        subscriber.restart()

        assert subscriber.status == SubscriberStatus.PENDING_PAYMENT
        assert subscriber.rejection_reason == ""


# =============================================================================
# Compare-and-Set
# =============================================================================


@pytest.mark.django_db
class TestCommitTransition:
    """Tests for Subscriber.commit_transition."""

    def test_commit_persists_and_bumps_version(self, subscriber, plan):
        expected_status, expected_version = subscriber.status, subscriber.version

        subscriber.choose_manual_payment(plan=plan)
        subscriber.commit_transition(expected_status, expected_version)

        stored = Subscriber.objects.get(pk=subscriber.pk)
        assert stored.status == SubscriberStatus.AWAITING_PROOF
        assert stored.plan_id == plan.id
        assert stored.version == expected_version + 1
        assert subscriber.version == expected_version + 1

    def test_stale_copy_cannot_commit(self, awaiting_subscriber):
        """Of two copies read at the same version, only the first commit wins."""
        first = Subscriber.objects.get(pk=awaiting_subscriber.pk)
        second = Subscriber.objects.get(pk=awaiting_subscriber.pk)

        first.submit_proof(proof_url="telegram_file:one")
        first.commit_transition(SubscriberStatus.AWAITING_PROOF, first.version)

        second.submit_proof(proof_url="telegram_file:two")
        with pytest.raises(StaleTransitionError) as exc_info:
            second.commit_transition(SubscriberStatus.AWAITING_PROOF, second.version)

        assert exc_info.value.error_code == "STALE_TRANSITION"
        stored = Subscriber.objects.get(pk=awaiting_subscriber.pk)
        assert stored.payment_proof_url == "telegram_file:one"
        assert stored.version == awaiting_subscriber.version + 1

    def test_commit_does_not_touch_invite_link(self, active_subscriber):
        Subscriber.objects.filter(pk=active_subscriber.pk).update(invite_link="https://t.me/+kept")

        active_subscriber.suspend(reason="", now=NOW)
        active_subscriber.commit_transition(SubscriberStatus.ACTIVE, active_subscriber.version)

        assert Subscriber.objects.get(pk=active_subscriber.pk).invite_link == "https://t.me/+kept"
