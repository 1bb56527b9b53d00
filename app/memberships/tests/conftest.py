"""
Pytest fixtures for membership tests.

Outbound Telegram traffic is replaced by a single MagicMock shared by
every module that builds a TelegramAdapter, so tests can assert on the
exact Bot API calls a flow makes.

Usage:
    def test_approve_sends_invite(awaiting_subscriber, telegram):
        ...
        telegram.create_chat_invite_link.assert_called_once()
"""

from datetime import timedelta

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from memberships.adapters import TelegramAdapter
from memberships.state_machines import SubscriberStatus
from memberships.tests.factories import (
    ActiveSubscriberFactory,
    PlanFactory,
    ProjectFactory,
    SubscriberFactory,
)

INVITE_LINK = "https://t.me/+invite123"

TELEGRAM_ADAPTER_PATHS = [
    "memberships.bot.router.TelegramAdapter",
    "memberships.services.channel_membership.TelegramAdapter",
    "memberships.services.notification_dispatcher.TelegramAdapter",
    "memberships.services.payment_intake.TelegramAdapter",
    "memberships.services.webhook_registration.TelegramAdapter",
]


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def project(db):
    return ProjectFactory()


@pytest.fixture
def plan(project):
    return PlanFactory(project=project, name="Monthly", duration_days=30)


@pytest.fixture
def subscriber(project):
    """Subscriber at plan selection."""
    return SubscriberFactory(project=project)


@pytest.fixture
def awaiting_subscriber(project, plan):
    return SubscriberFactory(
        project=project,
        plan=plan,
        payment_method="manual",
        status=SubscriberStatus.AWAITING_PROOF,
    )


@pytest.fixture
def pending_approval_subscriber(project, plan):
    return SubscriberFactory(
        project=project,
        plan=plan,
        payment_method="manual",
        payment_proof_url="telegram_file:AgADproof",
        status=SubscriberStatus.PENDING_APPROVAL,
    )


@pytest.fixture
def active_subscriber(project, plan):
    """Active with 10 days left."""
    return ActiveSubscriberFactory(project=project, plan=plan)


@pytest.fixture
def suspended_subscriber(project, plan):
    now = timezone.now()
    return SubscriberFactory(
        project=project,
        plan=plan,
        status=SubscriberStatus.SUSPENDED,
        start_date=now - timedelta(days=5),
        expiry_date=now + timedelta(days=25),
        suspended_at=now,
        suspension_reason="Chargeback",
    )


# =============================================================================
# External Service Fixtures
# =============================================================================


@pytest.fixture
def telegram(mocker):
    """
    Replace every TelegramAdapter with one shared mock.

    Defaults: messages are accepted, invite links are created and the
    bot is an administrator of a channel with the rights it needs.
    """
    mock_adapter = mocker.MagicMock(spec=TelegramAdapter)
    mock_adapter.send_message.return_value = {"message_id": 1}
    mock_adapter.answer_callback_query.return_value = True
    mock_adapter.create_chat_invite_link.return_value = INVITE_LINK
    mock_adapter.ban_chat_member.return_value = True
    mock_adapter.unban_chat_member.return_value = True
    mock_adapter.get_me.return_value = {"id": 999, "is_bot": True, "username": "test_bot"}
    mock_adapter.get_chat.return_value = {"id": -1001234567890, "type": "channel"}
    mock_adapter.get_chat_member.return_value = {
        "status": "administrator",
        "can_invite_users": True,
        "can_restrict_members": True,
    }

    for path in TELEGRAM_ADAPTER_PATHS:
        mocker.patch(path, return_value=mock_adapter)

    return mock_adapter


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured for basic lock operations.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch("memberships.locks.get_redis_connection", return_value=mock_client)

    return mock_client


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="admin",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def admin_client(staff_user):
    """API client authenticated as a staff user."""
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


@pytest.fixture
def user_client(db):
    """API client authenticated as a regular (non-staff) user."""
    user = get_user_model().objects.create_user(username="member", password="testpass123")
    client = APIClient()
    client.force_authenticate(user=user)
    return client


# =============================================================================
# Helpers
# =============================================================================


def sent_texts(telegram_mock) -> list[str]:
    """Texts of every send_message call, in order."""
    return [call.kwargs["text"] for call in telegram_mock.send_message.call_args_list]
