"""
Factory Boy factories for membership test data.

Usage:
    from memberships.tests.factories import PlanFactory, SubscriberFactory

    subscriber = SubscriberFactory(status=SubscriberStatus.AWAITING_PROOF)
    plan = PlanFactory(project=subscriber.project, duration_days=7)
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from memberships.models import FailedNotification, Plan, Project, Subscriber, WebhookEvent
from memberships.state_machines import (
    NotifyAction,
    SubscriberStatus,
    WebhookEventStatus,
    WebhookProvider,
)


class ProjectFactory(factory.django.DjangoModelFactory):
    """Active project with manual payment enabled and Stripe disabled."""

    class Meta:
        model = Project

    name = factory.Sequence(lambda n: f"Premium Channel {n}")
    bot_token = factory.Sequence(lambda n: f"{100000 + n}:TEST-token-{n}")
    channel_id = factory.Sequence(lambda n: f"-100{1000000 + n}")
    support_contact = "@support"
    manual_payment_enabled = True
    manual_payment_instructions = "Send USDT to wallet ABC123"
    stripe_enabled = False
    is_active = True


class PlanFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Plan

    project = factory.SubFactory(ProjectFactory)
    name = "Monthly"
    price = Decimal("25.00")
    currency = "USD"
    duration_days = 30
    is_active = True


class SubscriberFactory(factory.django.DjangoModelFactory):
    """
    Subscriber in PENDING_PAYMENT by default.

    Example:
        # Active subscriber with 10 days left
        subscriber = SubscriberFactory(
            status=SubscriberStatus.ACTIVE,
            plan=plan,
            start_date=now - timedelta(days=20),
            expiry_date=now + timedelta(days=10),
        )
    """

    class Meta:
        model = Subscriber

    project = factory.SubFactory(ProjectFactory)
    telegram_user_id = factory.Sequence(lambda n: 5000000 + n)
    first_name = "Ada"
    username = factory.Sequence(lambda n: f"user{n}")
    status = SubscriberStatus.PENDING_PAYMENT


class ActiveSubscriberFactory(SubscriberFactory):
    """Active subscriber with 10 of 30 days left."""

    status = SubscriberStatus.ACTIVE
    plan = factory.SubFactory(PlanFactory, project=factory.SelfAttribute("..project"))
    start_date = factory.LazyFunction(lambda: timezone.now() - timedelta(days=20))
    expiry_date = factory.LazyFunction(lambda: timezone.now() + timedelta(days=10))


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """Pending Telegram update for a fresh project."""

    class Meta:
        model = WebhookEvent

    provider = WebhookProvider.TELEGRAM
    project = factory.SubFactory(ProjectFactory)
    event_id = factory.Sequence(lambda n: f"test-project:{n}")
    event_type = "text"
    payload = factory.Sequence(
        lambda n: {
            "update_id": n,
            "message": {
                "message_id": n,
                "from": {"id": 42, "first_name": "Ada"},
                "chat": {"id": 42, "type": "private"},
                "text": "/help",
            },
        }
    )
    status = WebhookEventStatus.PENDING


class StripeWebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent

    provider = WebhookProvider.STRIPE
    project = None
    event_id = factory.LazyFunction(lambda: f"evt_{uuid.uuid4().hex}")
    event_type = "checkout.session.completed"
    payload = factory.LazyAttribute(
        lambda o: {"id": o.event_id, "type": o.event_type, "data": {"object": {}}}
    )
    status = WebhookEventStatus.PENDING


class FailedNotificationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = FailedNotification

    subscriber = factory.SubFactory(ActiveSubscriberFactory)
    action = NotifyAction.EXTENDED
    subscriber_status = factory.LazyAttribute(lambda o: o.subscriber.status)
    payload = factory.LazyFunction(lambda: {"reason": None, "expiry_date": None, "days": None})
    next_retry_at = factory.LazyFunction(timezone.now)
    error_message = "Telegram sendMessage failed: HTTP 502"
