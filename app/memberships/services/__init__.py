"""
Membership services.

Usage:
    from memberships.services import SubscriberService

    result = SubscriberService.extend(subscriber_id, days=7)
"""

from memberships.services.channel_membership import ChannelMembershipService, MembershipCheck
from memberships.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationResult,
    render_notification,
)
from memberships.services.payment_intake import PaymentIntakeService, ProofIntakeResult
from memberships.services.subscriber_service import SubscriberService
from memberships.services.webhook_registration import WebhookRegistrationService

__all__ = [
    "ChannelMembershipService",
    "MembershipCheck",
    "NotificationDispatcher",
    "NotificationResult",
    "PaymentIntakeService",
    "ProofIntakeResult",
    "SubscriberService",
    "WebhookRegistrationService",
    "render_notification",
]
