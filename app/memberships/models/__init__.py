"""
Membership models.

Usage:
    from memberships.models import Plan, Project, Subscriber, WebhookEvent
"""

from memberships.models.notification import FailedNotification
from memberships.models.project import Plan, Project
from memberships.models.subscriber import (
    Subscriber,
    compute_approval_period,
    compute_extended_expiry,
)
from memberships.models.webhook_event import WebhookEvent

__all__ = [
    "FailedNotification",
    "Plan",
    "Project",
    "Subscriber",
    "WebhookEvent",
    "compute_approval_period",
    "compute_extended_expiry",
]
