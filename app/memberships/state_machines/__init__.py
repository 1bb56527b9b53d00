"""
State machine enums and helpers for membership models.

This module defines the state enums used by membership models with django-fsm.
"""

from memberships.state_machines.states import (
    NotifyAction,
    PaymentMethod,
    SubscriberStatus,
    WebhookEventStatus,
    WebhookProvider,
)

__all__ = [
    "NotifyAction",
    "PaymentMethod",
    "SubscriberStatus",
    "WebhookEventStatus",
    "WebhookProvider",
]
