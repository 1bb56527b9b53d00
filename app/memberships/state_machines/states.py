"""
State enums for membership models.

This module defines the enums used by membership models with django-fsm.
These are Django TextChoices for database storage and admin integration.

Subscriber lifecycle:
    pending_payment → awaiting_proof → pending_approval → active (manual)
    pending_payment → active (hosted checkout completed)
    active → expired (expiry sweep or admin revoke)
    active → suspended → active (reactivate) or expired (revoke)
    pending_approval/awaiting_proof → rejected
    expired/rejected → pending_payment (start over)
"""

from django.db import models


class SubscriberStatus(models.TextChoices):
    """
    States for the Subscriber lifecycle.

    The persisted status doubles as the conversation register: the bot
    keeps no session and decides every reply from this column.

    Terminal-ish states (EXPIRED, REJECTED) can restart at PENDING_PAYMENT.
    """

    PENDING_PAYMENT = "pending_payment", "Pending Payment"
    AWAITING_PROOF = "awaiting_proof", "Awaiting Payment Proof"
    PENDING_APPROVAL = "pending_approval", "Pending Approval"
    ACTIVE = "active", "Active"
    EXPIRED = "expired", "Expired"
    REJECTED = "rejected", "Rejected"
    SUSPENDED = "suspended", "Suspended"


class PaymentMethod(models.TextChoices):
    """Closed allow-list of payment method tokens carried in callbacks."""

    MANUAL = "manual", "Manual"
    STRIPE = "stripe", "Card (Stripe)"


class NotifyAction(models.TextChoices):
    """
    Closed set of user-facing notifications.

    The first six are administrative transitions; EXPIRING_SOON and
    EXPIRED are sent by the expiry sweep.
    """

    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    SUSPENDED = "suspended", "Suspended"
    KICKED = "kicked", "Kicked"
    REACTIVATED = "reactivated", "Reactivated"
    EXTENDED = "extended", "Extended"
    EXPIRING_SOON = "expiring_soon", "Expiring Soon"
    EXPIRED = "expired", "Expired"


class WebhookProvider(models.TextChoices):
    """Source of an inbound webhook event."""

    TELEGRAM = "telegram", "Telegram"
    STRIPE = "stripe", "Stripe"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for inbound webhook events.

    State Flow:
        PENDING → PROCESSING → PROCESSED (success)
        PENDING → PROCESSING → FAILED (error, will retry)
        FAILED → PROCESSING (retry attempt)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "NotifyAction",
    "PaymentMethod",
    "SubscriberStatus",
    "WebhookEventStatus",
    "WebhookProvider",
]
