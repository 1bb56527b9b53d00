"""
Adapters for external services (Telegram Bot API, S3, Stripe).

All outbound calls go through these adapters to ensure consistent error
handling, timeouts, retries and observability.

Usage:
    from memberships.adapters import ProofStorage, StripeAdapter, TelegramAdapter
"""

from memberships.adapters.storage_adapter import (
    ProofStorage,
    StoredObject,
    content_type_for,
)
from memberships.adapters.stripe_adapter import (
    CheckoutSessionResult,
    CreateCheckoutSessionParams,
    IdempotencyKeyGenerator,
    StripeAdapter,
    backoff_delay,
)
from memberships.adapters.telegram_adapter import TelegramAdapter

__all__ = [
    "CheckoutSessionResult",
    "CreateCheckoutSessionParams",
    "IdempotencyKeyGenerator",
    "ProofStorage",
    "StoredObject",
    "StripeAdapter",
    "TelegramAdapter",
    "backoff_delay",
    "content_type_for",
]
