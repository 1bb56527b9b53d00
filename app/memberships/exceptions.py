"""
Membership-specific exceptions.

This module provides a hierarchy of exceptions for the subscription bot,
covering external dependencies (Telegram, object storage, Stripe) and
concurrency control on the subscriber state machine.

Exception Hierarchy:
    ExternalDependencyError (core)
    ├── TelegramAPIError - Bot API call failed
    │   ├── TelegramRateLimitError - 429 (transient, honour retry_after)
    │   └── TelegramForbiddenError - 403, user blocked the bot (permanent)
    ├── StorageError - Object storage put/sign failed
    └── StripeError - Base for all Stripe errors
        ├── StripeInvalidRequestError - Invalid params / signature (permanent)
        ├── StripeRateLimitError - Rate limited (transient, retry)
        └── StripeAPIUnavailableError - API unavailable (transient, retry)

    ConcurrencyConflict (core)
    ├── StaleTransitionError - Compare-and-set matched zero rows
    ├── InvalidStateTransitionError - Transition not allowed from stored status
    └── LockAcquisitionError - Distributed lock timeout

Usage:
    from memberships.exceptions import StaleTransitionError

    if rows_updated == 0:
        raise StaleTransitionError(
            f"Subscriber {pk} changed concurrently",
            details={"pk": str(pk), "expected_status": "awaiting_proof"},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import ConcurrencyConflict, ExternalDependencyError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Telegram Bot API
# =============================================================================


class TelegramAPIError(ExternalDependencyError):
    """
    Raised when a Telegram Bot API call fails.

    Network errors, timeouts and 5xx responses are retryable; a response
    with ok=false and a 4xx error_code is not.

    Attributes:
        method: Bot API method name (sendMessage, getFile, ...)
        telegram_error_code: error_code from the API response, if any
    """

    default_error_code: str = "TELEGRAM_API_ERROR"

    def __init__(
        self,
        message: str,
        method: str | None = None,
        telegram_error_code: int | None = None,
        is_retryable: bool = False,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if method:
            details["method"] = method
        if telegram_error_code is not None:
            details["telegram_error_code"] = telegram_error_code
        super().__init__(message, error_code=error_code, details=details)
        self.method = method
        self.telegram_error_code = telegram_error_code
        self.is_retryable = is_retryable


class TelegramRateLimitError(TelegramAPIError):
    """
    Rate limited by the Bot API (HTTP 429).

    retry_after carries the server-provided wait in seconds.
    """

    default_error_code: str = "TELEGRAM_RATE_LIMITED"

    def __init__(self, message: str, retry_after: int = 30, **kwargs: Any):
        kwargs.setdefault("telegram_error_code", 429)
        kwargs["is_retryable"] = True
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.details["retry_after"] = retry_after


class TelegramForbiddenError(TelegramAPIError):
    """
    The user blocked the bot or the bot was removed from the chat (403).

    Permanent; retrying will not help until the user unblocks the bot.
    """

    default_error_code: str = "TELEGRAM_FORBIDDEN"


# =============================================================================
# Object Storage
# =============================================================================


class StorageError(ExternalDependencyError):
    """
    Raised when storing or signing a payment proof fails.

    The proof pipeline catches this and falls back to a raw attachment
    reference.
    """

    default_error_code: str = "STORAGE_ERROR"
    is_retryable: bool = True


# =============================================================================
# Stripe
# =============================================================================


class StripeError(ExternalDependencyError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's internal error code
        is_retryable: Whether the operation can be retried
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe, or a webhook whose
    signature does not verify.

    This usually indicates a bug or misconfiguration, not a user error.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


class StripeRateLimitError(StripeError):
    """Rate limited by Stripe API. Retry with exponential backoff."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    Covers connection errors, timeouts and Stripe 5xx responses.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleTransitionError(ConcurrencyConflict):
    """
    Raised when a compare-and-set update matches zero rows.

    Another request changed the subscriber's status (or version) between
    read and write. On the webhook path this is a duplicate delivery or a
    double press, and the caller drops it.
    """

    default_error_code: str = "STALE_TRANSITION"


class InvalidStateTransitionError(ConcurrencyConflict):
    """
    Raised when a django-fsm transition is not allowed from the stored status.

    Attributes:
        details: Contains current_status and transition name
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class LockAcquisitionError(ConcurrencyConflict):
    """Raised when a distributed lock cannot be acquired in time."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Telegram
    "TelegramAPIError",
    "TelegramRateLimitError",
    "TelegramForbiddenError",
    # Storage
    "StorageError",
    # Stripe
    "StripeError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    # Concurrency control
    "StaleTransitionError",
    "InvalidStateTransitionError",
    "LockAcquisitionError",
]
