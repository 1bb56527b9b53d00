"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed ids, payloads or arguments (400)
    ├── NotFoundError - Unknown project, plan or subscriber (404)
    ├── ConcurrencyConflict - Stale or duplicate transition (409)
    └── ExternalDependencyError - Messaging, storage or payment call failed

Usage:
    from core.exceptions import ValidationError, NotFoundError

    # Raise with message only
    raise ValidationError("Invalid project id")

    # Raise with error code for client handling
    raise NotFoundError("Project not found", error_code="PROJECT_NOT_FOUND")

    # Convert to dict for API response
    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, authentication, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Provides a consistent interface for error handling across the application.
    All custom exceptions should inherit from this class.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)
        http_status: Status code used when the error reaches an HTTP boundary

    Example:
        try:
            subscriber = SubscriberService.get(subscriber_id)
        except NotFoundError as e:
            logger.warning("Subscriber not found", extra={"error_code": e.error_code})
            return Response(e.to_dict(), status=e.http_status)
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Subscriber not found",
                "error_code": "SUBSCRIBER_NOT_FOUND",
                "details": {"subscriber_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for:
    - Malformed identifiers (project id, plan id in a callback payload)
    - Payloads that do not match the expected grammar
    - Out of range arguments (e.g. extension days <= 0)

    Example:
        raise ValidationError(
            "Invalid project id",
            error_code="INVALID_PROJECT_ID",
            details={"project_id": raw_value[:64]},
        )

    Note:
        Validation failures never mutate persisted state.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for:
    - Unknown project on an inbound webhook
    - Plan id that does not belong to the project
    - Subscriber lookup from an administrative action

    Example:
        subscriber = Subscriber.objects.filter(id=subscriber_id).first()
        if not subscriber:
            raise NotFoundError(
                f"Subscriber {subscriber_id} not found",
                error_code="SUBSCRIBER_NOT_FOUND",
                details={"subscriber_id": str(subscriber_id)}
            )
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class ConcurrencyConflict(BaseApplicationError):
    """
    Raised when an operation conflicts with the current stored state.

    Use for:
    - A compare-and-set update that matched zero rows
    - A transition that is not allowed from the stored status
    - Lock contention

    Callers on the webhook path treat this as an idempotent no-op: a
    duplicated delivery or double button press lands here.

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalDependencyError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Use for:
    - Telegram Bot API failures
    - Object storage failures
    - Payment processor failures
    - Network timeouts

    Attributes:
        is_retryable: Whether the same call may succeed if repeated

    Note:
        Log the original error for debugging but never expose internal
        details to end users.
    """

    default_error_code: str = "EXTERNAL_DEPENDENCY_ERROR"
    http_status: int = 502
    is_retryable: bool = False
