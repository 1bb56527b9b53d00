"""
Core Application - Infrastructure & Base Classes

Generic, reusable building blocks shared by the domain apps. No business
logic lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Malformed input (400)
    - NotFoundError: Resource not found (404)
    - ConcurrencyConflict: Stale or duplicate transition (409)
    - ExternalDependencyError: Third-party call failures

Helpers (import from core.helpers):
    - validate_uuid: Canonical UUID validation
    - escape_html: Telegram HTML escaping
    - sanitize_user_input: Control-char stripping and truncation

Note:
    Django models and model mixins are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConcurrencyConflict,
    ExternalDependencyError,
    NotFoundError,
    ValidationError,
)

# Helpers (no Django model dependencies)
from .helpers import escape_html, sanitize_user_input, validate_uuid

# Services (no Django model dependencies)
from .services import BaseService, ServiceResult

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ConcurrencyConflict",
    "ExternalDependencyError",
    "NotFoundError",
    "ValidationError",
    # Helpers
    "escape_html",
    "sanitize_user_input",
    "validate_uuid",
]
