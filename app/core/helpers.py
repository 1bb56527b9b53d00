"""
Generic helper functions used across apps.

Usage:
    from core.helpers import escape_html, sanitize_user_input, validate_uuid

    if not validate_uuid(raw_id):
        raise ValidationError("Invalid id")

    text = f"Welcome, <b>{escape_html(first_name)}</b>!"
"""

from __future__ import annotations

import html
import re

# Canonical 8-4-4-4-12 hex form only (no braces, urn prefix or bare hex)
UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x1f\x7f]")

def validate_uuid(value: object) -> bool:
    """
    Check if value is a UUID in canonical string form.

    Stricter than uuid.UUID(), which also accepts braces, "urn:uuid:"
    prefixes and undashed hex.

    Args:
        value: Value to validate

    Returns:
        True if valid UUID format

    Example:
        validate_uuid("550e8400-e29b-41d4-a716-446655440000")  # True
        validate_uuid("{550e8400-e29b-41d4-a716-446655440000}")  # False
    """
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def escape_html(value: object) -> str:
    """
    Escape a value for interpolation into Telegram HTML messages.

    None and empty values render as an empty string.
    """
    if value is None:
        return ""
    return html.escape(str(value), quote=True)


def sanitize_user_input(value: str | None, max_length: int = 100) -> str:
    """
    Strip control characters and truncate user-supplied text.

    Args:
        value: Raw text from an inbound update
        max_length: Maximum number of characters kept

    Returns:
        Cleaned string (empty string for None)
    """
    if not value:
        return ""
    return CONTROL_CHARS_PATTERN.sub("", value)[:max_length]

