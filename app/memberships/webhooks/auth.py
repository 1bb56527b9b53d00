"""
Webhook shared-secret derivation and verification.

Telegram echoes the secret_token given to setWebhook in the
X-Telegram-Bot-Api-Secret-Token header of every update. The secret is
derived from the bot token with a keyed hash, so it is stable across
deploys, differs per bot, and reveals nothing about the token.
"""

from __future__ import annotations

import hashlib
import hmac

from django.conf import settings

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

SECRET_PREFIX = "wh_"


def derive_webhook_secret(bot_token: str) -> str:
    """
    wh_ + hex HMAC-SHA256(TELEGRAM_WEBHOOK_SECRET_KEY, bot_token).

    Telegram allows 1-256 characters from [A-Za-z0-9_-]; this yields 67.
    """
    key = (settings.TELEGRAM_WEBHOOK_SECRET_KEY or settings.SECRET_KEY).encode()
    digest = hmac.new(key, bot_token.encode(), hashlib.sha256).hexdigest()
    return f"{SECRET_PREFIX}{digest}"


def verify_webhook_secret(bot_token: str, presented: str | None) -> bool:
    """Constant-time comparison of the presented header against the derived secret."""
    if not presented:
        return False
    return hmac.compare_digest(derive_webhook_secret(bot_token), presented)
