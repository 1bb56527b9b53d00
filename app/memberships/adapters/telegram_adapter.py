"""
Telegram Bot API adapter.

All Bot API calls go through this adapter so that timeouts, bounded
retries, error translation and timing logs are handled in one place.
One adapter instance is bound to one bot token (one project).

Retry policy:
    - Network errors, timeouts and 5xx responses are retried
    - 429 responses wait parameters.retry_after seconds (capped) and retry
    - Other ok=false responses raise immediately
    - TELEGRAM_MAX_RETRIES attempts in total, backoff 1s * 2^n with jitter

The bot token is part of every request URL. It is never logged and never
included in exception messages.

Configuration (via settings):
- TELEGRAM_API_BASE_URL: Bot API root (default: https://api.telegram.org)
- TELEGRAM_API_TIMEOUT_SECONDS: Per-request timeout (default: 10)
- TELEGRAM_MAX_RETRIES: Attempts per call (default: 3)

Usage:
    from memberships.adapters import TelegramAdapter

    telegram = TelegramAdapter(project.bot_token)
    telegram.send_message(
        chat_id=subscriber.telegram_user_id,
        text="<b>Hello</b>",
        reply_markup={"inline_keyboard": [[{"text": "Go", "url": link}]]},
    )
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests
from django.conf import settings

from memberships.adapters.stripe_adapter import backoff_delay
from memberships.exceptions import (
    TelegramAPIError,
    TelegramForbiddenError,
    TelegramRateLimitError,
)

logger = logging.getLogger(__name__)

MAX_RETRY_AFTER_SECONDS = 30


class TelegramAdapter:
    """
    Thin client for the Telegram Bot API methods the bot uses.

    Every method returns the "result" member of the API response.

    Raises (all methods):
        TelegramRateLimitError: Still rate limited after all attempts
        TelegramForbiddenError: User blocked the bot / bot not in chat
        TelegramAPIError: Any other failure
    """

    def __init__(
        self,
        bot_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._bot_token = bot_token
        self.base_url = (
            base_url or getattr(settings, "TELEGRAM_API_BASE_URL", "https://api.telegram.org")
        ).rstrip("/")
        self.timeout = timeout or getattr(settings, "TELEGRAM_API_TIMEOUT_SECONDS", 10)
        self.max_retries = max(1, max_retries or getattr(settings, "TELEGRAM_MAX_RETRIES", 3))

    def __repr__(self) -> str:
        return f"TelegramAdapter(base_url={self.base_url!r})"

    # =========================================================================
    # Transport
    # =========================================================================

    def _method_url(self, method: str) -> str:
        return f"{self.base_url}/bot{self._bot_token}/{method}"

    def _call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        """
        POST a Bot API method with bounded retries.

        Returns:
            The "result" member of a successful response
        """
        last_error: TelegramAPIError | None = None

        for attempt in range(self.max_retries):
            start_time = time.time()
            try:
                response = requests.post(
                    self._method_url(method),
                    json=payload or {},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                # str(e) would contain the URL, and with it the token
                last_error = TelegramAPIError(
                    f"Telegram {method} request failed: {type(e).__name__}",
                    method=method,
                    is_retryable=True,
                )
            else:
                duration_ms = (time.time() - start_time) * 1000
                try:
                    return self._parse_response(method, response, duration_ms)
                except TelegramAPIError as e:
                    last_error = e

            if not last_error.is_retryable or attempt == self.max_retries - 1:
                break

            if isinstance(last_error, TelegramRateLimitError):
                delay = min(last_error.retry_after, MAX_RETRY_AFTER_SECONDS)
            else:
                delay = backoff_delay(attempt)

            logger.warning(
                "Retrying Telegram call",
                extra={
                    "method": method,
                    "attempt": attempt + 1,
                    "delay_seconds": round(delay, 2),
                    "error_code": last_error.error_code,
                },
            )
            time.sleep(delay)

        assert last_error is not None
        raise last_error

    def _parse_response(
        self,
        method: str,
        response: requests.Response,
        duration_ms: float,
    ) -> Any:
        """Translate one HTTP response into a result or a domain exception."""
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code == 200 and body.get("ok"):
            logger.debug(
                "Telegram call completed",
                extra={"method": method, "duration_ms": duration_ms},
            )
            return body.get("result")

        description = body.get("description") or f"HTTP {response.status_code}"
        error_code = body.get("error_code") or response.status_code

        logger.warning(
            "Telegram call failed",
            extra={
                "method": method,
                "status_code": response.status_code,
                "telegram_error_code": error_code,
                "description": description,
                "duration_ms": duration_ms,
            },
        )

        if error_code == 429:
            retry_after = (body.get("parameters") or {}).get("retry_after", 30)
            raise TelegramRateLimitError(
                f"Telegram {method} rate limited: {description}",
                retry_after=int(retry_after),
                method=method,
            )

        if error_code == 403:
            raise TelegramForbiddenError(
                f"Telegram {method} forbidden: {description}",
                method=method,
                telegram_error_code=error_code,
            )

        raise TelegramAPIError(
            f"Telegram {method} failed: {description}",
            method=method,
            telegram_error_code=error_code,
            is_retryable=response.status_code >= 500,
        )

    # =========================================================================
    # Messages
    # =========================================================================

    def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_markup: dict[str, Any] | None = None,
        parse_mode: str = "HTML",
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return self._call("sendMessage", payload)

    def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
    ) -> bool:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return self._call("answerCallbackQuery", payload)

    # =========================================================================
    # Files
    # =========================================================================

    def get_file(self, file_id: str) -> dict[str, Any]:
        """Resolve a file id to {file_id, file_size, file_path}."""
        return self._call("getFile", {"file_id": file_id})

    def download_file(self, file_path: str) -> bytes:
        """
        Download a file previously resolved with get_file.

        Not retried: the proof pipeline falls back on any failure.
        """
        url = f"{self.base_url}/file/bot{self._bot_token}/{file_path}"
        start_time = time.time()
        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TelegramAPIError(
                f"Telegram file download failed: {type(e).__name__}",
                method="downloadFile",
                is_retryable=True,
            ) from e

        if response.status_code != 200:
            raise TelegramAPIError(
                f"Telegram file download failed: HTTP {response.status_code}",
                method="downloadFile",
                telegram_error_code=response.status_code,
            )

        logger.debug(
            "Telegram file downloaded",
            extra={
                "size_bytes": len(response.content),
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return response.content

    # =========================================================================
    # Channel Membership
    # =========================================================================

    def create_chat_invite_link(
        self,
        chat_id: int | str,
        name: str,
        expire_date: int,
        member_limit: int = 1,
    ) -> str:
        """Create an invite link and return its URL."""
        result = self._call(
            "createChatInviteLink",
            {
                "chat_id": chat_id,
                "name": name[:32],
                "expire_date": expire_date,
                "member_limit": member_limit,
            },
        )
        return result["invite_link"]

    def ban_chat_member(self, chat_id: int | str, user_id: int) -> bool:
        return self._call("banChatMember", {"chat_id": chat_id, "user_id": user_id})

    def unban_chat_member(
        self,
        chat_id: int | str,
        user_id: int,
        only_if_banned: bool = True,
    ) -> bool:
        return self._call(
            "unbanChatMember",
            {"chat_id": chat_id, "user_id": user_id, "only_if_banned": only_if_banned},
        )

    def get_chat_member(self, chat_id: int | str, user_id: int) -> dict[str, Any]:
        """ChatMember object; its "status" is member, left, kicked, etc."""
        return self._call("getChatMember", {"chat_id": chat_id, "user_id": user_id})

    # =========================================================================
    # Bot Setup
    # =========================================================================

    def get_me(self) -> dict[str, Any]:
        return self._call("getMe")

    def get_chat(self, chat_id: int | str) -> dict[str, Any]:
        return self._call("getChat", {"chat_id": chat_id})

    # =========================================================================
    # Webhook Management
    # =========================================================================

    def set_webhook(
        self,
        url: str,
        secret_token: str,
        allowed_updates: list[str],
        drop_pending_updates: bool = True,
    ) -> bool:
        return self._call(
            "setWebhook",
            {
                "url": url,
                "secret_token": secret_token,
                "allowed_updates": allowed_updates,
                "drop_pending_updates": drop_pending_updates,
            },
        )

    def get_webhook_info(self) -> dict[str, Any]:
        return self._call("getWebhookInfo")
