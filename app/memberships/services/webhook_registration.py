"""
Telegram webhook registration.

Points a project's bot at this service with the derived shared secret.
Exposed through the register_telegram_webhook management command and the
Project admin action.

Before setWebhook the project setup is checked against Telegram:
    1. getMe: the bot token is valid
    2. getChat: the channel exists, is visible to the bot, and is a
       channel or supergroup
    3. getChatMember(bot): the bot is an administrator that can invite
       users and restrict members
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.urls import reverse

from core.exceptions import ValidationError
from core.services import BaseService, ServiceResult

from memberships.adapters import TelegramAdapter
from memberships.exceptions import TelegramAPIError
from memberships.webhooks.auth import derive_webhook_secret

if TYPE_CHECKING:
    from memberships.models import Project

ALLOWED_UPDATES = ["message", "callback_query"]

CHANNEL_CHAT_TYPES = ("channel", "supergroup")
ADMIN_STATUSES = ("administrator", "creator")
REQUIRED_ADMIN_RIGHTS = ("can_invite_users", "can_restrict_members")


class WebhookRegistrationService(BaseService):
    """Registers and inspects Telegram webhooks for projects."""

    @classmethod
    def webhook_url(cls, project: Project) -> str:
        """
        Raises:
            ValidationError: TELEGRAM_WEBHOOK_BASE_URL is not configured
        """
        base_url = getattr(settings, "TELEGRAM_WEBHOOK_BASE_URL", "")
        if not base_url:
            raise ValidationError(
                "TELEGRAM_WEBHOOK_BASE_URL is not configured",
                error_code="WEBHOOK_BASE_URL_MISSING",
            )
        path = reverse("memberships:telegram-webhook")
        return f"{base_url.rstrip('/')}{path}?project_id={project.id}"

    @classmethod
    def validate_setup(cls, project: Project, telegram: TelegramAdapter) -> dict[str, Any]:
        """
        Check that the bot can run the project's channel.

        Returns:
            The getMe result for the bot

        Raises:
            ValidationError: PROJECT_SETUP_INVALID with the failed step in details
            TelegramAPIError: Telegram could not be reached
        """
        bot = cls._setup_call("bot_token", "Bot token was rejected by Telegram", telegram.get_me)
        if "id" not in bot:
            raise cls._setup_error("bot_token", "Bot token was rejected by Telegram")

        chat = cls._setup_call(
            "channel",
            "Channel not found or the bot is not in it",
            telegram.get_chat,
            project.channel_id,
        )
        if chat.get("type") not in CHANNEL_CHAT_TYPES:
            raise cls._setup_error("channel", "The chat must be a channel or supergroup")

        member = cls._setup_call(
            "bot_rights",
            "Could not verify bot permissions",
            telegram.get_chat_member,
            project.channel_id,
            bot["id"],
        )
        if member.get("status") not in ADMIN_STATUSES:
            raise cls._setup_error("bot_rights", "Bot must be an administrator in the channel")
        # Creators hold every right implicitly
        if member.get("status") == "administrator":
            missing = [right for right in REQUIRED_ADMIN_RIGHTS if not member.get(right)]
            if missing:
                raise cls._setup_error(
                    "bot_rights",
                    f"Bot is missing channel rights: {', '.join(missing)}",
                )

        return bot

    @classmethod
    def register(
        cls,
        project: Project,
        telegram: TelegramAdapter | None = None,
    ) -> ServiceResult[str]:
        """
        Validate the project setup, then call setWebhook for its bot.

        Pending updates are dropped so a re-registration does not replay
        old traffic.

        Returns:
            ServiceResult with the registered URL
        """
        telegram = telegram or TelegramAdapter(project.bot_token)
        try:
            url = cls.webhook_url(project)
            bot = cls.validate_setup(project, telegram)
            telegram.set_webhook(
                url=url,
                secret_token=derive_webhook_secret(project.bot_token),
                allowed_updates=ALLOWED_UPDATES,
                drop_pending_updates=True,
            )
        except (ValidationError, TelegramAPIError) as e:
            return cls.handle_exception(e, context=f"Webhook registration for {project.id}")

        cls.get_logger().info(
            "Registered Telegram webhook",
            extra={"project_id": str(project.id), "bot_username": bot.get("username")},
        )
        return ServiceResult.success(url)

    @classmethod
    def info(cls, project: Project, telegram: TelegramAdapter | None = None) -> ServiceResult[dict]:
        """Current getWebhookInfo result for the project's bot."""
        telegram = telegram or TelegramAdapter(project.bot_token)
        try:
            return ServiceResult.success(telegram.get_webhook_info())
        except TelegramAPIError as e:
            return cls.handle_exception(e, context=f"Webhook info for {project.id}")

    @staticmethod
    def _setup_error(step: str, message: str) -> ValidationError:
        return ValidationError(message, error_code="PROJECT_SETUP_INVALID", details={"step": step})

    @classmethod
    def _setup_call(cls, step: str, message: str, method, *args) -> dict[str, Any]:
        """Run one setup lookup; a 4xx answer means the setup is wrong."""
        try:
            return method(*args) or {}
        except TelegramAPIError as e:
            if e.telegram_error_code in (400, 401, 403, 404):
                raise cls._setup_error(step, message) from e
            raise
