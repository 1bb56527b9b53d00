"""
Notification dispatcher: the single way subscribers hear about state changes.

Every administrative transition and every sweep result is announced through
NotificationDispatcher.notify(). The action is a closed NotifyAction value;
render_notification() maps it to the message text and optional button, and
notify() performs the channel side effect that goes with it:

    approved, reactivated -> issue a fresh single-use invite link
    suspended, kicked, expired -> remove the user from the channel

The dispatcher never assumes a request context, so the bot router, the
services, Celery tasks and the admin can all call it. A delivery failure
is logged and recorded as a FailedNotification for the retry task; it
never propagates into the caller's (already committed) transition.

Usage:
    from memberships.services import NotificationDispatcher
    from memberships.state_machines import NotifyAction

    result = NotificationDispatcher.notify(
        subscriber,
        NotifyAction.SUSPENDED,
        reason="Chargeback under review",
    )
    if not result.message_sent:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.utils.dateparse import parse_datetime

from core.helpers import escape_html
from core.services import BaseService

from memberships.adapters import TelegramAdapter
from memberships.bot.messages import format_date, url_button
from memberships.exceptions import TelegramAPIError, TelegramForbiddenError
from memberships.models import FailedNotification
from memberships.services.channel_membership import ChannelMembershipService
from memberships.state_machines import NotifyAction

if TYPE_CHECKING:
    from memberships.models import Subscriber


INVITE_ACTIONS = frozenset({NotifyAction.APPROVED, NotifyAction.REACTIVATED})
REMOVAL_ACTIONS = frozenset(
    {NotifyAction.SUSPENDED, NotifyAction.KICKED, NotifyAction.EXPIRED}
)


@dataclass
class RenderedNotification:
    text: str
    reply_markup: dict[str, Any] | None = None


@dataclass
class NotificationResult:
    """
    Outcome of one notify() call.

    Attributes:
        message_sent: Telegram accepted the message
        invite_link: Link issued for approved/reactivated, if any
        kicked: User was removed from the channel
        error: Delivery error message when message_sent is False
        superseded: Retry dropped because the subscriber changed status
    """

    message_sent: bool
    invite_link: str | None = None
    kicked: bool = False
    error: str | None = None
    superseded: bool = False


# =============================================================================
# Rendering
# =============================================================================


def render_notification(
    action: str,
    *,
    project_name: str,
    plan_name: str | None = None,
    support_contact: str = "",
    reason: str | None = None,
    expiry_date: datetime | None = None,
    days: int | None = None,
    invite_link: str | None = None,
) -> RenderedNotification:
    """
    Build the message for a notification action.

    Every tenant- or admin-supplied string is HTML-escaped here.

    Raises:
        ValueError: action is not a NotifyAction value
    """
    action = NotifyAction(action)
    project = escape_html(project_name)
    plan = escape_html(plan_name or "Subscription")
    support = escape_html(support_contact)
    reason_text = escape_html(reason)
    expiry_text = format_date(expiry_date) if expiry_date else "N/A"

    if action == NotifyAction.APPROVED:
        text = (
            "🎉 <b>Payment Approved!</b>\n\n"
            f"Your subscription to <b>{project}</b> has been activated.\n\n"
            f"📦 Plan: <b>{plan}</b>\n"
        )
        if invite_link:
            text += f"📅 Expires: <b>{expiry_text}</b>\n\n👇 Click below to join the channel:"
            return RenderedNotification(text, url_button("🔗 Join Channel", invite_link))
        text += "\n⚠️ Could not generate invite link. Please contact support."
        if support:
            text += f"\n\n📞 Support: {support}"
        return RenderedNotification(text)

    if action == NotifyAction.EXTENDED:
        return RenderedNotification(
            "✅ <b>Subscription Extended!</b>\n\n"
            f"Your subscription to <b>{project}</b> has been extended.\n\n"
            f"📦 Plan: <b>{plan}</b>\n"
            f"📅 New Expiry: <b>{expiry_text}</b>\n\n"
            "Thank you for your continued support!"
        )

    if action == NotifyAction.EXPIRING_SOON:
        return RenderedNotification(
            "⏰ <b>Subscription Expiring Soon</b>\n\n"
            f"Your subscription to <b>{project}</b> will expire in "
            f"<b>{days or 3} days</b>.\n\n"
            "Use /renew to extend your subscription and maintain access."
        )

    if action == NotifyAction.EXPIRED:
        return RenderedNotification(
            "❌ <b>Subscription Expired</b>\n\n"
            f"Your subscription to <b>{project}</b> has expired.\n\n"
            "Use /renew to reactivate your subscription."
        )

    if action == NotifyAction.REJECTED:
        text = (
            "❌ <b>Payment Not Approved</b>\n\n"
            f"Your payment for <b>{project}</b> could not be verified.\n\n"
        )
        if reason_text:
            text += f"📝 Reason: {reason_text}\n\n"
        text += "Please try again with valid payment proof using /start."
        if support:
            text += f"\n\n📞 Need help? Contact: {support}"
        return RenderedNotification(text)

    if action == NotifyAction.SUSPENDED:
        text = (
            "⚠️ <b>Subscription Suspended</b>\n\n"
            f"Your access to <b>{project}</b> has been suspended.\n\n"
        )
        if reason_text:
            text += f"📝 Reason: {reason_text}\n\n"
        if support:
            text += f"📞 Contact support: {support}"
        return RenderedNotification(text.rstrip())

    if action == NotifyAction.KICKED:
        text = (
            "🚫 <b>Access Revoked</b>\n\n"
            f"Your access to <b>{project}</b> has been revoked.\n\n"
        )
        if reason_text:
            text += f"📝 Reason: {reason_text}\n\n"
        text += "Use /start to subscribe again."
        return RenderedNotification(text)

    # NotifyAction.REACTIVATED
    text = (
        "✅ <b>Subscription Reactivated!</b>\n\n"
        f"Your access to <b>{project}</b> has been restored.\n\n"
    )
    if invite_link:
        text += "👇 Click below to rejoin the channel:"
        return RenderedNotification(text, url_button("🔗 Join Channel", invite_link))
    text += "⚠️ Could not generate invite link. Please contact support."
    return RenderedNotification(text)


# =============================================================================
# Dispatch
# =============================================================================


class NotificationDispatcher(BaseService):
    """Formats, side-effects and sends subscriber notifications."""

    @classmethod
    def notify(
        cls,
        subscriber: Subscriber,
        action: str,
        *,
        reason: str | None = None,
        expiry_date: datetime | None = None,
        days: int | None = None,
        record_failure: bool = True,
        side_effects: bool = True,
        telegram: TelegramAdapter | None = None,
    ) -> NotificationResult:
        """
        Send one notification to a subscriber.

        Args:
            subscriber: Recipient (its project supplies bot and channel)
            action: NotifyAction value
            reason: Rejection / suspension / revocation reason
            expiry_date: Defaults to the subscriber's stored expiry
            days: Days remaining (expiring_soon)
            record_failure: Create a FailedNotification when delivery fails
            side_effects: Issue invites / remove from the channel. When False
                the stored invite link is reused and nobody is removed.

        Raises:
            ValueError: action is not a NotifyAction value
        """
        action = NotifyAction(action)
        project = subscriber.project
        telegram = telegram or TelegramAdapter(project.bot_token)
        logger = cls.get_logger()
        log_extra = {
            "subscriber_id": str(subscriber.id),
            "project_id": str(project.id),
            "action": action.value,
        }

        invite_link = None
        kicked = False
        if not side_effects:
            if action in INVITE_ACTIONS:
                invite_link = subscriber.invite_link or None
        elif action in INVITE_ACTIONS:
            invite_link = ChannelMembershipService.issue_invite(project, subscriber, telegram)
        elif action in REMOVAL_ACTIONS:
            kicked = ChannelMembershipService.remove_member(
                project, subscriber.telegram_user_id, telegram
            )

        rendered = render_notification(
            action,
            project_name=project.name,
            plan_name=subscriber.plan.name if subscriber.plan else None,
            support_contact=project.support_contact,
            reason=reason,
            expiry_date=expiry_date or subscriber.expiry_date,
            days=days,
            invite_link=invite_link,
        )

        try:
            telegram.send_message(
                chat_id=subscriber.telegram_user_id,
                text=rendered.text,
                reply_markup=rendered.reply_markup,
            )
        except TelegramAPIError as e:
            logger.warning(
                "Notification delivery failed",
                extra={**log_extra, "error_code": e.error_code},
            )
            # A user who blocked the bot will not be reachable on retry either
            if record_failure and not isinstance(e, TelegramForbiddenError):
                cls.record_failure(
                    subscriber,
                    action,
                    reason=reason,
                    expiry_date=expiry_date,
                    days=days,
                    error_message=e.message,
                )
            return NotificationResult(
                message_sent=False,
                invite_link=invite_link,
                kicked=kicked,
                error=e.message,
            )

        logger.info("Notification sent", extra={**log_extra, "kicked": kicked})
        return NotificationResult(message_sent=True, invite_link=invite_link, kicked=kicked)

    @classmethod
    def record_failure(
        cls,
        subscriber: Subscriber,
        action: str,
        *,
        reason: str | None = None,
        expiry_date: datetime | None = None,
        days: int | None = None,
        error_message: str = "",
    ) -> FailedNotification:
        return FailedNotification.objects.create(
            subscriber=subscriber,
            action=action,
            subscriber_status=subscriber.status,
            payload={
                "reason": reason,
                "expiry_date": expiry_date.isoformat() if expiry_date else None,
                "days": days,
            },
            error_message=error_message,
        )

    @classmethod
    def redeliver(cls, failed: FailedNotification) -> NotificationResult:
        """
        Resend the message of a recorded notification.

        Channel side effects already ran with the original attempt and are
        not repeated. If the subscriber has since left the status the
        message announced, nothing is sent.
        """
        subscriber = failed.subscriber
        subscriber.refresh_from_db()
        if failed.subscriber_status and subscriber.status != failed.subscriber_status:
            cls.get_logger().info(
                "Dropping stale notification retry",
                extra={
                    "failed_notification_id": str(failed.id),
                    "subscriber_id": str(subscriber.id),
                    "action": failed.action,
                    "announced_status": failed.subscriber_status,
                    "current_status": subscriber.status,
                },
            )
            return NotificationResult(message_sent=False, superseded=True)

        payload = failed.payload or {}
        expiry_raw = payload.get("expiry_date")
        return cls.notify(
            subscriber,
            failed.action,
            reason=payload.get("reason"),
            expiry_date=parse_datetime(expiry_raw) if expiry_raw else None,
            days=payload.get("days"),
            record_failure=False,
            side_effects=False,
        )
