"""
Channel membership manager: invite links in, removals out.

Usage:
    from memberships.services import ChannelMembershipService

    link = ChannelMembershipService.issue_invite(project, subscriber)
    removed = ChannelMembershipService.remove_member(project, subscriber.telegram_user_id)
    check = ChannelMembershipService.check_member(project, subscriber.telegram_user_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.services import BaseService

from memberships.adapters import TelegramAdapter
from memberships.exceptions import TelegramAPIError

if TYPE_CHECKING:
    from memberships.models import Project, Subscriber

# Descriptions Telegram returns when the user is already outside the channel
NOT_A_MEMBER_MARKERS = ("user is not a member", "participant_id_invalid", "user not found")

# ChatMember statuses of a user who is inside the channel
IN_CHANNEL_STATUSES = frozenset({"member", "administrator", "creator", "restricted"})

NEVER_JOINED = "never_joined"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class MembershipCheck:
    """
    Result of a getChatMember lookup.

    status is the Telegram ChatMember status, "never_joined" when Telegram
    does not know the user in this chat, or "unknown" when the lookup failed.
    """

    is_member: bool
    status: str


class ChannelMembershipService(BaseService):
    """Grants and revokes channel access through the project's bot."""

    @classmethod
    def issue_invite(
        cls,
        project: Project,
        subscriber: Subscriber,
        telegram: TelegramAdapter | None = None,
    ) -> str | None:
        """
        Create a single-use, time-limited invite link for the subscriber.

        The link is stored on the subscriber row. Returns None when
        Telegram refuses; the caller tells the user to contact support.
        """
        telegram = telegram or TelegramAdapter(project.bot_token)
        ttl_days = getattr(settings, "INVITE_LINK_TTL_DAYS", 7)
        expire_date = int((timezone.now() + timedelta(days=ttl_days)).timestamp())

        try:
            link = telegram.create_chat_invite_link(
                chat_id=project.channel_id,
                name=f"Subscription - {subscriber.first_name or subscriber.telegram_user_id}",
                expire_date=expire_date,
                member_limit=1,
            )
        except TelegramAPIError as e:
            cls.get_logger().warning(
                "Could not create invite link",
                extra={
                    "project_id": str(project.id),
                    "subscriber_id": str(subscriber.id),
                    "error_code": e.error_code,
                },
            )
            return None

        type(subscriber).objects.filter(pk=subscriber.pk).update(invite_link=link)
        subscriber.invite_link = link
        cls.get_logger().info(
            "Issued invite link",
            extra={"project_id": str(project.id), "subscriber_id": str(subscriber.id)},
        )
        return link

    @classmethod
    def remove_member(
        cls,
        project: Project,
        telegram_user_id: int,
        telegram: TelegramAdapter | None = None,
    ) -> bool:
        """
        Remove a user from the channel without a lasting ban.

        Bans, then unbans with only_if_banned so the user can rejoin with
        a future invite. A user who is already gone counts as removed.
        """
        telegram = telegram or TelegramAdapter(project.bot_token)
        log_extra = {"project_id": str(project.id), "telegram_user_id": telegram_user_id}

        try:
            telegram.ban_chat_member(project.channel_id, telegram_user_id)
        except TelegramAPIError as e:
            if e.telegram_error_code == 400 and _is_not_a_member(e):
                cls.get_logger().info("User already outside channel", extra=log_extra)
                return True
            cls.get_logger().warning(
                "Could not remove user from channel",
                extra={**log_extra, "error_code": e.error_code},
            )
            return False

        try:
            telegram.unban_chat_member(project.channel_id, telegram_user_id, only_if_banned=True)
        except TelegramAPIError as e:
            # Removal already happened; the user just cannot rejoin yet
            cls.get_logger().warning(
                "Unban after removal failed",
                extra={**log_extra, "error_code": e.error_code},
            )

        cls.get_logger().info("Removed user from channel", extra=log_extra)
        return True

    @classmethod
    def check_member(
        cls,
        project: Project,
        telegram_user_id: int,
        telegram: TelegramAdapter | None = None,
    ) -> MembershipCheck:
        """
        Ask Telegram whether the user is currently in the channel.

        Read-only: the subscriber row is not changed. A failed lookup is
        reported as status "unknown" rather than raised.
        """
        telegram = telegram or TelegramAdapter(project.bot_token)
        log_extra = {"project_id": str(project.id), "telegram_user_id": telegram_user_id}

        try:
            member = telegram.get_chat_member(project.channel_id, telegram_user_id)
        except TelegramAPIError as e:
            if e.telegram_error_code == 400 and _is_not_a_member(e):
                return MembershipCheck(is_member=False, status=NEVER_JOINED)
            cls.get_logger().warning(
                "Could not check channel membership",
                extra={**log_extra, "error_code": e.error_code},
            )
            return MembershipCheck(is_member=False, status=UNKNOWN)

        member_status = (member or {}).get("status") or UNKNOWN
        check = MembershipCheck(
            is_member=member_status in IN_CHANNEL_STATUSES,
            status=member_status,
        )
        cls.get_logger().info(
            "Checked channel membership",
            extra={**log_extra, "member_status": check.status, "is_member": check.is_member},
        )
        return check


def _is_not_a_member(error: TelegramAPIError) -> bool:
    message = error.message.lower()
    return any(marker in message for marker in NOT_A_MEMBER_MARKERS)
