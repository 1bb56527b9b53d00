"""
Parsing of inbound Telegram updates.

Turns the raw update dict into an IncomingUpdate with a single dispatch
kind. Precedence: callback query, then photo message (non-empty photo
list), then text message. Anything else is "ignored".

User-supplied names are sanitized here (control characters stripped,
first_name <= 100 and username <= 50 characters) so downstream code never
sees raw profile text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from core.exceptions import ValidationError
from core.helpers import sanitize_user_input

FIRST_NAME_MAX_LENGTH = 100
USERNAME_MAX_LENGTH = 50

KIND_CALLBACK = "callback_query"
KIND_PHOTO = "photo"
KIND_TEXT = "text"
KIND_IGNORED = "ignored"


@dataclass(frozen=True)
class TelegramUser:
    id: int
    first_name: str = ""
    username: str = ""


@dataclass(frozen=True)
class PhotoSize:
    file_id: str
    file_size: int = 0


@dataclass(frozen=True)
class IncomingUpdate:
    """
    A parsed update.

    Attributes:
        update_id: Telegram update id (idempotency key within a bot)
        kind: callback_query, photo, text or ignored
        user: Sender, if the update has one
        chat_id: Chat to reply to
        text: Message text (text kind)
        callback_id: Callback query id (callback kind)
        callback_data: Opaque callback payload (callback kind)
        photo: Largest photo size (photo kind)
    """

    update_id: int
    kind: str
    user: TelegramUser | None = None
    chat_id: int | None = None
    text: str = ""
    callback_id: str | None = None
    callback_data: str = ""
    photo: PhotoSize | None = None

    @property
    def command(self) -> str:
        """
        First token of the text, lower-cased, without an @botname suffix.

        "/Start@MyBot payload" -> "/start"
        """
        tokens = self.text.split()
        if not tokens:
            return ""
        return tokens[0].split("@", 1)[0].lower()


def update_kind(payload: dict[str, Any]) -> str:
    """Dispatch kind of a raw update without full parsing."""
    if isinstance(payload.get("callback_query"), dict):
        return KIND_CALLBACK
    message = payload.get("message")
    if isinstance(message, dict):
        if isinstance(message.get("photo"), list) and message["photo"]:
            return KIND_PHOTO
        if isinstance(message.get("text"), str):
            return KIND_TEXT
    return KIND_IGNORED


def _parse_user(raw: Any) -> TelegramUser | None:
    if not isinstance(raw, dict) or not isinstance(raw.get("id"), int):
        return None
    return TelegramUser(
        id=raw["id"],
        first_name=sanitize_user_input(raw.get("first_name"), FIRST_NAME_MAX_LENGTH),
        username=sanitize_user_input(raw.get("username"), USERNAME_MAX_LENGTH),
    )


def _chat_id(message: Any) -> int | None:
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    if isinstance(chat, dict) and isinstance(chat.get("id"), int):
        return chat["id"]
    return None


def parse_update(payload: Any) -> IncomingUpdate:
    """
    Parse a raw update.

    Raises:
        ValidationError: payload is not an object with an integer update_id
    """
    if not isinstance(payload, dict):
        raise ValidationError("Update must be a JSON object", error_code="INVALID_UPDATE")
    update_id = payload.get("update_id")
    if isinstance(update_id, bool) or not isinstance(update_id, int):
        raise ValidationError("Update has no integer update_id", error_code="INVALID_UPDATE")

    kind = update_kind(payload)

    if kind == KIND_CALLBACK:
        query = payload["callback_query"]
        user = _parse_user(query.get("from"))
        chat_id = _chat_id(query.get("message")) or (user.id if user else None)
        data = query.get("data")
        return IncomingUpdate(
            update_id=update_id,
            kind=kind,
            user=user,
            chat_id=chat_id,
            callback_id=str(query.get("id", "")) or None,
            callback_data=data if isinstance(data, str) else "",
        )

    if kind in (KIND_PHOTO, KIND_TEXT):
        message = payload["message"]
        user = _parse_user(message.get("from"))
        chat_id = _chat_id(message) or (user.id if user else None)
        if kind == KIND_PHOTO:
            largest = message["photo"][-1]
            if not isinstance(largest, dict) or not isinstance(largest.get("file_id"), str):
                return IncomingUpdate(update_id=update_id, kind=KIND_IGNORED)
            size = largest.get("file_size")
            return IncomingUpdate(
                update_id=update_id,
                kind=kind,
                user=user,
                chat_id=chat_id,
                photo=PhotoSize(
                    file_id=largest["file_id"],
                    file_size=size if isinstance(size, int) else 0,
                ),
            )
        return IncomingUpdate(
            update_id=update_id,
            kind=kind,
            user=user,
            chat_id=chat_id,
            text=message["text"],
        )

    return IncomingUpdate(update_id=update_id, kind=KIND_IGNORED)
