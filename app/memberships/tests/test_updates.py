"""
Tests for Telegram update parsing.
"""

import pytest

from core.exceptions import ValidationError
from memberships.bot.updates import (
    KIND_CALLBACK,
    KIND_IGNORED,
    KIND_PHOTO,
    KIND_TEXT,
    parse_update,
    update_kind,
)


def message(**fields):
    return {
        "message_id": 1,
        "from": {"id": 42, "first_name": "Ada", "username": "ada"},
        "chat": {"id": 42, "type": "private"},
        **fields,
    }


class TestUpdateKind:
    """Tests for dispatch precedence."""

    def test_callback_wins_over_message(self):
        payload = {
            "update_id": 1,
            "callback_query": {"id": "cb", "data": "x"},
            "message": message(text="/start"),
        }

        assert update_kind(payload) == KIND_CALLBACK

    def test_photo_wins_over_caption_text(self):
        payload = {"update_id": 1, "message": message(text="hi", photo=[{"file_id": "a"}])}

        assert update_kind(payload) == KIND_PHOTO

    def test_empty_photo_list_is_text(self):
        payload = {"update_id": 1, "message": message(text="hi", photo=[])}

        assert update_kind(payload) == KIND_TEXT

    def test_other_updates_are_ignored(self):
        assert update_kind({"update_id": 1, "edited_message": message(text="x")}) == KIND_IGNORED
        assert update_kind({"update_id": 1, "message": message(sticker={})}) == KIND_IGNORED


class TestParseUpdate:
    """Tests for parse_update."""

    @pytest.mark.parametrize("payload", [[], "x", {"update_id": "1"}, {"update_id": True}, {}])
    def test_requires_integer_update_id(self, payload):
        with pytest.raises(ValidationError):
            parse_update(payload)

    def test_text_message(self):
        update = parse_update({"update_id": 7, "message": message(text="/Start@MyBot ref")})

        assert update.kind == KIND_TEXT
        assert update.chat_id == 42
        assert update.user.username == "ada"
        assert update.command == "/start"

    def test_photo_uses_largest_size(self):
        update = parse_update(
            {
                "update_id": 7,
                "message": message(
                    photo=[
                        {"file_id": "small", "file_size": 100},
                        {"file_id": "large", "file_size": 90000},
                    ]
                ),
            }
        )

        assert update.kind == KIND_PHOTO
        assert update.photo.file_id == "large"
        assert update.photo.file_size == 90000

    def test_callback_reply_chat_defaults_to_user(self):
        update = parse_update(
            {
                "update_id": 7,
                "callback_query": {
                    "id": "cb1",
                    "from": {"id": 99, "first_name": "Bo"},
                    "data": "select_plan:abc",
                },
            }
        )

        assert update.kind == KIND_CALLBACK
        assert update.chat_id == 99
        assert update.callback_id == "cb1"
        assert update.callback_data == "select_plan:abc"

    def test_names_are_sanitized_and_truncated(self):
        update = parse_update(
            {
                "update_id": 7,
                "message": {
                    "from": {"id": 1, "first_name": "A\x00da" + "x" * 200, "username": "u" * 80},
                    "chat": {"id": 1},
                    "text": "hi",
                },
            }
        )

        assert update.user.first_name.startswith("Ada")
        assert len(update.user.first_name) == 100
        assert len(update.user.username) == 50

    def test_message_without_sender_has_no_user(self):
        update = parse_update({"update_id": 7, "message": {"chat": {"id": 1}, "text": "hi"}})

        assert update.user is None
