"""
Conversation router.

Dispatches a parsed update to a command, callback or photo handler. The
router holds no session: handlers read the subscriber row and decide
everything from its stored status.

Handler registry:
    @command("/start")            handler(ctx)
    @callback("select_plan")      handler(ctx, args)
    @photo_handler                handler(ctx)

Callback payloads use the grammar "action:arg:arg". Unknown actions get
a soft-fail reply, never an exception. Transitions that lose a
compare-and-set race are dropped here; that is how duplicate deliveries
and double presses become no-ops.

Usage:
    from memberships.bot.router import route_update

    route_update(project, update_payload)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from core.exceptions import ConcurrencyConflict

from memberships.adapters import TelegramAdapter
from memberships.bot import messages
from memberships.bot.updates import (
    KIND_CALLBACK,
    KIND_PHOTO,
    KIND_TEXT,
    IncomingUpdate,
    parse_update,
)
from memberships.exceptions import TelegramAPIError

if TYPE_CHECKING:
    from memberships.models import Project


logger = logging.getLogger(__name__)


@dataclass
class BotContext:
    """Everything a handler needs to answer one update."""

    project: Project
    update: IncomingUpdate
    telegram: TelegramAdapter

    @property
    def user(self):
        return self.update.user

    def reply(self, text: str, reply_markup: dict[str, Any] | None = None) -> bool:
        """
        Send a message to the update's chat.

        Delivery failures are logged and reported as False; the state
        change that preceded the reply stays committed.
        """
        try:
            self.telegram.send_message(
                chat_id=self.update.chat_id,
                text=text,
                reply_markup=reply_markup,
            )
        except TelegramAPIError as e:
            logger.warning(
                "Reply delivery failed",
                extra={
                    "project_id": str(self.project.id),
                    "update_id": self.update.update_id,
                    "error_code": e.error_code,
                },
            )
            return False
        return True


# =============================================================================
# Handler Registry
# =============================================================================


COMMAND_HANDLERS: dict[str, Callable[[BotContext], None]] = {}
CALLBACK_HANDLERS: dict[str, Callable[[BotContext, list[str]], None]] = {}
PHOTO_HANDLERS: list[Callable[[BotContext], None]] = []


def command(name: str) -> Callable:
    """Register a handler for a slash command (e.g. "/start")."""

    def decorator(func: Callable[[BotContext], None]) -> Callable:
        COMMAND_HANDLERS[name] = func
        return func

    return decorator


def callback(action: str) -> Callable:
    """Register a handler for a callback action (payload prefix before ":")."""

    def decorator(func: Callable[[BotContext, list[str]], None]) -> Callable:
        CALLBACK_HANDLERS[action] = func
        return func

    return decorator


def photo_handler(func: Callable[[BotContext], None]) -> Callable:
    """Register the handler for photo messages."""
    PHOTO_HANDLERS[:] = [func]
    return func


# =============================================================================
# Dispatch
# =============================================================================


def route_update(
    project: Project,
    payload: dict[str, Any],
    telegram: TelegramAdapter | None = None,
) -> None:
    """
    Handle one Telegram update for a project.

    Raises:
        ValidationError: Malformed update (no integer update_id)
    """
    update = parse_update(payload)
    if update.kind not in (KIND_CALLBACK, KIND_PHOTO, KIND_TEXT) or update.user is None:
        logger.debug("Ignoring update", extra={"update_id": update.update_id})
        return

    ctx = BotContext(
        project=project,
        update=update,
        telegram=telegram or TelegramAdapter(project.bot_token),
    )
    log_extra = {
        "project_id": str(project.id),
        "update_id": update.update_id,
        "kind": update.kind,
    }

    try:
        if update.kind == KIND_CALLBACK:
            _route_callback(ctx)
        elif update.kind == KIND_PHOTO:
            for handler in PHOTO_HANDLERS:
                handler(ctx)
        else:
            _route_text(ctx)
    except ConcurrencyConflict as e:
        logger.info(
            "Dropped update that lost a state race",
            extra={**log_extra, "error_code": e.error_code},
        )


def _route_text(ctx: BotContext) -> None:
    command_name = ctx.update.command
    handler = COMMAND_HANDLERS.get(command_name)
    if handler:
        logger.info(
            "Handling command",
            extra={"project_id": str(ctx.project.id), "command": command_name},
        )
        handler(ctx)
    elif ctx.update.text.startswith("/"):
        ctx.reply(messages.UNKNOWN_COMMAND)


def _route_callback(ctx: BotContext) -> None:
    # Clear the client's loading spinner before doing any work
    if ctx.update.callback_id:
        try:
            ctx.telegram.answer_callback_query(ctx.update.callback_id)
        except TelegramAPIError as e:
            logger.warning(
                "answerCallbackQuery failed",
                extra={"project_id": str(ctx.project.id), "error_code": e.error_code},
            )

    action, *args = ctx.update.callback_data.split(":")
    handler = CALLBACK_HANDLERS.get(action)
    if handler is None:
        logger.info(
            "Unknown callback action",
            extra={"project_id": str(ctx.project.id), "action": action[:64]},
        )
        ctx.reply(messages.INVALID_SELECTION)
        return
    handler(ctx, args)
