"""
Command, callback and photo handlers.

Each handler reads the subscriber row, applies at most one transition
through SubscriberService, and replies. Transitions run before the reply,
so an update that loses a compare-and-set race is dropped by the router
without a duplicate message.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.utils import timezone

from core.helpers import validate_uuid

from memberships.bot import messages
from memberships.bot.router import BotContext, callback, command, photo_handler
from memberships.models import Plan, Subscriber
from memberships.services import PaymentIntakeService, SubscriberService
from memberships.state_machines import PaymentMethod, SubscriberStatus

logger = logging.getLogger(__name__)

RESTARTABLE_STATUSES = (SubscriberStatus.EXPIRED, SubscriberStatus.REJECTED)


def _find_subscriber(ctx: BotContext) -> Subscriber | None:
    return (
        Subscriber.objects.select_related("project", "plan")
        .filter(project=ctx.project, telegram_user_id=ctx.user.id)
        .first()
    )


def _find_plan(ctx: BotContext, plan_id: str) -> Plan | None:
    return Plan.objects.filter(pk=plan_id, project=ctx.project, is_active=True).first()


def _offer_plans(ctx: BotContext, subscriber: Subscriber) -> None:
    """List active plans and put the subscriber back at plan selection."""
    plans = list(ctx.project.plans.active())
    if not plans:
        ctx.reply(messages.welcome_no_plans(ctx.project))
        return

    if subscriber.status in RESTARTABLE_STATUSES:
        subscriber = SubscriberService.transition(subscriber, "restart")

    ctx.reply(
        messages.welcome(ctx.project, ctx.user.first_name or subscriber.display_name, plans),
        messages.plans_keyboard(plans),
    )


# =============================================================================
# Commands
# =============================================================================


@command("/start")
def handle_start(ctx: BotContext) -> None:
    """
    Greet the user.

    Subscribers with access, an operation in flight, or a suspension get
    a status reminder and are not reset. Everyone else sees the plans.
    """
    subscriber, _ = SubscriberService.upsert(
        ctx.project,
        ctx.user.id,
        first_name=ctx.user.first_name,
        username=ctx.user.username,
    )
    text = messages.welcome_back(subscriber, ctx.project)
    if text:
        ctx.reply(text)
        return
    _offer_plans(ctx, subscriber)


@command("/status")
def handle_status(ctx: BotContext) -> None:
    subscriber = _find_subscriber(ctx)
    if subscriber is None:
        ctx.reply(messages.NO_SUBSCRIPTION)
        return
    ctx.reply(messages.status_report(subscriber, ctx.project, timezone.now()))


@command("/renew")
def handle_renew(ctx: BotContext) -> None:
    """
    Extend while active; otherwise fall back to plan selection.

    Pending and suspended subscribers get an explanation instead.
    """
    subscriber = _find_subscriber(ctx)
    if subscriber is None:
        handle_start(ctx)
        return

    if subscriber.status == SubscriberStatus.PENDING_APPROVAL:
        ctx.reply(messages.RENEW_PENDING_APPROVAL)
    elif subscriber.status == SubscriberStatus.AWAITING_PROOF:
        ctx.reply(messages.RENEW_AWAITING_PROOF)
    elif subscriber.status == SubscriberStatus.SUSPENDED:
        ctx.reply(messages.RENEW_SUSPENDED)
    elif subscriber.status == SubscriberStatus.ACTIVE:
        plans = list(ctx.project.plans.active())
        if not plans:
            ctx.reply(messages.NO_PLANS_AVAILABLE)
            return
        ctx.reply(messages.renew_prompt(subscriber), messages.plans_keyboard(plans))
    else:
        handle_start(ctx)


@command("/help")
def handle_help(ctx: BotContext) -> None:
    ctx.reply(messages.help_text(ctx.project))


# =============================================================================
# Callbacks
# =============================================================================


@callback("select_plan")
def handle_select_plan(ctx: BotContext, args: list[str]) -> None:
    if len(args) != 1 or not validate_uuid(args[0]):
        ctx.reply(messages.INVALID_PLAN)
        return

    plan = _find_plan(ctx, args[0])
    if plan is None:
        ctx.reply(messages.PLAN_NOT_FOUND)
        return

    subscriber, _ = SubscriberService.upsert(
        ctx.project,
        ctx.user.id,
        first_name=ctx.user.first_name,
        username=ctx.user.username,
    )
    if subscriber.status == SubscriberStatus.PENDING_APPROVAL:
        ctx.reply(messages.RENEW_PENDING_APPROVAL)
        return
    if subscriber.status == SubscriberStatus.SUSPENDED:
        ctx.reply(messages.RENEW_SUSPENDED)
        return

    SubscriberService.transition(subscriber, "select_plan", plan=plan)
    ctx.reply(messages.plan_selected(plan), messages.payment_method_keyboard(plan, ctx.project))


@callback("pay_method")
def handle_pay_method(ctx: BotContext, args: list[str]) -> None:
    if len(args) != 2:
        ctx.reply(messages.INVALID_SELECTION)
        return
    plan_id, method = args
    if not validate_uuid(plan_id) or method not in PaymentMethod.values:
        ctx.reply(messages.INVALID_SELECTION)
        return

    project = ctx.project
    manual_offered = project.manual_payment_enabled or not project.stripe_enabled
    if (method == PaymentMethod.MANUAL and not manual_offered) or (
        method == PaymentMethod.STRIPE and not project.stripe_enabled
    ):
        ctx.reply(messages.INVALID_SELECTION)
        return

    plan = _find_plan(ctx, plan_id)
    if plan is None:
        ctx.reply(messages.PLAN_NOT_FOUND)
        return

    subscriber = _find_subscriber(ctx)
    if subscriber is None:
        ctx.reply(messages.SUBSCRIBER_NOT_FOUND)
        return

    if method == PaymentMethod.MANUAL:
        SubscriberService.transition(subscriber, "choose_manual_payment", plan=plan)
        ctx.reply(messages.manual_payment(plan, project))
        return

    result = PaymentIntakeService.create_checkout(subscriber, plan)
    if not result.success:
        ctx.reply(messages.CHECKOUT_FAILED)
        return
    ctx.reply(messages.card_payment(plan), messages.url_button("💳 Pay Now", result.data))


@callback("confirm_payment")
def handle_confirm_payment(ctx: BotContext, args: list[str]) -> None:
    ctx.reply(messages.PAYMENT_CONFIRMATION_RECEIVED)


# =============================================================================
# Photos
# =============================================================================


@photo_handler
def handle_photo(ctx: BotContext) -> None:
    """Accept a payment proof screenshot from a subscriber awaiting proof."""
    photo = ctx.update.photo
    max_size_mb = getattr(settings, "TELEGRAM_MAX_PHOTO_SIZE_MB", 20)
    if photo.file_size > max_size_mb * 1024 * 1024:
        ctx.reply(messages.file_too_large(max_size_mb))
        return

    subscriber = (
        Subscriber.objects.select_related("project", "plan")
        .filter(
            project=ctx.project,
            telegram_user_id=ctx.user.id,
            status=SubscriberStatus.AWAITING_PROOF,
        )
        .first()
    )
    if subscriber is None:
        ctx.reply(messages.NO_PENDING_PAYMENT)
        return

    ctx.reply(messages.PROCESSING_PROOF)
    outcome = PaymentIntakeService.ingest_proof(subscriber, photo.file_id, telegram=ctx.telegram)
    ctx.reply(messages.PROOF_UPLOADED if outcome.stored else messages.PROOF_RECEIVED)
