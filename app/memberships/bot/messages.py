"""
Conversation texts and inline keyboards.

Everything the bot says in reply to a command, callback or photo is built
here. Tenant-supplied (project, plan) and user-supplied (first name) strings
are HTML-escaped at the point of interpolation; callers pass raw values.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.utils import timezone

from core.helpers import escape_html

from memberships.state_machines import PaymentMethod, SubscriberStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from memberships.models import Plan, Project, Subscriber


# Reminder thresholds for /status
STATUS_WARNING_DAYS = 7

STATUS_DISPLAY = {
    SubscriberStatus.ACTIVE: ("✅", "Active"),
    SubscriberStatus.PENDING_PAYMENT: ("⏳", "Pending Payment"),
    SubscriberStatus.PENDING_APPROVAL: ("🔄", "Pending Approval"),
    SubscriberStatus.AWAITING_PROOF: ("📤", "Awaiting Payment Proof"),
    SubscriberStatus.EXPIRED: ("❌", "Expired"),
    SubscriberStatus.REJECTED: ("🚫", "Rejected"),
    SubscriberStatus.SUSPENDED: ("⚠️", "Suspended"),
}

INVALID_PLAN = "❌ Invalid plan. Please use /start again."
INVALID_SELECTION = "❌ Invalid selection. Please use /start again."
PLAN_NOT_FOUND = "❌ Plan not found. Please use /start again."
SUBSCRIBER_NOT_FOUND = "❌ Subscriber not found. Please use /start again."
PAYMENT_CONFIRMATION_RECEIVED = "✅ Payment confirmation received! Please wait for verification."
UNKNOWN_COMMAND = "❓ Unknown command. Use /help to see available commands."
NO_SUBSCRIPTION = "❌ You don't have a subscription yet.\n\nUse /start to view plans!"
NO_PENDING_PAYMENT = (
    "❓ We received your photo, but you don't have a pending payment.\n\n"
    "Use /start to subscribe or /status to check your subscription."
)
PROCESSING_PROOF = "📸 Processing your payment proof..."
PROOF_UPLOADED = (
    "✅ Payment proof uploaded successfully!\n\n"
    "Our team will review your payment and activate your subscription shortly."
)
PROOF_RECEIVED = (
    "📸 Payment proof received!\n\n"
    "Our team will review your payment and activate your subscription shortly."
)
CHECKOUT_FAILED = "❌ Error setting up payment. Please try again or use manual payment."
RENEW_PENDING_APPROVAL = "🔄 Your payment is pending approval. Please wait for verification."
RENEW_AWAITING_PROOF = (
    "📤 Please send your payment proof first to complete your current subscription."
)
RENEW_SUSPENDED = "⚠️ Your account is suspended. Please contact support to resolve this."
NO_PLANS_AVAILABLE = "Sorry, no plans available at the moment."
DEFAULT_MANUAL_INSTRUCTIONS = "Please send your payment to complete the subscription."


# =============================================================================
# Formatting Helpers
# =============================================================================


def format_date(value: datetime) -> str:
    """Render a timestamp as a calendar date in the configured time zone."""
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return value.strftime("%Y-%m-%d")


def url_button(text: str, url: str) -> dict[str, Any]:
    """Inline keyboard with a single URL button."""
    return {"inline_keyboard": [[{"text": text, "url": url}]]}


def file_too_large(max_size_mb: int) -> str:
    return f"❌ File too large. Maximum size is {max_size_mb}MB."


def _support_line(project: Project, label: str = "📞 Support") -> str:
    if not project.support_contact:
        return ""
    return f"{label}: {escape_html(project.support_contact)}"


# =============================================================================
# Plan Listing
# =============================================================================


def plans_keyboard(plans: Iterable[Plan]) -> dict[str, Any]:
    """One select_plan button per plan, cheapest first."""
    return {
        "inline_keyboard": [
            [
                {
                    "text": f"{plan.name} - {plan.price_display} ({plan.duration_days} days)",
                    "callback_data": f"select_plan:{plan.id}",
                }
            ]
            for plan in plans
        ]
    }


def plans_list(plans: Iterable[Plan]) -> str:
    items = []
    for plan in plans:
        item = (
            f"• <b>{escape_html(plan.name)}</b>\n"
            f"  💰 {plan.price_display} for {plan.duration_days} days"
        )
        if plan.description:
            item += f"\n  {escape_html(plan.description)}"
        items.append(item)
    return "\n\n".join(items)


def welcome(project: Project, first_name: str, plans: list[Plan]) -> str:
    return (
        f"👋 Welcome to <b>{escape_html(project.name)}</b>, {escape_html(first_name)}!\n\n"
        f"🎯 Choose a subscription plan:\n\n{plans_list(plans)}"
    )


def welcome_no_plans(project: Project) -> str:
    return (
        f"👋 Welcome to <b>{escape_html(project.name)}</b>!\n\n"
        "Sorry, no subscription plans available. Please check back later."
    )


def welcome_back(subscriber: Subscriber, project: Project) -> str | None:
    """
    Reply to /start for subscribers who must not be reset.

    Returns None for statuses that continue to plan selection.
    """
    greeting = f"👋 Welcome back, <b>{escape_html(subscriber.first_name)}</b>!\n\n"

    if subscriber.status == SubscriberStatus.ACTIVE:
        expiry = format_date(subscriber.expiry_date) if subscriber.expiry_date else "N/A"
        return (
            f"{greeting}✅ You have an active subscription!\n📅 Expires: {expiry}\n\n"
            "Use /status for details.\nUse /renew to extend."
        )
    if subscriber.status == SubscriberStatus.PENDING_APPROVAL:
        return f"{greeting}🔄 Your payment is pending approval. We'll notify you once reviewed!"
    if subscriber.status == SubscriberStatus.AWAITING_PROOF:
        return (
            f"{greeting}📤 You have a pending payment. "
            "Please send your payment proof (screenshot) here."
        )
    if subscriber.status == SubscriberStatus.SUSPENDED:
        text = f"{greeting}⚠️ Your subscription has been suspended. Please contact support."
        support = _support_line(project)
        return f"{text}\n\n{support}" if support else text
    return None


def renew_prompt(subscriber: Subscriber) -> str:
    text = "🔄 <b>Extend Your Subscription</b>\n\n"
    if subscriber.expiry_date:
        text += (
            f"Current subscription expires: {format_date(subscriber.expiry_date)}\n"
            "New days will be added to your current expiry.\n\n"
        )
    return f"{text}Choose a plan:"


# =============================================================================
# Status & Help
# =============================================================================


def status_report(subscriber: Subscriber, project: Project, now: datetime) -> str:
    emoji, label = STATUS_DISPLAY.get(subscriber.status, ("❓", subscriber.status))
    text = f"📊 <b>Subscription Status</b>\n\n{emoji} Status: <b>{label}</b>\n"

    if subscriber.plan:
        text += f"📦 Plan: {escape_html(subscriber.plan.name)}\n"
    if subscriber.start_date:
        text += f"📅 Started: {format_date(subscriber.start_date)}\n"
    if subscriber.expiry_date:
        text += f"📅 Expires: {format_date(subscriber.expiry_date)}\n"
        if subscriber.status == SubscriberStatus.ACTIVE:
            days_left = subscriber.days_remaining(now)
            if days_left <= 0:
                text += "\n⚠️ Subscription expired! Use /renew to reactivate."
            elif days_left <= STATUS_WARNING_DAYS:
                text += f"\n⚠️ Expires in <b>{days_left} days</b>! Use /renew to extend."

    if subscriber.status == SubscriberStatus.SUSPENDED:
        text += "\n\n⚠️ Your subscription has been suspended. Please contact support."
        support = _support_line(project)
        if support:
            text += f"\n{support}"

    return text


def help_text(project: Project) -> str:
    text = (
        "📚 <b>Available Commands</b>\n\n"
        "/start - View plans and get started\n"
        "/status - Check your subscription\n"
        "/renew - Renew or extend subscription\n"
        "/help - Show this help message"
    )
    support = _support_line(project)
    return f"{text}\n\n{support}" if support else text


# =============================================================================
# Payment Flow
# =============================================================================


def plan_selected(plan: Plan) -> str:
    return (
        "✅ Great choice!\n\n"
        f"📦 <b>{escape_html(plan.name)}</b>\n"
        f"💰 Price: {plan.price_display}\n"
        f"⏱ Duration: {plan.duration_days} days\n\n"
        "Select your payment method:"
    )


def payment_method_keyboard(plan: Plan, project: Project) -> dict[str, Any]:
    """Manual and/or card buttons; a manual fallback when neither is enabled."""

    def button(text: str, method: PaymentMethod) -> list[dict[str, str]]:
        return [{"text": text, "callback_data": f"pay_method:{plan.id}:{method.value}"}]

    rows = []
    if project.manual_payment_enabled:
        rows.append(button("💳 Manual Payment", PaymentMethod.MANUAL))
    if project.stripe_enabled:
        rows.append(button("💳 Pay with Card", PaymentMethod.STRIPE))
    if not rows:
        rows.append(button("💳 Proceed to Payment", PaymentMethod.MANUAL))
    return {"inline_keyboard": rows}


def manual_payment(plan: Plan, project: Project) -> str:
    instructions = escape_html(project.manual_payment_instructions) or DEFAULT_MANUAL_INSTRUCTIONS
    return (
        "💳 <b>Manual Payment</b>\n\n"
        f"Amount: <b>{plan.price_display}</b>\n\n"
        f"📝 <b>Instructions:</b>\n{instructions}\n"
        "✅ After payment, send a screenshot of your payment confirmation here."
    )


def card_payment(plan: Plan) -> str:
    return (
        "💳 <b>Card Payment</b>\n\n"
        f"Amount: <b>{plan.price_display}</b>\n\n"
        "🔗 Click the button below to complete your payment securely:"
    )
