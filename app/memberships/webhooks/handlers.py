"""
Dispatch of recorded webhook events.

Telegram events go to the conversation router. Stripe events go through
a registry keyed by event type; unknown types are acknowledged.

Usage:
    from memberships.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("checkout.session.completed")
    def handle_checkout_completed(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from django_fsm import can_proceed

from core.exceptions import ValidationError
from core.helpers import validate_uuid
from core.services import ServiceResult

from memberships.bot.router import route_update
from memberships.models import Subscriber, WebhookEvent
from memberships.services import SubscriberService
from memberships.state_machines import PaymentMethod, WebhookProvider

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps Stripe event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a Stripe event handler.

    Args:
        event_type: The Stripe event type (e.g., "checkout.session.completed")
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the router or a registered Stripe handler.

    Returns:
        ServiceResult from the handler, or success if there is none
    """
    if webhook_event.provider == WebhookProvider.TELEGRAM:
        return _dispatch_telegram(webhook_event)

    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)
    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"event_id": webhook_event.event_id},
    )
    return handler(webhook_event)


def _dispatch_telegram(webhook_event: WebhookEvent) -> ServiceResult:
    project = webhook_event.project
    if project is None or not project.is_active:
        return ServiceResult.failure(
            "Webhook event has no active project",
            error_code="PROJECT_NOT_FOUND",
        )
    try:
        route_update(project, webhook_event.payload)
    except ValidationError as e:
        return ServiceResult.from_exception(e)
    return ServiceResult.success(None)


# =============================================================================
# Stripe Checkout Handlers
# =============================================================================


@register_handler("checkout.session.completed")
def handle_checkout_session_completed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Activate (or renew) a subscriber after a paid hosted checkout.

    The session carries the subscriber id in client_reference_id and the
    plan in metadata. Redelivered events never reach this handler twice
    because the WebhookEvent ledger acknowledges processed ids.
    """
    session = (webhook_event.payload.get("data") or {}).get("object") or {}
    subscriber_id = session.get("client_reference_id") or ""
    metadata = session.get("metadata") or {}
    plan_id = metadata.get("plan_id") or None

    if not validate_uuid(subscriber_id) or (plan_id and not validate_uuid(plan_id)):
        logger.error(
            "checkout.session.completed: missing subscriber reference",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.failure(
            "Checkout session has no valid client_reference_id",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    if session.get("payment_status") not in (None, "paid", "no_payment_required"):
        logger.info(
            "Checkout completed without payment, waiting for async confirmation",
            extra={"event_id": webhook_event.event_id, "subscriber_id": subscriber_id},
        )
        return ServiceResult.success(None)

    subscriber = Subscriber.objects.filter(pk=subscriber_id).first()
    if subscriber is None:
        return ServiceResult.failure(
            f"Subscriber {subscriber_id} not found",
            error_code="SUBSCRIBER_NOT_FOUND",
        )
    if not can_proceed(subscriber.approve):
        # Paid but blocked (suspended, rejected, expired); left FAILED in the ledger for an admin
        logger.error(
            "Checkout paid for subscriber that cannot be approved",
            extra={"subscriber_id": subscriber_id, "status": subscriber.status},
        )
        return ServiceResult.failure(
            f"Subscriber {subscriber_id} is {subscriber.status} and cannot be approved",
            error_code="CHECKOUT_NOT_APPROVABLE",
        )

    result = SubscriberService.approve(
        subscriber_id,
        plan_id=plan_id,
        payment_method=PaymentMethod.STRIPE,
    )
    if not result.success:
        logger.warning(
            "Checkout approval refused",
            extra={"subscriber_id": subscriber_id, "error_code": result.error_code},
        )
    return result
