"""
Webhook endpoint views for Telegram and Stripe.

Both views:
1. Authenticate the request (shared secret / Stripe signature)
2. Create or fetch the WebhookEvent record (idempotent)
3. Queue the event for async processing
4. Return immediately

Rejections never touch the database and return a fixed generic body, so
a caller cannot tell an unknown project from a wrong secret beyond the
status code.

Usage:
    # In urls.py
    from memberships.webhooks.views import stripe_webhook, telegram_webhook

    urlpatterns = [
        path("webhooks/telegram/", telegram_webhook, name="telegram-webhook"),
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    ]
"""

from __future__ import annotations

import json
import logging

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.helpers import validate_uuid

from memberships.adapters import StripeAdapter
from memberships.bot.updates import update_kind
from memberships.exceptions import StripeInvalidRequestError
from memberships.models import Project, WebhookEvent
from memberships.state_machines import WebhookEventStatus, WebhookProvider
from memberships.webhooks.auth import SECRET_HEADER, verify_webhook_secret

logger = logging.getLogger(__name__)


def _error(message: str, status: int) -> JsonResponse:
    return JsonResponse({"error": message}, status=status)


def _enqueue(webhook_event: WebhookEvent) -> None:
    """
    Queue processing; fall back to processing inline if the broker is down.
    """
    from memberships.tasks import process_webhook_event

    try:
        process_webhook_event.delay(str(webhook_event.id))
    except Exception:
        logger.exception(
            "Failed to queue webhook, processing inline",
            extra={"webhook_event_id": str(webhook_event.id)},
        )
        process_webhook_event.apply(args=[str(webhook_event.id)])
        return

    logger.info(
        "Webhook queued for processing",
        extra={
            "provider": webhook_event.provider,
            "webhook_event_id": str(webhook_event.id),
        },
    )


def _record_event(
    provider: str,
    event_id: str,
    event_type: str,
    payload: dict,
    project: Project | None = None,
) -> tuple[WebhookEvent, bool]:
    """
    get_or_create the ledger row.

    Returns:
        (event, should_process) - True for a new event or a failed redelivery
    """
    webhook_event, created = WebhookEvent.objects.get_or_create(
        provider=provider,
        event_id=event_id,
        defaults={
            "event_type": event_type,
            "payload": payload,
            "project": project,
            "status": WebhookEventStatus.PENDING,
        },
    )
    if created:
        return webhook_event, True

    # Pending and processing rows are already queued or running
    should_process = webhook_event.status == WebhookEventStatus.FAILED
    logger.info(
        f"Webhook already exists with status: {webhook_event.status}",
        extra={
            "provider": provider,
            "event_id": event_id,
            "requeued": should_process,
        },
    )
    return webhook_event, should_process


# =============================================================================
# Telegram
# =============================================================================


@csrf_exempt
@require_POST
def telegram_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Telegram update for one project.

    Returns:
        - 200 {"ok": true}: Update accepted (new or redelivered)
        - 400: Invalid project id or body
        - 401: Missing or wrong secret header
        - 404: Unknown or inactive project
        - 500: Unexpected failure
    """
    try:
        project_id = request.GET.get("project_id", "")
        if not validate_uuid(project_id):
            return _error("Invalid project id", 400)

        project = Project.objects.filter(pk=project_id, is_active=True).first()
        if project is None:
            return _error("Not found", 404)

        if not verify_webhook_secret(project.bot_token, request.headers.get(SECRET_HEADER)):
            logger.warning(
                "Telegram webhook secret mismatch",
                extra={"project_id": project_id},
            )
            return _error("Unauthorized", 401)

        try:
            update = json.loads(request.body)
        except (ValueError, UnicodeDecodeError):
            return _error("Invalid JSON", 400)
        if not isinstance(update, dict):
            return _error("Invalid update", 400)
        update_id = update.get("update_id")
        if isinstance(update_id, bool) or not isinstance(update_id, int):
            return _error("Invalid update", 400)

        webhook_event, should_process = _record_event(
            WebhookProvider.TELEGRAM,
            f"{project.id}:{update_id}",
            update_kind(update),
            update,
            project=project,
        )
        if should_process:
            _enqueue(webhook_event)

        return JsonResponse({"ok": True})
    except Exception:
        logger.exception("Unhandled error in Telegram webhook")
        return _error("Internal server error", 500)


# =============================================================================
# Stripe
# =============================================================================


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue Stripe webhook events.

    Stripe expects a 2xx within 20 seconds, so processing happens in
    process_webhook_event.

    Returns:
        - 200: Event accepted (new or duplicate)
        - 400: Invalid signature or payload
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = StripeAdapter.verify_webhook_signature(request.body, signature)
    except StripeInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error_code": e.error_code},
        )
        return HttpResponse("Invalid signature", status=400)

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")
    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={"stripe_event_id": stripe_event_id, "event_type": event_type},
    )

    webhook_event, should_process = _record_event(
        WebhookProvider.STRIPE,
        stripe_event_id,
        event_type,
        event_data,
    )
    if should_process:
        _enqueue(webhook_event)

    return HttpResponse("Accepted", status=200)
