"""
Payment intake: manual proof-of-payment and hosted checkout.

Manual proof pipeline (subscriber in AWAITING_PROOF):
    getFile -> download -> put_object -> presigned URL -> submit_proof

Each step can fail independently. Any failure degrades to the raw
attachment reference "telegram_file:<file_id>" and the subscriber still
advances to PENDING_APPROVAL, so a reviewer can always find the proof.

Hosted checkout:
    Records the stripe method on the subscriber, then creates a Stripe
    Checkout Session. The idempotency key is derived from subscriber, plan
    and row version, so a repeated press reuses the same session.

Usage:
    from memberships.services import PaymentIntakeService

    outcome = PaymentIntakeService.ingest_proof(subscriber, file_id="AgAD...")
    if outcome.stored:
        ...
"""

from __future__ import annotations

import posixpath
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.services import BaseService, ServiceResult

from memberships.adapters import (
    CreateCheckoutSessionParams,
    IdempotencyKeyGenerator,
    ProofStorage,
    StripeAdapter,
    TelegramAdapter,
    content_type_for,
)
from memberships.exceptions import StorageError, StripeError, TelegramAPIError
from memberships.services.subscriber_service import SubscriberService
from memberships.state_machines import PaymentMethod, SubscriberStatus

if TYPE_CHECKING:
    from memberships.models import Plan, Subscriber

FALLBACK_PREFIX = "telegram_file:"

HOSTED_CHECKOUT_STATUSES = (SubscriberStatus.PENDING_PAYMENT, SubscriberStatus.ACTIVE)


@dataclass
class ProofIntakeResult:
    """
    Attributes:
        subscriber: Subscriber after submit_proof
        proof_url: Signed URL, or the telegram_file:<id> fallback
        stored: True when the proof reached object storage
    """

    subscriber: Subscriber
    proof_url: str
    stored: bool


def build_proof_key(project_id, subscriber_id, file_path: str, now_ms: int | None = None) -> str:
    """Object key <project>/<subscriber>/<epoch-ms>.<ext>."""
    extension = posixpath.splitext(file_path)[1].lstrip(".").lower() or "jpg"
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{project_id}/{subscriber_id}/{now_ms}.{extension}"


class PaymentIntakeService(BaseService):
    """Turns user payment actions into subscriber transitions."""

    # =========================================================================
    # Manual Proof
    # =========================================================================

    @classmethod
    def ingest_proof(
        cls,
        subscriber: Subscriber,
        file_id: str,
        telegram: TelegramAdapter | None = None,
        storage: ProofStorage | None = None,
    ) -> ProofIntakeResult:
        """
        Store a proof image and move the subscriber to PENDING_APPROVAL.

        Storage problems never block the transition; they only change the
        recorded reference.

        Raises:
            InvalidStateTransitionError: Subscriber is not awaiting proof
            StaleTransitionError: Another update won the race
        """
        project = subscriber.project
        telegram = telegram or TelegramAdapter(project.bot_token)
        logger = cls.get_logger()
        log_extra = {"subscriber_id": str(subscriber.id), "project_id": str(project.id)}

        proof_url = f"{FALLBACK_PREFIX}{file_id}"
        proof_key = ""
        try:
            file_info = telegram.get_file(file_id)
            file_path = (file_info or {}).get("file_path")
            if not file_path:
                raise TelegramAPIError("getFile returned no file_path", method="getFile")
            body = telegram.download_file(file_path)
            key = build_proof_key(project.id, subscriber.id, file_path)
            extension = posixpath.splitext(file_path)[1]
            stored = (storage or ProofStorage()).store(key, body, content_type_for(extension))
            proof_url, proof_key = stored.url, stored.key
        except (TelegramAPIError, StorageError) as e:
            logger.warning(
                "Proof storage failed, keeping attachment reference",
                extra={**log_extra, "error_code": e.error_code},
            )

        updated = SubscriberService.transition(
            subscriber,
            "submit_proof",
            proof_url=proof_url,
            proof_key=proof_key,
        )
        logger.info(
            "Payment proof submitted",
            extra={**log_extra, "stored": bool(proof_key)},
        )
        return ProofIntakeResult(subscriber=updated, proof_url=proof_url, stored=bool(proof_key))

    # =========================================================================
    # Hosted Checkout
    # =========================================================================

    @classmethod
    def create_checkout(cls, subscriber: Subscriber, plan: Plan) -> ServiceResult[str]:
        """
        Record the stripe method and create a hosted checkout session.

        Status stays PENDING_PAYMENT (or ACTIVE for a renewal); activation
        happens when Stripe reports checkout.session.completed.

        Returns:
            ServiceResult with the checkout URL, or a failure the caller
            turns into a retry-or-manual message.
        """
        project = subscriber.project
        logger = cls.get_logger()

        if plan.amount_minor_units <= 0:
            return ServiceResult.failure(
                "Plan price must be positive for card checkout",
                error_code="INVALID_AMOUNT",
            )

        current = SubscriberService.get(subscriber.pk)
        already_chosen = (
            current.payment_method == PaymentMethod.STRIPE
            and current.plan_id == plan.id
            and current.status in HOSTED_CHECKOUT_STATUSES
        )
        # A repeated press leaves the row (and so the idempotency key) unchanged
        if already_chosen:
            updated = current
        else:
            updated = SubscriberService.transition(current, "choose_hosted_payment", plan=plan)

        params = CreateCheckoutSessionParams(
            product_name=f"{project.name} - {plan.name}",
            description=plan.description or f"{plan.duration_days} days subscription",
            amount_cents=plan.amount_minor_units,
            currency=plan.currency,
            client_reference_id=str(updated.id),
            metadata={
                "project_id": str(project.id),
                "plan_id": str(plan.id),
                "subscriber_id": str(updated.id),
                "telegram_user_id": str(updated.telegram_user_id),
            },
            idempotency_key=IdempotencyKeyGenerator.generate(
                operation="checkout",
                entity_id=f"{updated.id}:{plan.id}",
                attempt=updated.version,
            ),
        )

        try:
            session = StripeAdapter.create_checkout_session(params)
        except StripeError as e:
            logger.warning(
                "Checkout session creation failed",
                extra={"subscriber_id": str(updated.id), "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)

        return ServiceResult.success(session.url)
