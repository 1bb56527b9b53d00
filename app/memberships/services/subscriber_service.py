"""
Subscriber lifecycle service.

Every status change of a Subscriber goes through SubscriberService.transition(),
which applies a django-fsm transition to a freshly loaded row and persists it
with a compare-and-set update. Two deliveries of the same webhook, or two
presses of the same button, therefore apply a transition at most once: the
loser gets StaleTransitionError (or InvalidStateTransitionError if the
winner already moved the row somewhere the transition does not start from).

Administrative operations (approve, reject, suspend, reactivate, extend,
revoke) wrap transition() in a ServiceResult and schedule exactly one
notification with transaction.on_commit, so a failed message can never roll
back a committed change.

Usage:
    from memberships.services import SubscriberService

    result = SubscriberService.approve(subscriber_id)
    if not result.success:
        return Response(result.to_response(), status=409)

    # Bot path (raises on conflict)
    SubscriberService.transition(subscriber, "submit_proof", proof_url=url)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from django_fsm import can_proceed

from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService, ServiceResult

from memberships.exceptions import InvalidStateTransitionError, StaleTransitionError
from memberships.models import Plan, Subscriber
from memberships.services.notification_dispatcher import NotificationDispatcher
from memberships.state_machines import NotifyAction

if TYPE_CHECKING:
    from uuid import UUID

    from memberships.models import Project


MAX_EXTENSION_DAYS = 3650

REMINDER_FLAGS = ("expiry_reminder_sent", "final_reminder_sent")


class SubscriberService(BaseService):
    """State machine operations on Subscriber rows."""

    # =========================================================================
    # Lookup & Upsert
    # =========================================================================

    @classmethod
    def upsert(
        cls,
        project: Project,
        telegram_user_id: int,
        first_name: str = "",
        username: str = "",
    ) -> tuple[Subscriber, bool]:
        """
        Get or create the subscriber for (project, telegram_user_id).

        Profile fields are refreshed when they changed. They are not part
        of the lifecycle, so this does not bump the version.
        """
        subscriber, created = Subscriber.objects.select_related("project", "plan").get_or_create(
            project=project,
            telegram_user_id=telegram_user_id,
            defaults={"first_name": first_name, "username": username},
        )
        if created:
            cls.get_logger().info(
                "Created subscriber",
                extra={"project_id": str(project.id), "subscriber_id": str(subscriber.id)},
            )
        elif (first_name and first_name != subscriber.first_name) or (
            username and username != subscriber.username
        ):
            subscriber.first_name = first_name or subscriber.first_name
            subscriber.username = username or subscriber.username
            Subscriber.objects.filter(pk=subscriber.pk).update(
                first_name=subscriber.first_name,
                username=subscriber.username,
            )
        return subscriber, created

    @classmethod
    def get(cls, subscriber_id: UUID | str) -> Subscriber:
        """
        Raises:
            NotFoundError: No such subscriber
        """
        subscriber = (
            Subscriber.objects.select_related("project", "plan").filter(pk=subscriber_id).first()
        )
        if subscriber is None:
            raise NotFoundError(
                f"Subscriber {subscriber_id} not found",
                error_code="SUBSCRIBER_NOT_FOUND",
                details={"subscriber_id": str(subscriber_id)},
            )
        return subscriber

    # =========================================================================
    # Core Transition Runner
    # =========================================================================

    @classmethod
    def transition(
        cls,
        subscriber: Subscriber | UUID | str,
        name: str,
        **kwargs: Any,
    ) -> Subscriber:
        """
        Apply a named transition with compare-and-set persistence.

        The row is always reloaded, so a stale in-memory instance cannot
        decide the outcome.

        Returns:
            The reloaded subscriber with the transition applied

        Raises:
            NotFoundError: Subscriber does not exist
            InvalidStateTransitionError: Not allowed from the stored status
            StaleTransitionError: Row changed between read and write
        """
        subscriber_id = subscriber.pk if isinstance(subscriber, Subscriber) else subscriber
        current = cls.get(subscriber_id)
        method = getattr(current, name)

        if not can_proceed(method):
            raise InvalidStateTransitionError(
                f"Cannot {name} subscriber in status {current.status}",
                details={"current_status": current.status, "transition": name},
            )

        expected_status, expected_version = current.status, current.version
        method(**kwargs)
        current.commit_transition(expected_status, expected_version)

        cls.get_logger().info(
            "Subscriber transition applied",
            extra={
                "subscriber_id": str(current.id),
                "project_id": str(current.project_id),
                "transition": name,
                "from_status": expected_status,
                "to_status": current.status,
                "version": current.version,
            },
        )
        return current

    # =========================================================================
    # Administrative Operations
    # =========================================================================

    @classmethod
    def approve(
        cls,
        subscriber_id: UUID | str,
        plan_id: UUID | str | None = None,
        payment_method: str | None = None,
    ) -> ServiceResult[Subscriber]:
        """
        Activate (or renew) access for the given plan, or the selected one.

        Issues an invite link and sends the approved notification.
        """
        try:
            subscriber = cls.get(subscriber_id)
            plan = cls._resolve_plan(subscriber, plan_id)
        except (NotFoundError, ValidationError) as e:
            return ServiceResult.from_exception(e)

        return cls._run_admin_transition(
            subscriber,
            "approve",
            NotifyAction.APPROVED,
            transition_kwargs={
                "plan": plan,
                "now": timezone.now(),
                "payment_method": payment_method,
            },
        )

    @classmethod
    def reject(cls, subscriber_id: UUID | str, reason: str = "") -> ServiceResult[Subscriber]:
        """Reject a submitted payment. Dates are left untouched."""
        return cls._run_admin_transition(
            subscriber_id,
            "reject",
            NotifyAction.REJECTED,
            transition_kwargs={"reason": reason},
            notify_kwargs={"reason": reason or None},
        )

    @classmethod
    def suspend(cls, subscriber_id: UUID | str, reason: str = "") -> ServiceResult[Subscriber]:
        """Suspend an active subscriber and remove them from the channel."""
        return cls._run_admin_transition(
            subscriber_id,
            "suspend",
            NotifyAction.SUSPENDED,
            transition_kwargs={"reason": reason, "now": timezone.now()},
            notify_kwargs={"reason": reason or None},
        )

    @classmethod
    def reactivate(cls, subscriber_id: UUID | str) -> ServiceResult[Subscriber]:
        """Lift a suspension and send a fresh invite link."""
        return cls._run_admin_transition(subscriber_id, "reactivate", NotifyAction.REACTIVATED)

    @classmethod
    def extend(cls, subscriber_id: UUID | str, days: int) -> ServiceResult[Subscriber]:
        """
        Add days to an active subscription.

        New expiry = max(current expiry, now) + days.
        """
        if isinstance(days, bool) or not isinstance(days, int) or not (
            1 <= days <= MAX_EXTENSION_DAYS
        ):
            return ServiceResult.failure(
                f"Extension must be between 1 and {MAX_EXTENSION_DAYS} days",
                error_code="INVALID_DAYS",
                errors={"days": [f"Must be an integer between 1 and {MAX_EXTENSION_DAYS}."]},
            )
        return cls._run_admin_transition(
            subscriber_id,
            "extend",
            NotifyAction.EXTENDED,
            transition_kwargs={"days": days, "now": timezone.now()},
        )

    @classmethod
    def revoke(cls, subscriber_id: UUID | str, reason: str = "") -> ServiceResult[Subscriber]:
        """Administrative kick: end access now and remove from the channel."""
        return cls._run_admin_transition(
            subscriber_id,
            "revoke",
            NotifyAction.KICKED,
            transition_kwargs={"reason": reason, "now": timezone.now()},
            notify_kwargs={"reason": reason or None},
        )

    # =========================================================================
    # Expiry Sweep Operations
    # =========================================================================

    @classmethod
    def expire(cls, subscriber: Subscriber) -> Subscriber:
        """
        Passive expiry: ACTIVE -> EXPIRED, then kick and notify.

        Raises:
            ConcurrencyConflict: Row changed or is no longer active
        """
        with transaction.atomic():
            expired = cls.transition(subscriber, "expire")
            cls._schedule_notification(expired, NotifyAction.EXPIRED)
        return expired

    @classmethod
    def mark_reminder_sent(cls, subscriber: Subscriber, flag: str) -> bool:
        """
        Claim a reminder flag with a conditional update.

        Returns True only for the caller that flipped the flag, so a
        reminder is sent once even if two sweeps overlap.
        """
        if flag not in REMINDER_FLAGS:
            raise ValueError(f"Unknown reminder flag: {flag}")
        rows = Subscriber.objects.filter(
            pk=subscriber.pk,
            version=subscriber.version,
            **{flag: False},
        ).update(**{flag: True, "version": F("version") + 1, "updated_at": timezone.now()})
        if rows:
            setattr(subscriber, flag, True)
            subscriber.version += 1
        return bool(rows)

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _resolve_plan(cls, subscriber: Subscriber, plan_id: UUID | str | None) -> Plan:
        if plan_id:
            plan = Plan.objects.filter(pk=plan_id, project_id=subscriber.project_id).first()
            if plan is None:
                raise NotFoundError(
                    f"Plan {plan_id} not found for this project",
                    error_code="PLAN_NOT_FOUND",
                    details={"plan_id": str(plan_id)},
                )
            return plan
        if subscriber.plan is None:
            raise ValidationError(
                "Subscriber has no selected plan; pass plan_id",
                error_code="PLAN_REQUIRED",
                details={"field": "plan_id"},
            )
        return subscriber.plan

    @classmethod
    def _run_admin_transition(
        cls,
        subscriber: Subscriber | UUID | str,
        name: str,
        action: NotifyAction,
        transition_kwargs: dict[str, Any] | None = None,
        notify_kwargs: dict[str, Any] | None = None,
    ) -> ServiceResult[Subscriber]:
        result: ServiceResult[Subscriber] = ServiceResult.success(None)
        try:
            with cls.atomic():
                updated = cls.transition(subscriber, name, **(transition_kwargs or {}))
                cls._schedule_notification(updated, action, result=result, **(notify_kwargs or {}))
        except (NotFoundError, InvalidStateTransitionError, StaleTransitionError) as e:
            cls.get_logger().info(
                "Administrative transition refused",
                extra={"transition": name, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)

        result.data = updated
        return result

    @classmethod
    def _schedule_notification(
        cls,
        subscriber: Subscriber,
        action: NotifyAction,
        result: ServiceResult | None = None,
        **notify_kwargs: Any,
    ) -> None:
        """
        Send the notification once the surrounding transaction commits.

        When no transaction is open the callback runs immediately, which
        lets synchronous callers surface delivery problems as warnings.
        """
        def send() -> None:
            outcome = NotificationDispatcher.notify(subscriber, action, **notify_kwargs)
            if result is not None and not outcome.message_sent:
                result.warnings.append(
                    f"Subscriber was not notified ({outcome.error}); delivery will be retried."
                )

        transaction.on_commit(send, robust=True)
