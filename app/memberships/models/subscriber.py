"""
Subscriber model: the per-(project, user) access lifecycle.

The subscriber row is the only conversation state the bot has. Its status
column is an explicit finite-state register: every reply and every
transition is decided from the stored status, so any worker can handle any
update.

Transitions are declared with django-fsm and persisted with a
compare-and-set update (see Subscriber.commit_transition), so a duplicated
webhook or a double button press cannot apply a transition twice.

Usage:
    from memberships.models import Subscriber

    subscriber, created = Subscriber.objects.get_or_create(
        project=project,
        telegram_user_id=12345,
        defaults={"first_name": "Ada"},
    )

    expected_status, expected_version = subscriber.status, subscriber.version
    subscriber.approve(plan=plan, now=timezone.now())
    subscriber.commit_transition(expected_status, expected_version)
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import RETURN_VALUE, FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from memberships.exceptions import StaleTransitionError
from memberships.state_machines import PaymentMethod, SubscriberStatus

if TYPE_CHECKING:
    from memberships.models.project import Plan


# =============================================================================
# Lifecycle Rules
# =============================================================================


def compute_approval_period(
    status: str,
    start_date: datetime | None,
    expiry_date: datetime | None,
    duration_days: int,
    now: datetime,
) -> tuple[datetime, datetime]:
    """
    Return (start_date, expiry_date) after an approval.

    An active subscriber whose expiry is still in the future is renewing:
    the new period is appended to the current one and the start date is
    kept. Anyone else gets a fresh grant starting now.
    """
    duration = timedelta(days=duration_days)
    if status == SubscriberStatus.ACTIVE and expiry_date and expiry_date > now:
        return start_date or now, expiry_date + duration
    return now, now + duration


def compute_extended_expiry(
    expiry_date: datetime | None,
    days: int,
    now: datetime,
) -> datetime:
    """New expiry = max(current expiry, now) + days. Never backdates."""
    base = expiry_date if expiry_date and expiry_date > now else now
    return base + timedelta(days=days)


class Subscriber(UUIDPrimaryKeyMixin, BaseModel):
    """
    One external user's access lifecycle within a project.

    Uses django-fsm for transition rules and a version counter for
    compare-and-set persistence.

    State Flow:
        PENDING_PAYMENT -> AWAITING_PROOF (manual method chosen)
        AWAITING_PROOF -> PENDING_APPROVAL (proof submitted)
        PENDING_APPROVAL -> ACTIVE (admin approval)
        PENDING_PAYMENT -> ACTIVE (hosted checkout completed)
        PENDING_APPROVAL -> REJECTED (admin)
        ACTIVE -> SUSPENDED -> ACTIVE (admin suspend / reactivate)
        ACTIVE/SUSPENDED -> EXPIRED (expiry sweep or admin revoke)
        EXPIRED/REJECTED -> PENDING_PAYMENT (start over)

    Fields:
        project: Owning project
        telegram_user_id: External user id (unique per project)
        status: Lifecycle status (managed by FSM)
        plan: Selected plan
        payment_method: manual or stripe
        payment_proof_url: Signed URL or telegram_file:<id> placeholder
        payment_proof_key: Object storage key of the stored proof
        start_date / expiry_date: Access period, set when entering ACTIVE
        invite_link: Last single-use invite link issued
        suspended_at / suspension_reason: Set while SUSPENDED
        rejection_reason: Reason given on rejection
        expiry_reminder_sent / final_reminder_sent: Sweep reminder flags
        version: Compare-and-set counter
    """

    # Fields written by commit_transition. invite_link is deliberately
    # absent: it is owned by the channel membership manager.
    TRANSITION_FIELDS = (
        "plan",
        "payment_method",
        "payment_proof_url",
        "payment_proof_key",
        "start_date",
        "expiry_date",
        "suspended_at",
        "suspension_reason",
        "rejection_reason",
        "notes",
        "expiry_reminder_sent",
        "final_reminder_sent",
    )

    # ==========================================================================
    # Identity
    # ==========================================================================

    project = models.ForeignKey(
        "memberships.Project",
        on_delete=models.CASCADE,
        related_name="subscribers",
    )

    telegram_user_id = models.BigIntegerField(
        help_text="Telegram user id (also the private chat id)",
    )

    username = models.CharField(max_length=50, blank=True, default="")

    first_name = models.CharField(max_length=100, blank=True, default="")

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SubscriberStatus.PENDING_PAYMENT,
        choices=SubscriberStatus.choices,
        db_index=True,
        help_text="Current lifecycle status (managed by FSM)",
    )

    # ==========================================================================
    # Plan & Payment
    # ==========================================================================

    plan = models.ForeignKey(
        "memberships.Plan",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscribers",
    )

    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        blank=True,
        default="",
    )

    payment_proof_url = models.TextField(
        blank=True,
        default="",
        help_text="Signed proof URL or telegram_file:<file_id> placeholder",
    )

    payment_proof_key = models.CharField(
        max_length=512,
        blank=True,
        default="",
        help_text="Object storage key of the stored proof",
    )

    # ==========================================================================
    # Access Period
    # ==========================================================================

    start_date = models.DateTimeField(null=True, blank=True)

    expiry_date = models.DateTimeField(null=True, blank=True, db_index=True)

    invite_link = models.URLField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Administrative
    # ==========================================================================

    suspended_at = models.DateTimeField(null=True, blank=True)

    suspension_reason = models.TextField(blank=True, default="")

    rejection_reason = models.TextField(blank=True, default="")

    notes = models.TextField(blank=True, default="")

    # ==========================================================================
    # Reminders
    # ==========================================================================

    expiry_reminder_sent = models.BooleanField(default=False)

    final_reminder_sent = models.BooleanField(default=False)

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Compare-and-set counter - incremented on each transition",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscriber"
        verbose_name_plural = "Subscribers"
        indexes = [
            models.Index(fields=["project", "status"], name="memberships_project_6c1e2a_idx"),
            models.Index(fields=["status", "expiry_date"], name="memberships_status_3d9b41_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["project", "telegram_user_id"],
                name="unique_subscriber_per_project",
            ),
        ]

    def __str__(self) -> str:
        return f"Subscriber({self.telegram_user_id}, {self.status})"

    def commit_transition(self, expected_status: str, expected_version: int) -> None:
        """
        Persist a transition applied to this instance, conditionally.

        Issues UPDATE ... WHERE id = pk AND status = expected_status AND
        version = expected_version. If another request got there first the
        update matches nothing and StaleTransitionError is raised; the row
        is left exactly as the winner wrote it.

        Raises:
            StaleTransitionError: The stored row no longer matches
        """
        values = {name: getattr(self, name) for name in self.TRANSITION_FIELDS}
        now = timezone.now()
        rows = type(self).objects.filter(
            pk=self.pk,
            status=expected_status,
            version=expected_version,
        ).update(
            status=self.status,
            version=F("version") + 1,
            updated_at=now,
            **values,
        )
        if rows == 0:
            raise StaleTransitionError(
                f"Subscriber {self.pk} changed concurrently",
                details={
                    "pk": str(self.pk),
                    "expected_status": expected_status,
                    "expected_version": expected_version,
                    "target_status": self.status,
                },
            )
        self.version = expected_version + 1
        self.updated_at = now

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[
            SubscriberStatus.PENDING_PAYMENT,
            SubscriberStatus.EXPIRED,
            SubscriberStatus.REJECTED,
        ],
        target=SubscriberStatus.PENDING_PAYMENT,
    )
    def restart(self):
        """
        Start over at plan selection (/start).

        Transition: PENDING_PAYMENT/EXPIRED/REJECTED -> PENDING_PAYMENT
        """
        self.rejection_reason = ""

    @transition(
        field=status,
        source=[
            SubscriberStatus.PENDING_PAYMENT,
            SubscriberStatus.AWAITING_PROOF,
            SubscriberStatus.EXPIRED,
            SubscriberStatus.REJECTED,
            SubscriberStatus.ACTIVE,
        ],
        target=RETURN_VALUE(SubscriberStatus.PENDING_PAYMENT, SubscriberStatus.ACTIVE),
    )
    def select_plan(self, plan: Plan):
        """
        Record the chosen plan.

        Active subscribers are renewing and stay ACTIVE; everyone else
        lands in PENDING_PAYMENT.
        """
        self.plan = plan
        if self.status == SubscriberStatus.ACTIVE:
            return SubscriberStatus.ACTIVE
        return SubscriberStatus.PENDING_PAYMENT

    @transition(
        field=status,
        source=[SubscriberStatus.PENDING_PAYMENT, SubscriberStatus.ACTIVE],
        target=SubscriberStatus.AWAITING_PROOF,
    )
    def choose_manual_payment(self, plan: Plan):
        """
        Manual payment chosen; wait for a proof screenshot.

        Transition: PENDING_PAYMENT/ACTIVE -> AWAITING_PROOF
        """
        self.plan = plan
        self.payment_method = PaymentMethod.MANUAL

    @transition(
        field=status,
        source=[SubscriberStatus.PENDING_PAYMENT, SubscriberStatus.ACTIVE],
        target=RETURN_VALUE(SubscriberStatus.PENDING_PAYMENT, SubscriberStatus.ACTIVE),
    )
    def choose_hosted_payment(self, plan: Plan):
        """
        Hosted checkout chosen; status is unchanged until Stripe confirms.
        """
        self.plan = plan
        self.payment_method = PaymentMethod.STRIPE
        return self.status

    @transition(
        field=status,
        source=SubscriberStatus.AWAITING_PROOF,
        target=SubscriberStatus.PENDING_APPROVAL,
    )
    def submit_proof(self, proof_url: str, proof_key: str = ""):
        """
        Proof received (stored or fallback reference).

        Transition: AWAITING_PROOF -> PENDING_APPROVAL
        """
        self.payment_proof_url = proof_url
        self.payment_proof_key = proof_key

    @transition(
        field=status,
        source=[
            SubscriberStatus.PENDING_PAYMENT,
            SubscriberStatus.AWAITING_PROOF,
            SubscriberStatus.PENDING_APPROVAL,
            SubscriberStatus.ACTIVE,
        ],
        target=SubscriberStatus.ACTIVE,
    )
    def approve(self, plan: Plan, now: datetime, payment_method: str | None = None):
        """
        Grant (or renew) access for the plan's duration.

        Transition: PENDING_*/AWAITING_PROOF/ACTIVE -> ACTIVE
        """
        self.start_date, self.expiry_date = compute_approval_period(
            status=self.status,
            start_date=self.start_date,
            expiry_date=self.expiry_date,
            duration_days=plan.duration_days,
            now=now,
        )
        self.plan = plan
        if payment_method:
            self.payment_method = payment_method
        self.rejection_reason = ""
        self.expiry_reminder_sent = False
        self.final_reminder_sent = False

    @transition(
        field=status,
        source=[SubscriberStatus.PENDING_APPROVAL, SubscriberStatus.AWAITING_PROOF],
        target=SubscriberStatus.REJECTED,
    )
    def reject(self, reason: str = ""):
        """
        Payment not accepted. Dates are left untouched.

        Transition: PENDING_APPROVAL/AWAITING_PROOF -> REJECTED
        """
        self.rejection_reason = reason

    @transition(
        field=status,
        source=SubscriberStatus.ACTIVE,
        target=SubscriberStatus.SUSPENDED,
    )
    def suspend(self, reason: str, now: datetime):
        """
        Transition: ACTIVE -> SUSPENDED
        """
        self.suspended_at = now
        self.suspension_reason = reason

    @transition(
        field=status,
        source=SubscriberStatus.SUSPENDED,
        target=SubscriberStatus.ACTIVE,
    )
    def reactivate(self):
        """
        Lift a suspension. The access period is not changed.

        Transition: SUSPENDED -> ACTIVE
        """
        self.suspended_at = None
        self.suspension_reason = ""

    @transition(
        field=status,
        source=SubscriberStatus.ACTIVE,
        target=SubscriberStatus.ACTIVE,
    )
    def extend(self, days: int, now: datetime):
        """
        Add days to an active subscription.

        Transition: ACTIVE -> ACTIVE
        """
        self.expiry_date = compute_extended_expiry(self.expiry_date, days, now)
        self.expiry_reminder_sent = False
        self.final_reminder_sent = False

    @transition(
        field=status,
        source=[SubscriberStatus.ACTIVE, SubscriberStatus.SUSPENDED],
        target=SubscriberStatus.EXPIRED,
    )
    def revoke(self, reason: str = "", now: datetime | None = None):
        """
        Administrative kick. A reason is appended to notes.

        Transition: ACTIVE/SUSPENDED -> EXPIRED
        """
        self.suspended_at = None
        if reason:
            stamp = (now or timezone.now()).strftime("%Y-%m-%d")
            entry = f"[{stamp}] Revoked: {reason}"
            self.notes = f"{self.notes}\n{entry}" if self.notes else entry

    @transition(
        field=status,
        source=SubscriberStatus.ACTIVE,
        target=SubscriberStatus.EXPIRED,
    )
    def expire(self):
        """
        Passive expiry by the sweep.

        Transition: ACTIVE -> EXPIRED
        """

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        """Check if subscriber currently has access."""
        return self.status == SubscriberStatus.ACTIVE

    @property
    def display_name(self) -> str:
        """Best available human name (first name, @username or user id)."""
        if self.first_name:
            return self.first_name
        if self.username:
            return f"@{self.username}"
        return f"User {self.telegram_user_id}"

    def days_remaining(self, now: datetime | None = None) -> int | None:
        """Whole days until expiry, rounded up; None without an expiry."""
        if not self.expiry_date:
            return None
        now = now or timezone.now()
        seconds = (self.expiry_date - now).total_seconds()
        return int(-(-seconds // 86400))
