"""
Project and Plan models.

A Project is one tenant: a Telegram bot selling access to one private
channel. Plans are the purchasable access tiers of a project.

Usage:
    from memberships.models import Plan, Project

    project = Project.objects.create(
        name="Premium Signals",
        bot_token="123456:ABC...",
        channel_id="-1001234567890",
    )
    Plan.objects.create(project=project, name="Monthly", price=25, duration_days=30)

    for plan in project.plans.active():
        ...
"""

from __future__ import annotations

from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class Project(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tenant configuration: channel, bot credential and payment toggles.

    The bot token is a credential. It is excluded from logs and from the
    admin list display, and the webhook shared secret is derived from it
    (see memberships.webhooks.auth).

    Fields:
        name: Display name shown to subscribers
        bot_token: Telegram bot credential
        channel_id: Private channel chat id (e.g. -100...)
        support_contact: Free-form contact shown in help and failure messages
        manual_payment_enabled: Offer the manual proof-of-payment method
        manual_payment_instructions: Text shown after choosing manual payment
        stripe_enabled: Offer hosted card checkout
        admin_telegram_id: Telegram user id of the project owner
        is_active: Inactive projects reject inbound webhooks with 404
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    name = models.CharField(
        max_length=200,
        help_text="Project name shown to subscribers",
    )

    # ==========================================================================
    # Telegram
    # ==========================================================================

    bot_token = models.CharField(
        max_length=255,
        help_text="Telegram bot token (credential - never logged)",
    )

    channel_id = models.CharField(
        max_length=64,
        help_text="Telegram chat id of the private channel",
    )

    support_contact = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Support contact shown to subscribers",
    )

    admin_telegram_id = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Telegram user id of the project owner",
    )

    # ==========================================================================
    # Payment Configuration
    # ==========================================================================

    manual_payment_enabled = models.BooleanField(
        default=True,
        help_text="Offer manual payment with proof upload",
    )

    manual_payment_instructions = models.TextField(
        blank=True,
        default="",
        help_text="Instructions shown after choosing manual payment",
    )

    stripe_enabled = models.BooleanField(
        default=False,
        help_text="Offer hosted card checkout via Stripe",
    )

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive projects do not accept webhooks",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Project"
        verbose_name_plural = "Projects"

    def __str__(self) -> str:
        return f"Project({self.name})"


class PlanQuerySet(models.QuerySet):
    """QuerySet helpers for plan listing."""

    def active(self) -> PlanQuerySet:
        """Active plans, cheapest first (the order buttons are shown in)."""
        return self.filter(is_active=True).order_by("price", "duration_days")


class Plan(UUIDPrimaryKeyMixin, BaseModel):
    """
    A purchasable access tier of a project.

    Fields:
        project: Owning project
        name: Plan name shown on buttons
        price: Price in major currency units
        currency: ISO 4217 code (default USD)
        duration_days: Days of access granted on approval
        description: Optional text shown in the plan list
        is_active: Inactive plans are hidden and cannot be selected
    """

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="plans",
    )

    name = models.CharField(max_length=100)

    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code",
    )

    duration_days = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Days of access granted on approval",
    )

    description = models.TextField(blank=True, default="")

    is_active = models.BooleanField(default=True, db_index=True)

    objects = PlanQuerySet.as_manager()

    class Meta:
        ordering = ["price"]
        verbose_name = "Plan"
        verbose_name_plural = "Plans"
        indexes = [
            models.Index(fields=["project", "is_active"], name="memberships_project_0f3f6b_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(duration_days__gt=0),
                name="plan_duration_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Plan({self.name}, {self.price} {self.currency}, {self.duration_days}d)"

    @property
    def price_display(self) -> str:
        """Price formatted for messages, e.g. "$25" or "19.99 EUR"."""
        price = Decimal(str(self.price))
        amount = price.normalize() if price == price.to_integral() else price
        amount_text = f"{amount:f}"
        if self.currency.upper() == "USD":
            return f"${amount_text}"
        return f"{amount_text} {self.currency.upper()}"

    @property
    def amount_minor_units(self) -> int:
        """Price in the smallest currency unit (cents) for Stripe."""
        return int((Decimal(str(self.price)) * 100).quantize(Decimal("1")))
