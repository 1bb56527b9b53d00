import decimal
import uuid

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Project",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "name",
                    models.CharField(help_text="Project name shown to subscribers", max_length=200),
                ),
                (
                    "bot_token",
                    models.CharField(
                        help_text="Telegram bot token (credential - never logged)",
                        max_length=255,
                    ),
                ),
                (
                    "channel_id",
                    models.CharField(
                        help_text="Telegram chat id of the private channel",
                        max_length=64,
                    ),
                ),
                (
                    "support_contact",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Support contact shown to subscribers",
                        max_length=255,
                    ),
                ),
                (
                    "admin_telegram_id",
                    models.BigIntegerField(
                        blank=True,
                        help_text="Telegram user id of the project owner",
                        null=True,
                    ),
                ),
                (
                    "manual_payment_enabled",
                    models.BooleanField(
                        default=True,
                        help_text="Offer manual payment with proof upload",
                    ),
                ),
                (
                    "manual_payment_instructions",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Instructions shown after choosing manual payment",
                    ),
                ),
                (
                    "stripe_enabled",
                    models.BooleanField(
                        default=False,
                        help_text="Offer hosted card checkout via Stripe",
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Inactive projects do not accept webhooks",
                    ),
                ),
            ],
            options={
                "verbose_name": "Project",
                "verbose_name_plural": "Projects",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Plan",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("name", models.CharField(max_length=100)),
                (
                    "price",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(decimal.Decimal("0.00"))],
                    ),
                ),
                (
                    "currency",
                    models.CharField(default="USD", help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "duration_days",
                    models.PositiveIntegerField(
                        help_text="Days of access granted on approval",
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                ("description", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="plans",
                        to="memberships.project",
                    ),
                ),
            ],
            options={
                "verbose_name": "Plan",
                "verbose_name_plural": "Plans",
                "ordering": ["price"],
                "indexes": [
                    models.Index(fields=["project", "is_active"], name="memberships_project_0f3f6b_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("duration_days__gt", 0)),
                        name="plan_duration_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscriber",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "telegram_user_id",
                    models.BigIntegerField(help_text="Telegram user id (also the private chat id)"),
                ),
                ("username", models.CharField(blank=True, default="", max_length=50)),
                ("first_name", models.CharField(blank=True, default="", max_length=100)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending_payment", "Pending Payment"),
                            ("awaiting_proof", "Awaiting Payment Proof"),
                            ("pending_approval", "Pending Approval"),
                            ("active", "Active"),
                            ("expired", "Expired"),
                            ("rejected", "Rejected"),
                            ("suspended", "Suspended"),
                        ],
                        db_index=True,
                        default="pending_payment",
                        help_text="Current lifecycle status (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True,
                        choices=[("manual", "Manual"), ("stripe", "Card (Stripe)")],
                        default="",
                        max_length=20,
                    ),
                ),
                (
                    "payment_proof_url",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Signed proof URL or telegram_file:<file_id> placeholder",
                    ),
                ),
                (
                    "payment_proof_key",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Object storage key of the stored proof",
                        max_length=512,
                    ),
                ),
                ("start_date", models.DateTimeField(blank=True, null=True)),
                ("expiry_date", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("invite_link", models.URLField(blank=True, default="", max_length=255)),
                ("suspended_at", models.DateTimeField(blank=True, null=True)),
                ("suspension_reason", models.TextField(blank=True, default="")),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("notes", models.TextField(blank=True, default="")),
                ("expiry_reminder_sent", models.BooleanField(default=False)),
                ("final_reminder_sent", models.BooleanField(default=False)),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Compare-and-set counter - incremented on each transition",
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="subscribers",
                        to="memberships.plan",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="subscribers",
                        to="memberships.project",
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscriber",
                "verbose_name_plural": "Subscribers",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["project", "status"], name="memberships_project_6c1e2a_idx"),
                    models.Index(fields=["status", "expiry_date"], name="memberships_status_3d9b41_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("project", "telegram_user_id"),
                        name="unique_subscriber_per_project",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "provider",
                    models.CharField(
                        choices=[("telegram", "Telegram"), ("stripe", "Stripe")],
                        help_text="Source of the event",
                        max_length=20,
                    ),
                ),
                (
                    "event_id",
                    models.CharField(
                        help_text="Provider-scoped event id - unique with provider for idempotency",
                        max_length=255,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Update kind or Stripe event type",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(help_text="Raw webhook body (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="webhook_events",
                        to="memberships.project",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="memberships_status_8a27c5_idx"),
                    models.Index(fields=["status", "retry_count"], name="memberships_status_51f0de_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("provider", "event_id"),
                        name="unique_webhook_event_per_provider",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="FailedNotification",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("suspended", "Suspended"),
                            ("kicked", "Kicked"),
                            ("reactivated", "Reactivated"),
                            ("extended", "Extended"),
                            ("expiring_soon", "Expiring Soon"),
                            ("expired", "Expired"),
                        ],
                        max_length=20,
                    ),
                ),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                ("max_retries", models.PositiveSmallIntegerField(default=5)),
                (
                    "next_retry_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                (
                    "subscriber",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="failed_notifications",
                        to="memberships.subscriber",
                    ),
                ),
            ],
            options={
                "verbose_name": "Failed Notification",
                "verbose_name_plural": "Failed Notifications",
                "ordering": ["next_retry_at"],
            },
        ),
    ]
