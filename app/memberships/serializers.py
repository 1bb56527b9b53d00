"""
Serializers for the memberships admin API.

Serializers:
    PlanSerializer: Read-only plan summary
    SubscriberSerializer: Read-only subscriber details
    ApproveSerializer / ReasonSerializer / ExtendSerializer: Action bodies
    SubscriberActionResponseSerializer: Action response envelope

Usage:
    from memberships.serializers import SubscriberSerializer

    data = SubscriberSerializer(subscriber).data
"""

from __future__ import annotations

from rest_framework import serializers

from memberships.models import Plan, Subscriber
from memberships.services.subscriber_service import MAX_EXTENSION_DAYS


class PlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = Plan
        fields = ["id", "name", "price", "currency", "duration_days", "is_active"]
        read_only_fields = fields


class SubscriberSerializer(serializers.ModelSerializer):
    """
    Subscriber as shown to administrators.

    The proof URL is included so a reviewer can open it; invite links
    are single-use secrets and are not exposed.
    """

    plan = PlanSerializer(read_only=True)
    project_id = serializers.UUIDField(read_only=True)
    days_remaining = serializers.SerializerMethodField()

    class Meta:
        model = Subscriber
        fields = [
            "id",
            "project_id",
            "telegram_user_id",
            "username",
            "first_name",
            "status",
            "plan",
            "payment_method",
            "payment_proof_url",
            "start_date",
            "expiry_date",
            "days_remaining",
            "suspended_at",
            "suspension_reason",
            "rejection_reason",
            "notes",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_days_remaining(self, obj: Subscriber) -> int | None:
        return obj.days_remaining()


class ApproveSerializer(serializers.Serializer):
    plan_id = serializers.UUIDField(required=False, allow_null=True)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500, default="")


class ExtendSerializer(serializers.Serializer):
    days = serializers.IntegerField(min_value=1, max_value=MAX_EXTENSION_DAYS)


class SubscriberActionResponseSerializer(serializers.Serializer):
    """Response for administrative actions."""

    subscriber = SubscriberSerializer()
    notification_warning = serializers.CharField(allow_null=True)


class MembershipCheckSerializer(serializers.Serializer):
    """Live channel membership of a subscriber."""

    is_member = serializers.BooleanField()
    status = serializers.CharField()
