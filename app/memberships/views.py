"""
Admin API for subscriber lifecycle actions.

Endpoints:
    GET  /api/v1/memberships/subscribers/                - List subscribers
    GET  /api/v1/memberships/subscribers/{id}/           - Subscriber detail
    POST /api/v1/memberships/subscribers/{id}/approve/   - {plan_id?}
    POST /api/v1/memberships/subscribers/{id}/reject/    - {reason?}
    POST /api/v1/memberships/subscribers/{id}/suspend/   - {reason?}
    POST /api/v1/memberships/subscribers/{id}/reactivate/
    POST /api/v1/memberships/subscribers/{id}/extend/    - {days}
    POST /api/v1/memberships/subscribers/{id}/revoke/    - {reason?}
    GET  /api/v1/memberships/subscribers/{id}/membership/ - Live channel membership

Every action runs the same SubscriberService transition the bot and the
sweeps use. A state change that succeeded but could not be announced to
the subscriber returns 200 with notification_warning set.

Status codes:
    200 - Transition applied
    400 - Invalid body
    404 - Unknown subscriber or plan
    409 - Transition not allowed from the current status, or lost a race
"""

from __future__ import annotations

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response

from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)

from core.helpers import validate_uuid
from core.services import ServiceResult

from memberships.models import Subscriber
from memberships.serializers import (
    ApproveSerializer,
    ExtendSerializer,
    MembershipCheckSerializer,
    ReasonSerializer,
    SubscriberActionResponseSerializer,
    SubscriberSerializer,
)
from memberships.services import ChannelMembershipService, SubscriberService

ERROR_STATUS = {
    "SUBSCRIBER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PLAN_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,
    "STALE_TRANSITION": status.HTTP_409_CONFLICT,
}

ACTION_RESPONSES = {
    200: SubscriberActionResponseSerializer,
    400: OpenApiResponse(description="Invalid request body"),
    404: OpenApiResponse(description="Subscriber or plan not found"),
    409: OpenApiResponse(description="Transition not allowed or concurrent change"),
}


def action_response(result: ServiceResult) -> Response:
    """Map a service result onto the admin API envelope."""
    if not result.success:
        return Response(
            result.to_response(),
            status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        )
    return Response(
        {
            "subscriber": SubscriberSerializer(result.data).data,
            "notification_warning": result.warnings[0] if result.warnings else None,
        }
    )


@extend_schema_view(
    list=extend_schema(
        operation_id="list_subscribers",
        summary="List subscribers",
        parameters=[
            OpenApiParameter(
                name="project",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by project id",
                required=False,
            ),
            OpenApiParameter(
                name="status",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by subscriber status",
                required=False,
            ),
        ],
        tags=["Memberships - Subscribers"],
    ),
    retrieve=extend_schema(
        operation_id="get_subscriber",
        summary="Get subscriber",
        tags=["Memberships - Subscribers"],
    ),
)
class SubscriberViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Subscriber listing plus lifecycle actions.

    Permissions:
    - Staff only (IsAdminUser)
    """

    permission_classes = [IsAdminUser]
    serializer_class = SubscriberSerializer
    lookup_value_regex = r"[0-9a-fA-F-]{36}"

    def get_queryset(self):
        queryset = Subscriber.objects.select_related("plan", "project").order_by("-created_at")

        project_id = self.request.query_params.get("project")
        if project_id:
            if not validate_uuid(project_id):
                raise DRFValidationError({"project": ["Must be a valid project id."]})
            queryset = queryset.filter(project_id=project_id)

        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        return queryset

    @extend_schema(
        operation_id="approve_subscriber",
        summary="Approve payment",
        description=(
            "Activate the subscriber (or renew an active one) for plan_id, "
            "defaulting to the plan they selected. Sends an invite link."
        ),
        request=ApproveSerializer,
        responses=ACTION_RESPONSES,
        tags=["Memberships - Actions"],
    )
    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        serializer = ApproveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return action_response(
            SubscriberService.approve(pk, plan_id=serializer.validated_data.get("plan_id"))
        )

    @extend_schema(
        operation_id="reject_subscriber",
        summary="Reject payment",
        request=ReasonSerializer,
        responses=ACTION_RESPONSES,
        tags=["Memberships - Actions"],
    )
    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return action_response(SubscriberService.reject(pk, serializer.validated_data["reason"]))

    @extend_schema(
        operation_id="suspend_subscriber",
        summary="Suspend subscriber",
        description="Suspend an active subscriber and remove them from the channel.",
        request=ReasonSerializer,
        responses=ACTION_RESPONSES,
        tags=["Memberships - Actions"],
    )
    @action(detail=True, methods=["post"])
    def suspend(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return action_response(SubscriberService.suspend(pk, serializer.validated_data["reason"]))

    @extend_schema(
        operation_id="reactivate_subscriber",
        summary="Reactivate subscriber",
        description="Lift a suspension. The expiry date is unchanged.",
        request=None,
        responses=ACTION_RESPONSES,
        tags=["Memberships - Actions"],
    )
    @action(detail=True, methods=["post"])
    def reactivate(self, request, pk=None):
        return action_response(SubscriberService.reactivate(pk))

    @extend_schema(
        operation_id="extend_subscriber",
        summary="Extend subscription",
        description="New expiry = max(current expiry, now) + days.",
        request=ExtendSerializer,
        responses=ACTION_RESPONSES,
        tags=["Memberships - Actions"],
    )
    @action(detail=True, methods=["post"])
    def extend(self, request, pk=None):
        serializer = ExtendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return action_response(SubscriberService.extend(pk, serializer.validated_data["days"]))

    @extend_schema(
        operation_id="revoke_subscriber",
        summary="Revoke access",
        description="End access now and remove the subscriber from the channel.",
        request=ReasonSerializer,
        responses=ACTION_RESPONSES,
        tags=["Memberships - Actions"],
    )
    @action(detail=True, methods=["post"])
    def revoke(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return action_response(SubscriberService.revoke(pk, serializer.validated_data["reason"]))

    @extend_schema(
        operation_id="check_subscriber_membership",
        summary="Check channel membership",
        description=(
            "Ask Telegram whether the subscriber is in the project channel. "
            "Read-only; status is unknown when Telegram could not be asked."
        ),
        responses={200: MembershipCheckSerializer},
        tags=["Memberships - Subscribers"],
    )
    @action(detail=True, methods=["get"])
    def membership(self, request, pk=None):
        subscriber = self.get_object()
        check = ChannelMembershipService.check_member(
            subscriber.project, subscriber.telegram_user_id
        )
        return Response(MembershipCheckSerializer(check).data)
