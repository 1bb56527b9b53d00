"""
URL configuration for the Django application.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT pair for staff users
    /api/v1/auth/token/refresh/    - Refresh access token
    /api/v1/memberships/           - Membership endpoints
        subscribers/               - Subscriber list (admin)
        subscribers/{id}/          - Subscriber detail (admin)
        subscribers/{id}/approve/  - Approve pending payment
        subscribers/{id}/reject/   - Reject pending payment
        subscribers/{id}/suspend/  - Suspend active subscriber
        subscribers/{id}/reactivate/ - Reactivate suspended subscriber
        subscribers/{id}/extend/   - Extend active subscription
        subscribers/{id}/revoke/   - Revoke access
        webhooks/telegram/{project_id}/ - Telegram bot updates (POST)
        webhooks/stripe/           - Stripe webhook endpoint (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Staff authentication (JWT)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Memberships (admin API + inbound webhooks)
    path("memberships/", include("memberships.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Subscription Bot Admin"
admin.site.site_title = "Subscription Bot"
admin.site.index_title = "Projects, plans and subscribers"
