"""
URL configuration for the memberships app.

Routes:
    /subscribers/                 - List subscribers (GET, staff)
    /subscribers/{id}/            - Subscriber detail (GET, staff)
    /subscribers/{id}/{action}/   - approve, reject, suspend, reactivate,
                                    extend, revoke (POST, staff)
    /webhooks/telegram/           - Telegram updates (POST, ?project_id=)
    /webhooks/stripe/             - Stripe events (POST)

All routes are prefixed with /api/v1/memberships/ in the main URLconf.
"""

from django.urls import path

from rest_framework.routers import DefaultRouter

from memberships.views import SubscriberViewSet
from memberships.webhooks.views import stripe_webhook, telegram_webhook

router = DefaultRouter()
router.register(r"subscribers", SubscriberViewSet, basename="subscriber")

app_name = "memberships"
urlpatterns = router.urls + [
    path("webhooks/telegram/", telegram_webhook, name="telegram-webhook"),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
