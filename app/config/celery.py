"""
Celery configuration for the Django application.

Workers process queued webhook events (Telegram updates and Stripe
events) and run the periodic jobs scheduled by django-celery-beat:

- Expiry sweep: reminders and expiry of lapsed subscriptions
- Redelivery of failed subscriber notifications
- Retry of failed webhook events and reset of stuck ones

Redis is both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps.

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up memberships/tasks.py
app.autodiscover_tasks()
