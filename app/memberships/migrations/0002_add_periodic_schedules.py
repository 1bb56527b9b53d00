"""
Add celery-beat schedules for the memberships background tasks.

- Expiry sweep (reminders + expiry): hourly
- Failed notification retry: every 5 minutes
- Failed webhook retry: every 5 minutes
- Stuck webhook reset: every 15 minutes
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Check Expiring Subscriptions",
        "task": "memberships.tasks.check_expiring_subscriptions",
        "every": 1,
        "period": "hours",
        "description": "Sends expiry reminders and expires lapsed subscriptions.",
    },
    {
        "name": "Retry Failed Notifications",
        "task": "memberships.tasks.retry_failed_notifications",
        "every": 5,
        "period": "minutes",
        "description": "Redelivers subscriber notifications whose backoff has elapsed.",
    },
    {
        "name": "Retry Failed Webhooks",
        "task": "memberships.tasks.retry_failed_webhooks",
        "every": 5,
        "period": "minutes",
        "description": "Re-queues failed webhook events with attempts left.",
    },
    {
        "name": "Cleanup Stuck Webhooks",
        "task": "memberships.tasks.cleanup_stuck_webhooks",
        "every": 15,
        "period": "minutes",
        "description": "Resets webhook events stuck in processing.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period=entry["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[entry["name"] for entry in SCHEDULES]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("memberships", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
