from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("memberships", "0002_add_periodic_schedules"),
    ]

    operations = [
        migrations.AddField(
            model_name="failednotification",
            name="subscriber_status",
            field=models.CharField(
                blank=True,
                choices=[
                    ("pending_payment", "Pending Payment"),
                    ("awaiting_proof", "Awaiting Payment Proof"),
                    ("pending_approval", "Pending Approval"),
                    ("active", "Active"),
                    ("expired", "Expired"),
                    ("rejected", "Rejected"),
                    ("suspended", "Suspended"),
                ],
                default="",
                max_length=20,
            ),
        ),
    ]
