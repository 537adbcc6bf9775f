"""
Add celery-beat schedules for the billing background jobs.

- Expire stale reservations every minute
- Grant due subscription cycles hourly
- Reconcile purchases against Polar hourly
- Warm usage rollup caches every 15 minutes
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Expire Stale Credit Reservations",
        "task": "billing.workers.reservation_sweeper.expire_stale_reservations",
        "every": 1,
        "period": "minutes",
        "description": (
            "Releases active reservations past their expiry so held "
            "credits return to the available balance."
        ),
    },
    {
        "name": "Grant Subscription Credits",
        "task": "billing.workers.subscription_scheduler.grant_subscription_credits",
        "every": 1,
        "period": "hours",
        "description": "Grants the current billing cycle to every active subscription.",
    },
    {
        "name": "Reconcile Credit Purchases",
        "task": "billing.workers.reconciliation_worker.run_scheduled_reconciliation",
        "every": 1,
        "period": "hours",
        "description": (
            "Compares paid Polar orders with purchase entries and flags "
            "discrepancies for review."
        ),
    },
    {
        "name": "Refresh Usage Rollups",
        "task": "billing.workers.reconciliation_worker.refresh_usage_rollups",
        "every": 15,
        "period": "minutes",
        "description": "Recomputes cached daily usage rollups for recently active accounts.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the billing periodic tasks."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for task in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=task["every"],
            period=task["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=task["name"],
            defaults={
                "task": task["task"],
                "interval": schedule,
                "enabled": True,
                "description": task["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[task["name"] for task in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
