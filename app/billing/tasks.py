"""
Celery task registry for the billing app.

Celery's autodiscovery imports `<app>.tasks`; the tasks themselves live in
billing.workers, grouped by concern.

Usage:
    from billing.tasks import expire_stale_reservations

    expire_stale_reservations.delay()
"""

from billing.workers import (  # noqa: F401
    expire_stale_reservations,
    grant_subscription_credits,
    refresh_usage_rollups,
    report_usage_event,
    run_scheduled_reconciliation,
)
