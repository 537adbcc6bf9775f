"""
Workers for background billing operations.

This module contains Celery tasks:
- expire_stale_reservations: Returns abandoned holds to availability
- grant_subscription_credits: Grants each subscription's current cycle
- run_scheduled_reconciliation: Compares the ledger with the provider
- refresh_usage_rollups: Warms the usage analytics cache
- report_usage_event: Forwards committed usage to the provider's meter

Usage:
    from billing.workers import run_scheduled_reconciliation

    run_scheduled_reconciliation.delay()
"""

from billing.workers.reconciliation_worker import (
    refresh_usage_rollups,
    run_scheduled_reconciliation,
)
from billing.workers.reservation_sweeper import expire_stale_reservations
from billing.workers.subscription_scheduler import grant_subscription_credits
from billing.workers.usage_reporter import report_usage_event

__all__ = [
    "expire_stale_reservations",
    "grant_subscription_credits",
    "refresh_usage_rollups",
    "report_usage_event",
    "run_scheduled_reconciliation",
]
