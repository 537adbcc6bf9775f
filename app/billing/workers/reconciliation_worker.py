"""
Reconciliation worker for periodic ledger/provider consistency checks.

Tasks:
- run_scheduled_reconciliation: Periodic full reconciliation of a window
- refresh_usage_rollups: Periodic warm-up of the usage rollup cache

Usage:
    # Typically called via celery-beat schedule
    from billing.workers import run_scheduled_reconciliation

    # Or manually trigger reconciliation
    run_scheduled_reconciliation.delay(lookback_hours=48)

Celery Beat Schedule:
    Registered by migration 0002_add_billing_schedules (reconciliation hourly,
    rollups every 15 minutes).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import Max
from django.utils import timezone

from billing.exceptions import ProviderMismatch, ReconciliationLockError
from billing.ledger import EntryKind, LedgerEntry

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Accounts whose rollups are warmed besides the global one
ROLLUP_ACCOUNT_LIMIT = 200


# =============================================================================
# Periodic Task: Full Reconciliation Run
# =============================================================================


@shared_task(bind=True)
def run_scheduled_reconciliation(self, lookback_hours: int | None = None) -> dict:
    """
    Reconcile the last `lookback_hours` of provider orders.

    Returns:
        Dict with:
        - status: "completed", "mismatch", "skipped" (lock held) or "failed"
        - run_id, expected_total, actual_total, discrepancies_found
        - error_code "PROVIDER_MISMATCH" on a mismatch
        - error / error_code if failed

    Note:
        A mismatch is reported, never corrected. Discrepancies are persisted
        for operator review.
    """
    from billing.services import ReconciliationService

    lookback_hours = lookback_hours or settings.BILLING_RECONCILIATION_LOOKBACK_HOURS
    window_end = timezone.now()
    window_start = window_end - timedelta(hours=lookback_hours)

    logger.info(
        "Starting scheduled reconciliation run",
        extra={"lookback_hours": lookback_hours},
    )

    try:
        report = ReconciliationService.run_reconciliation(window_start, window_end)
        report.raise_for_mismatch()
    except ReconciliationLockError:
        # Another run is in progress - this is expected and OK
        logger.info(
            "Reconciliation run skipped - another run in progress",
            extra={"task_id": self.request.id},
        )
        return {
            "status": "skipped",
            "reason": "Another reconciliation run is in progress",
        }
    except ProviderMismatch as e:
        logger.error(
            f"Reconciliation found a mismatch: {e.message}",
            extra={"task_id": self.request.id, **e.details},
        )
        return {
            "status": "mismatch",
            **_run_summary(e.report),
            "error_code": e.error_code,
        }
    except Exception as e:
        logger.exception(
            f"Unexpected error during reconciliation: {e}",
            extra={"error": str(e)},
        )
        return {
            "status": "failed",
            "error": str(e),
            "error_code": getattr(e, "error_code", "UNEXPECTED_ERROR"),
        }

    return {"status": "completed", **_run_summary(report)}


def _run_summary(report) -> dict:
    return {
        "run_id": str(report.run_id),
        "expected_total": report.expected_total,
        "actual_total": report.actual_total,
        "discrepancies_found": len(report.discrepancies),
    }


# =============================================================================
# Periodic Task: Usage Rollups
# =============================================================================


@shared_task(bind=True)
def refresh_usage_rollups(self, days: int = 30) -> dict:
    """
    Recompute cached usage rollups for the most recently active accounts.

    Returns:
        Dict with caches_warmed
    """
    from billing.services import AnalyticsService

    since = timezone.now() - timedelta(days=days)
    account_ids = list(
        LedgerEntry.objects.filter(kind=EntryKind.USAGE, created_at__gte=since)
        .values("account_id")
        .annotate(last_used=Max("created_at"))
        .order_by("-last_used")
        .values_list("account_id", flat=True)[:ROLLUP_ACCOUNT_LIMIT]
    )
    warmed = AnalyticsService.refresh(account_ids=account_ids, days=days)
    return {"caches_warmed": warmed}
