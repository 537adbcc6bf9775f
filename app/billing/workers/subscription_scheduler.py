"""
Subscription grant scheduler.

Grants the current cycle's credits for every grantable subscription. Safe
to run as often as desired: the ledger's (account, cycle_key) uniqueness
makes every run after the first in a cycle a no-op.

Celery Beat Schedule:
    Registered by migration 0002_add_billing_schedules to run hourly.
"""

from __future__ import annotations

import logging

from celery import shared_task

from billing.services import SubscriptionService

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def grant_subscription_credits(self) -> dict:
    """
    Grant due subscription credits.

    Returns:
        Dict with checked, granted, skipped and failed counts
    """
    logger.info("Starting subscription grant run")
    counts = SubscriptionService.grant_all_due()

    log = logger.warning if counts["failed"] else logger.info
    log(
        "Subscription grant run complete",
        extra={**counts, "task_id": self.request.id},
    )
    return counts
