"""
Reservation sweeper: expires ACTIVE reservations past their TTL.

Credits held by a caller that crashed or never resolved its reservation
return to the available balance once the sweep runs. The sweep is a
conditional UPDATE on status='active', so it races safely with commit and
release: whichever transition lands first wins.

Celery Beat Schedule:
    Registered by migration 0002_add_billing_schedules to run every minute.
"""

from __future__ import annotations

import logging

from celery import shared_task

from billing.services import ReservationService

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Reservations expired per UPDATE
BATCH_SIZE = 500

# Upper bound on batches per run, so one run cannot monopolise a worker
MAX_BATCHES = 20


@shared_task(bind=True)
def expire_stale_reservations(self, batch_size: int = BATCH_SIZE) -> dict:
    """
    Expire every stale reservation, one batch at a time.

    Returns:
        Dict with:
        - expired: Number of reservations transitioned to EXPIRED
        - batches: Number of UPDATE batches run
    """
    expired = 0
    batches = 0
    while batches < MAX_BATCHES:
        count = ReservationService.expire_stale(batch_size=batch_size)
        batches += 1
        expired += count
        if count < batch_size:
            break

    if expired:
        logger.info(
            f"Expired {expired} stale reservations",
            extra={"expired": expired, "batches": batches, "task_id": self.request.id},
        )
    return {"expired": expired, "batches": batches}
