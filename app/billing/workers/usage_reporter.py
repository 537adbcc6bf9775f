"""
Usage reporter: forwards committed usage to the provider's meter.

Runs after the usage entry's transaction commits, and only when
BILLING_REPORT_USAGE_TO_PROVIDER is enabled. Reporting is best effort: the
ledger entry is already final, so failures are retried a few times and then
logged, never propagated back into billing.
"""

from __future__ import annotations

import logging

from celery import shared_task

from billing.adapters import get_provider_adapter, is_retryable_provider_error
from billing.ledger import EntryKind, LedgerEntry

logger = logging.getLogger(__name__)

MAX_REPORT_RETRIES = 3


def build_usage_event(entry: LedgerEntry) -> dict:
    """Provider usage event for a committed usage entry."""
    account = entry.account
    event = {
        "name": get_provider_adapter().USAGE_EVENT_NAME,
        "metadata": {
            "credits": -entry.amount_delta,
            "ledger_entry_id": str(entry.id),
            **{
                key: entry.metadata[key]
                for key in ("feature", "model", "tokens_input", "tokens_output")
                if key in entry.metadata
            },
        },
    }
    if account.customer_ref:
        event["customer_id"] = account.customer_ref
    else:
        event["external_customer_id"] = account.owner_id
    return event


@shared_task(bind=True, max_retries=MAX_REPORT_RETRIES)
def report_usage_event(self, entry_id: str) -> dict:
    """
    Report one usage entry.

    Returns:
        Dict with status: "reported", "skipped" or "failed"
    """
    entry = (
        LedgerEntry.objects.select_related("account")
        .filter(id=entry_id, kind=EntryKind.USAGE)
        .first()
    )
    if entry is None:
        logger.warning("Usage entry to report not found", extra={"entry_id": entry_id})
        return {"status": "skipped", "reason": "not_found"}

    try:
        get_provider_adapter().ingest_usage_events([build_usage_event(entry)])
    except Exception as e:
        if is_retryable_provider_error(e) and self.request.retries < MAX_REPORT_RETRIES:
            raise self.retry(exc=e, countdown=2 ** self.request.retries * 30)
        logger.error(
            f"Usage report failed: {e}",
            extra={"entry_id": entry_id, "account_id": str(entry.account_id)},
            exc_info=True,
        )
        return {"status": "failed", "error": str(e)}

    logger.info(
        "Usage reported to provider",
        extra={"entry_id": entry_id, "account_id": str(entry.account_id)},
    )
    return {"status": "reported", "entry_id": entry_id}
