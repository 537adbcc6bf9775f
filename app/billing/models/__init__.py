"""
Billing domain models.

- CreditAccount, LedgerEntry: the credit ledger (defined in billing.ledger,
  imported here so Django's migration system discovers them)
- Reservation: Short-lived hold for in-flight usage
- WebhookEvent: Provider webhook idempotency record
- Subscription: Recurring plan driving cycle grants
- ReconciliationRun / ReconciliationDiscrepancy: Reconciliation history and
  operator review queue
"""

from billing.ledger.models import CreditAccount, EntryKind, LedgerEntry
from billing.models.reconciliation import (
    DiscrepancyType,
    ReconciliationDiscrepancy,
    ReconciliationRun,
)
from billing.models.reservation import Reservation
from billing.models.subscription import BillingInterval, Subscription
from billing.models.webhook_event import WebhookEvent

__all__ = [
    "BillingInterval",
    "CreditAccount",
    "DiscrepancyType",
    "EntryKind",
    "LedgerEntry",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
    "Reservation",
    "Subscription",
    "WebhookEvent",
]
