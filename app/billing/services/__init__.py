"""
Billing services coordinating credit movement.

This module provides:
- ReservationService: reserve / commit / release holds for usage debits
- SubscriptionService: recurring grants, exactly once per billing cycle
- ReconciliationService: compares the ledger with the provider's orders
- AnalyticsService: usage rollups derived from the ledger
- IdempotencyGuard: exactly-once processing of external events

Usage:
    from billing.services import ReservationService

    reservation = ReservationService.reserve(account.id, estimated_amount=20)
    entry = ReservationService.commit(reservation.id, actual_amount=12)

    # Run reconciliation
    from billing.services import ReconciliationService

    report = ReconciliationService.run_reconciliation()
"""

from billing.services.analytics_service import AnalyticsService, UsageRollup
from billing.services.idempotency import GuardOutcome, GuardStatus, IdempotencyGuard
from billing.services.pricing import FEATURES, credits_for_tokens, estimate_credits
from billing.services.reconciliation_service import (
    DiscrepancyRecord,
    ReconciliationReport,
    ReconciliationService,
)
from billing.services.reservation_service import ReservationService
from billing.services.subscription_service import (
    Cycle,
    SubscriptionService,
    current_cycle,
)

__all__ = [
    "FEATURES",
    "AnalyticsService",
    "Cycle",
    "DiscrepancyRecord",
    "GuardOutcome",
    "GuardStatus",
    "IdempotencyGuard",
    "ReconciliationReport",
    "ReconciliationService",
    "ReservationService",
    "SubscriptionService",
    "UsageRollup",
    "credits_for_tokens",
    "current_cycle",
    "estimate_credits",
]
