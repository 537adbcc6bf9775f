"""
State enums for billing models.
"""

from billing.state_machines.states import (
    DiscrepancyResolution,
    ReconciliationRunStatus,
    ReservationStatus,
    SubscriptionStatus,
    WebhookEventStatus,
)

__all__ = [
    "DiscrepancyResolution",
    "ReconciliationRunStatus",
    "ReservationStatus",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
