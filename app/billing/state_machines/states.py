"""
State enums for billing models.

Django TextChoices used for database storage, admin filters and, for
Subscription, django-fsm transitions.

State Machines Overview:

Reservation:
    active → committed   (usage entry appended)
    active → released    (caller gave the credits back)
    active → expired     (TTL sweep)
    Exactly one of the three terminal transitions wins; it is applied with a
    conditional UPDATE ... WHERE status = 'active'.

Subscription:
    active → canceled → active (reactivated before period end)
    active/canceled → revoked

WebhookEvent:
    Written once, inside the same transaction as its ledger effect:
    processed (had an effect) or ignored (unhandled event type).
"""

from django.db import models


class ReservationStatus(models.TextChoices):
    """
    States for the Reservation lifecycle.

    Terminal states: COMMITTED, RELEASED, EXPIRED
    """

    ACTIVE = "active", "Active"
    COMMITTED = "committed", "Committed"
    RELEASED = "released", "Released"
    EXPIRED = "expired", "Expired"


class SubscriptionStatus(models.TextChoices):
    """
    States for a recurring plan.

    Only ACTIVE subscriptions receive cycle grants. CANCELED subscriptions
    keep their credits for the paid period but are not granted new cycles
    after `ends_at`. REVOKED is terminal.
    """

    ACTIVE = "active", "Active"
    CANCELED = "canceled", "Canceled"
    REVOKED = "revoked", "Revoked"


class WebhookEventStatus(models.TextChoices):
    """Outcome recorded for a webhook event."""

    PROCESSED = "processed", "Processed"
    IGNORED = "ignored", "Ignored"


class ReconciliationRunStatus(models.TextChoices):
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class DiscrepancyResolution(models.TextChoices):
    """How a reconciliation discrepancy was handled."""

    FLAGGED_FOR_REVIEW = "flagged_for_review", "Flagged for Review"
    MANUALLY_RESOLVED = "manually_resolved", "Manually Resolved"


__all__ = [
    "DiscrepancyResolution",
    "ReconciliationRunStatus",
    "ReservationStatus",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
