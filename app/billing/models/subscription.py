"""
Subscription model for recurring credit plans.

A Subscription mirrors the provider's subscription and drives the cycle
grants. The grant itself is idempotent in the ledger; `last_granted_cycle`
is informational only.

Usage:
    from billing.models import Subscription

    subscription.cancel(ends_at=period_end)  # active -> canceled
    subscription.save()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from billing.ledger.models import CreditAccount
from billing.state_machines import SubscriptionStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


# Provider statuses for which a cycle is paid for
GRANTABLE_PROVIDER_STATUSES = ("active", "trialing")


class BillingInterval(models.TextChoices):
    MONTH = "month", "Monthly"
    YEAR = "year", "Yearly"


class Subscription(UUIDPrimaryKeyMixin, BaseModel):
    """
    Recurring plan granting credits once per billing cycle.

    State Flow:
        ACTIVE -> CANCELED (grants continue until ends_at)
        CANCELED -> ACTIVE (reactivated before period end)
        ACTIVE/CANCELED -> REVOKED (grants stop immediately)

    Fields:
        provider_subscription_id: Provider subscription id (unique)
        account: Account receiving the grants
        plan_ref: Provider product id of the plan
        credits_per_cycle: Credits granted each cycle
        interval: Cycle length (month/year)
        anchor_at: Start of the first billing period
        status: FSM state
        provider_status: Raw provider status; only active/trialing are granted
        canceled_at: When cancellation was received
        ends_at: End of the last paid period, if canceled or revoked
        last_granted_cycle: Most recent cycle key granted
    """

    provider_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Provider subscription id",
    )
    account = models.ForeignKey(
        CreditAccount,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    plan_ref = models.CharField(
        max_length=255,
        help_text="Provider product id of the plan",
    )
    credits_per_cycle = models.PositiveIntegerField(
        help_text="Credits granted per billing cycle",
    )
    interval = models.CharField(
        max_length=10,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTH,
    )
    anchor_at = models.DateTimeField(
        help_text="Start of the first billing period; cycles are computed from it",
    )
    status = FSMField(
        default=SubscriptionStatus.ACTIVE,
        choices=SubscriptionStatus.choices,
        db_index=True,
    )
    provider_status = models.CharField(
        max_length=32,
        default="active",
        help_text="Status reported by the provider (active, trialing, past_due...)",
    )
    canceled_at = models.DateTimeField(
        null=True,
        blank=True,
    )
    ends_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="No cycle starting at or after this instant is granted",
    )
    last_granted_cycle = models.CharField(
        max_length=32,
        blank=True,
        default="",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "ends_at"]),
            models.Index(fields=["account", "status"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(credits_per_cycle__gt=0),
                name="subscription_credits_positive",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Subscription({self.provider_subscription_id}, {self.status}, "
            f"{self.credits_per_cycle}/{self.interval})"
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SubscriptionStatus.ACTIVE,
        target=SubscriptionStatus.CANCELED,
    )
    def cancel(self, ends_at=None):
        """
        Cancel at the end of the paid period.

        Transition: ACTIVE -> CANCELED
        """
        self.canceled_at = timezone.now()
        self.ends_at = ends_at or self.canceled_at

    @transition(
        field=status,
        source=SubscriptionStatus.CANCELED,
        target=SubscriptionStatus.ACTIVE,
    )
    def reactivate(self):
        """Transition: CANCELED -> ACTIVE"""
        self.canceled_at = None
        self.ends_at = None

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED],
        target=SubscriptionStatus.REVOKED,
    )
    def revoke(self):
        """
        Stop grants immediately.

        Transition: ACTIVE/CANCELED -> REVOKED
        """
        now = timezone.now()
        self.canceled_at = self.canceled_at or now
        self.ends_at = now

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    def is_grantable_at(self, now=None) -> bool:
        """Whether a cycle starting before `now` may still be granted."""
        now = now or timezone.now()
        if self.status == SubscriptionStatus.ACTIVE:
            return self.provider_status in GRANTABLE_PROVIDER_STATUSES
        if self.status == SubscriptionStatus.CANCELED:
            return self.ends_at is not None and now < self.ends_at
        return False


__all__ = ["BillingInterval", "GRANTABLE_PROVIDER_STATUSES", "Subscription"]
