"""
Ledger models for the credit ledger.

- CreditAccount: one per external identity, carries the cached balance
- LedgerEntry: immutable signed credit movement

The cached balance is a denormalisation of the entries: it is only ever
written in the same transaction that appends an entry, while the account row
is locked, so `account.balance == sum(entry.amount_delta)` holds at every
commit point.

Usage:
    from billing.ledger.models import CreditAccount, EntryKind, LedgerEntry

    account = CreditAccount.objects.get(owner_id="user_123")
    account.balance              # cached, O(1)
    account.compute_balance()    # recomputed from entries
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q, Sum
from django.db.models.functions import Coalesce

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from .exceptions import ImmutableEntryError


class EntryKind(models.TextChoices):
    """
    Categories of credit movement.

    Values:
        PURCHASE: One-time credit pack bought through the provider (+)
        USAGE: Committed AI feature consumption (-)
        REFUND: Credits clawed back after a provider refund (-)
        SUBSCRIPTION_GRANT: Recurring plan credits, once per cycle (+)
        ADJUSTMENT: Administrative correction or bonus (+/-), the only kind
            allowed to take a balance below zero
    """

    PURCHASE = "purchase", "Purchase"
    USAGE = "usage", "Usage"
    REFUND = "refund", "Refund"
    SUBSCRIPTION_GRANT = "subscription_grant", "Subscription Grant"
    ADJUSTMENT = "adjustment", "Adjustment"


class CreditAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    A credit balance owned by one external identity.

    Fields:
        id: UUID primary key (from UUIDPrimaryKeyMixin)
        owner_id: Stable identifier supplied by the identity provider
        customer_ref: Payment provider customer id, once known
        balance: Cached sum of all entries (integer credits)
        is_active: Deactivated accounts reject new reservations

    Accounts are never deleted.
    """

    owner_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stable external identity that owns this account",
    )
    customer_ref = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Payment provider customer id (e.g. Polar customer id)",
    )
    balance = models.BigIntegerField(
        default=0,
        help_text="Cached balance in credits; equals the sum of entries",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether this account can reserve credits",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"CreditAccount({self.owner_id}, balance={self.balance})"

    def compute_balance(self) -> int:
        """
        Recompute the balance from entries.

        Used by reconciliation to detect drift of the cached value. Performs
        an aggregate query; request paths read `balance` instead.
        """
        return self.entries.aggregate(
            total=Coalesce(Sum("amount_delta"), 0, output_field=models.BigIntegerField())
        )["total"]


class LedgerEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    Immutable signed credit movement.

    Corrections are new ADJUSTMENT or REFUND entries; existing rows cannot be
    saved again or deleted through the ORM.

    Fields:
        account: Account whose balance moved
        amount_delta: Signed credits, never zero
        kind: EntryKind
        external_ref: Provider order id, reservation id, subscription cycle
            ref... unique per kind where present
        cycle_key: Billing period id for subscription grants (e.g. "2025-11")
        balance_after: Account balance right after this entry
        description: Human-readable description
        metadata: Feature/model/token details for usage, provider ids...

    Constraints:
        - amount_delta != 0
        - (external_ref, kind) unique when external_ref is set
        - (account, cycle_key) unique for subscription grants
        - subscription grants carry a cycle_key
    """

    account = models.ForeignKey(
        CreditAccount,
        on_delete=models.PROTECT,
        related_name="entries",
        help_text="Account whose balance this entry moves",
    )
    amount_delta = models.BigIntegerField(
        help_text="Signed amount in credits",
    )
    kind = models.CharField(
        max_length=32,
        choices=EntryKind.choices,
        help_text="Category of this movement",
    )
    external_ref = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="External identifier, unique per kind",
    )
    cycle_key = models.CharField(
        max_length=32,
        null=True,
        blank=True,
        help_text="Billing cycle identifier for subscription grants",
    )
    balance_after = models.BigIntegerField(
        help_text="Account balance immediately after this entry",
    )
    description = models.TextField(
        blank=True,
        default="",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "Ledger entries"
        indexes = [
            models.Index(fields=["account", "created_at"]),
            models.Index(fields=["kind", "created_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(amount_delta=0),
                name="ledger_entry_amount_delta_nonzero",
            ),
            models.CheckConstraint(
                condition=~Q(kind=EntryKind.SUBSCRIPTION_GRANT)
                | Q(cycle_key__isnull=False),
                name="ledger_entry_grant_has_cycle_key",
            ),
            models.UniqueConstraint(
                fields=["external_ref", "kind"],
                condition=Q(external_ref__isnull=False),
                name="unique_ledger_entry_external_ref_per_kind",
            ),
            models.UniqueConstraint(
                fields=["account", "cycle_key"],
                condition=Q(kind=EntryKind.SUBSCRIPTION_GRANT),
                name="unique_subscription_grant_per_cycle",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_kind_display()}: {self.amount_delta:+d}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableEntryError(
                "Ledger entries cannot be modified",
                details={"entry_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableEntryError(
            "Ledger entries cannot be deleted",
            details={"entry_id": str(self.pk)},
        )
