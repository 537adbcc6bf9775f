"""
Reservation model: short-lived hold against an account's available credits.

A reservation never touches the ledger by itself. It resolves into a USAGE
entry on commit, or into nothing on release/expiry.

Usage:
    from billing.models import Reservation
    from billing.state_machines import ReservationStatus

    Reservation.objects.filter(
        account=account,
        status=ReservationStatus.ACTIVE,
        expires_at__gt=timezone.now(),
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from billing.ledger.models import CreditAccount, LedgerEntry
from billing.state_machines import ReservationStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Reservation(UUIDPrimaryKeyMixin, BaseModel):
    """
    Hold on credits for an in-flight AI feature call.

    Status changes are conditional UPDATEs (`WHERE status = 'active'`) so
    commit, release and the expiry sweep cannot both win.

    Fields:
        account: Account the credits are held on
        amount_reserved: Estimated cost held against available balance
        amount_committed: Actual cost, set on commit
        status: ReservationStatus
        feature: AI feature name (generate_test, grade_response...)
        model: AI model identifier, if known
        metadata: Caller context (project_id, submission_id...)
        expires_at: TTL deadline after which the hold lapses
        resolved_at: When the reservation left ACTIVE
        ledger_entry: USAGE entry written on commit
    """

    account = models.ForeignKey(
        CreditAccount,
        on_delete=models.PROTECT,
        related_name="reservations",
    )
    amount_reserved = models.PositiveBigIntegerField(
        help_text="Credits held while the call is in flight",
    )
    amount_committed = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Credits actually consumed (set on commit)",
    )
    status = models.CharField(
        max_length=20,
        choices=ReservationStatus.choices,
        default=ReservationStatus.ACTIVE,
        db_index=True,
    )
    feature = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="AI feature consuming the credits",
    )
    model = models.CharField(
        max_length=128,
        blank=True,
        default="",
        help_text="AI model identifier",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
    )
    expires_at = models.DateTimeField(
        help_text="Hold lapses after this instant",
    )
    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
    )
    ledger_entry = models.ForeignKey(
        LedgerEntry,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="USAGE entry created on commit",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["account", "status", "expires_at"]),
            models.Index(fields=["status", "expires_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_reserved__gt=0),
                name="reservation_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Reservation({self.id}, {self.status}, {self.amount_reserved})"

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    def is_expired_at(self, now=None) -> bool:
        """True when the TTL has passed, whatever the stored status says."""
        return (now or timezone.now()) >= self.expires_at


__all__ = ["Reservation"]
