"""
Reconciliation models for persisting runs and discrepancies.

- ReconciliationRun: one comparison of ledger totals against the provider
- ReconciliationDiscrepancy: one divergence, queued for operator review

Reconciliation never writes to the ledger. Every discrepancy starts as
FLAGGED_FOR_REVIEW; an operator corrects the ledger with an ADJUSTMENT or
REFUND entry and marks the discrepancy reviewed.

Usage:
    from billing.models import ReconciliationRun

    ReconciliationRun.objects.filter(status=ReconciliationRunStatus.COMPLETED)
"""

from __future__ import annotations

from django.db import models

from billing.ledger.models import CreditAccount
from billing.state_machines import DiscrepancyResolution, ReconciliationRunStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class DiscrepancyType(models.TextChoices):
    """Kinds of divergence between the provider and the ledger."""

    MISSING_LEDGER_ENTRY = "missing_ledger_entry", "Missing Ledger Entry"
    AMOUNT_MISMATCH = "amount_mismatch", "Amount Mismatch"
    ORPHAN_LEDGER_ENTRY = "orphan_ledger_entry", "Orphan Ledger Entry"
    UNKNOWN_PRODUCT = "unknown_product", "Unknown Product"
    BALANCE_DRIFT = "balance_drift", "Balance Drift"


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks a reconciliation run execution.

    Fields:
        window_start / window_end: Order creation window compared
        started_at / completed_at: Execution timestamps
        orders_checked: Provider orders fetched for the window
        entries_checked: Purchase entries found for the window
        expected_total: Credits the provider's orders should have granted
        actual_total: Credits the ledger granted for the window
        discrepancies_found: Number of discrepancies recorded
        status: RUNNING, COMPLETED or FAILED
        error_message: Failure reason
    """

    window_start = models.DateTimeField()
    window_end = models.DateTimeField()
    started_at = models.DateTimeField(
        help_text="When this reconciliation run started",
    )
    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this reconciliation run completed (or failed)",
    )

    orders_checked = models.PositiveIntegerField(default=0)
    entries_checked = models.PositiveIntegerField(default=0)
    expected_total = models.BigIntegerField(default=0)
    actual_total = models.BigIntegerField(default=0)
    discrepancies_found = models.PositiveIntegerField(default=0)

    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
    )
    error_message = models.TextField(
        blank=True,
        help_text="Error message if the run failed",
    )

    class Meta:
        indexes = [
            models.Index(fields=["status", "started_at"]),
            models.Index(fields=["started_at"]),
        ]
        ordering = ["-started_at"]

    def __str__(self) -> str:
        return f"ReconciliationRun({self.id}, {self.status}, {self.started_at})"

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def is_balanced(self) -> bool:
        return self.discrepancies_found == 0 and self.expected_total == self.actual_total


class ReconciliationDiscrepancy(UUIDPrimaryKeyMixin, BaseModel):
    """
    One divergence found by a reconciliation run.

    Indexes:
        - (resolution, reviewed): For the unreviewed queue
        - (discrepancy_type): For analyzing patterns
    """

    run = models.ForeignKey(
        ReconciliationRun,
        on_delete=models.CASCADE,
        related_name="discrepancies",
    )
    discrepancy_type = models.CharField(
        max_length=50,
        choices=DiscrepancyType.choices,
        db_index=True,
    )
    external_ref = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Provider order id or ledger external_ref",
    )
    account = models.ForeignKey(
        CreditAccount,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    expected = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Credits according to the provider (or computed balance)",
    )
    actual = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Credits according to the ledger (or cached balance)",
    )
    details = models.JSONField(
        default=dict,
        blank=True,
    )

    resolution = models.CharField(
        max_length=20,
        choices=DiscrepancyResolution.choices,
        default=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
        db_index=True,
    )
    reviewed = models.BooleanField(
        default=False,
        db_index=True,
    )
    reviewed_at = models.DateTimeField(
        null=True,
        blank=True,
    )
    review_notes = models.TextField(
        blank=True,
    )

    class Meta:
        indexes = [
            models.Index(fields=["resolution", "reviewed"]),
            models.Index(fields=["run", "discrepancy_type"]),
        ]
        ordering = ["-created_at"]
        verbose_name_plural = "Reconciliation discrepancies"

    def __str__(self) -> str:
        return f"Discrepancy({self.discrepancy_type}, {self.external_ref or self.account_id})"

    @property
    def needs_review(self) -> bool:
        return (
            self.resolution == DiscrepancyResolution.FLAGGED_FOR_REVIEW
            and not self.reviewed
        )


__all__ = [
    "DiscrepancyType",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
]
