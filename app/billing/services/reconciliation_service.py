"""
Reconciliation of the credit ledger against the payment provider.

The provider is the source of truth for what was paid. For a window of
provider orders this service recomputes the credits those orders should
have granted and compares them with the ledger's PURCHASE entries.

Detection Categories:
    1. MISSING_LEDGER_ENTRY: paid order with no purchase entry
    2. AMOUNT_MISMATCH: purchase entry credits differ from the catalog
    3. ORPHAN_LEDGER_ENTRY: purchase entry the provider does not know
    4. UNKNOWN_PRODUCT: paid order whose product is not in the catalog
    5. BALANCE_DRIFT: cached balance differs from the sum of entries

Every discrepancy is flagged for operator review. Reconciliation never
writes to the ledger; corrections are manual ADJUSTMENT/REFUND entries.

Usage:
    from billing.services import ReconciliationService

    report = ReconciliationService.run_reconciliation()
    report.raise_for_mismatch()   # ProviderMismatch if anything diverged
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.utils import timezone

from billing.adapters import get_provider_adapter
from billing.catalog import get_catalog
from billing.exceptions import ProviderMismatch, ReconciliationLockError, UnknownProduct
from billing.ledger import EntryKind, LedgerEntry, LedgerService
from billing.locks import DistributedLock
from billing.models import (
    CreditAccount,
    DiscrepancyType,
    ReconciliationDiscrepancy,
    ReconciliationRun,
)
from billing.state_machines import DiscrepancyResolution, ReconciliationRunStatus
from core.services import BaseService

if TYPE_CHECKING:
    from billing.adapters import ProviderOrder


# =============================================================================
# Constants
# =============================================================================

RECONCILIATION_LOCK_KEY = "billing:reconciliation:run"
RECONCILIATION_LOCK_TTL = 3600  # 1 hour

# Provider order statuses that granted credits
PAID_ORDER_STATUSES = ("paid", "refunded", "partially_refunded")


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class DiscrepancyRecord:
    """A divergence between the provider and the ledger."""

    discrepancy_type: DiscrepancyType
    external_ref: str = ""
    account_id: uuid.UUID | None = None
    expected: int | None = None
    actual: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReconciliationReport:
    """
    Operator-facing result of one reconciliation window.

    Attributes:
        run_id: Persisted ReconciliationRun id
        window_start / window_end: Order creation window
        expected_total: Credits the provider's paid orders should grant
        actual_total: Credits granted by purchase entries for the window
        discrepancies: Every divergence found
    """

    run_id: uuid.UUID | None
    window_start: datetime
    window_end: datetime
    expected_total: int = 0
    actual_total: int = 0
    discrepancies: list[DiscrepancyRecord] = field(default_factory=list)
    orders_checked: int = 0
    entries_checked: int = 0

    @property
    def has_mismatch(self) -> bool:
        return bool(self.discrepancies) or self.expected_total != self.actual_total

    def raise_for_mismatch(self) -> None:
        """Raise ProviderMismatch when the ledger diverges from the provider."""
        if self.has_mismatch:
            raise ProviderMismatch(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id) if self.run_id else None,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "expected_total": self.expected_total,
            "actual_total": self.actual_total,
            "discrepancies": [
                {
                    "type": d.discrepancy_type.value,
                    "external_ref": d.external_ref,
                    "account_id": str(d.account_id) if d.account_id else None,
                    "expected": d.expected,
                    "actual": d.actual,
                    "details": d.details,
                }
                for d in self.discrepancies
            ],
        }


# =============================================================================
# Reconciliation Service
# =============================================================================


class ReconciliationService(BaseService):
    """
    Compares ledger purchase totals with the provider's orders.

    Concurrency Safety:
        - A global Redis lock keeps runs from overlapping
        - Reads only; the ledger is never mutated here
    """

    @classmethod
    def run_reconciliation(
        cls,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> ReconciliationReport:
        """
        Reconcile one window and persist the run.

        Defaults to the last BILLING_RECONCILIATION_LOOKBACK_HOURS hours.

        Returns:
            ReconciliationReport (call raise_for_mismatch() to escalate)

        Raises:
            ReconciliationLockError: If another run is in progress
            ProviderError / CircuitOpenError: If orders cannot be fetched
                (the run is persisted as FAILED)
        """
        window_end = window_end or timezone.now()
        window_start = window_start or window_end - timedelta(
            hours=settings.BILLING_RECONCILIATION_LOOKBACK_HOURS
        )

        lock = DistributedLock(
            RECONCILIATION_LOCK_KEY,
            ttl=RECONCILIATION_LOCK_TTL,
            blocking=False,
            error_class=ReconciliationLockError,
        )
        try:
            lock.acquire()
        except ReconciliationLockError:
            cls.get_logger().warning(
                "Another reconciliation run is in progress",
                extra={"lock_key": RECONCILIATION_LOCK_KEY},
            )
            raise

        try:
            return cls._run_with_lock(window_start, window_end)
        finally:
            lock.release()

    @classmethod
    def _run_with_lock(
        cls, window_start: datetime, window_end: datetime
    ) -> ReconciliationReport:
        run = ReconciliationRun.objects.create(
            window_start=window_start,
            window_end=window_end,
            started_at=timezone.now(),
            status=ReconciliationRunStatus.RUNNING,
        )
        logger = cls.get_logger()
        logger.info(
            "Starting reconciliation run",
            extra={
                "run_id": str(run.id),
                "window_start": window_start.isoformat(),
                "window_end": window_end.isoformat(),
            },
        )

        try:
            report = cls.compare(window_start, window_end)
        except Exception as e:
            run.status = ReconciliationRunStatus.FAILED
            run.error_message = str(e)
            run.completed_at = timezone.now()
            run.save(update_fields=["status", "error_message", "completed_at", "updated_at"])
            logger.error(
                "Reconciliation run failed",
                extra={"run_id": str(run.id), "error": str(e)},
                exc_info=True,
            )
            raise

        report.run_id = run.id
        ReconciliationDiscrepancy.objects.bulk_create(
            [
                ReconciliationDiscrepancy(
                    run=run,
                    discrepancy_type=d.discrepancy_type,
                    external_ref=d.external_ref,
                    account_id=d.account_id,
                    expected=d.expected,
                    actual=d.actual,
                    details=d.details,
                    resolution=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
                )
                for d in report.discrepancies
            ]
        )

        run.orders_checked = report.orders_checked
        run.entries_checked = report.entries_checked
        run.expected_total = report.expected_total
        run.actual_total = report.actual_total
        run.discrepancies_found = len(report.discrepancies)
        run.status = ReconciliationRunStatus.COMPLETED
        run.completed_at = timezone.now()
        run.save()

        log_context = {
            "run_id": str(run.id),
            "expected_total": report.expected_total,
            "actual_total": report.actual_total,
            "discrepancies_found": len(report.discrepancies),
            "duration_seconds": run.duration_seconds,
        }
        if report.has_mismatch:
            logger.error("Ledger diverges from provider", extra=log_context)
        else:
            logger.info("Reconciliation run completed", extra=log_context)
        return report

    # =========================================================================
    # Comparison
    # =========================================================================

    @classmethod
    def compare(cls, window_start: datetime, window_end: datetime) -> ReconciliationReport:
        """Build the report for a window without persisting anything."""
        adapter = get_provider_adapter()
        catalog = get_catalog()
        report = ReconciliationReport(
            run_id=None, window_start=window_start, window_end=window_end
        )

        orders = [
            order
            for order in adapter.list_orders(window_start, window_end)
            if order.status in PAID_ORDER_STATUSES and not order.is_subscription_order
        ]
        report.orders_checked = len(orders)
        order_ids = {order.id for order in orders}

        entries = {
            entry.external_ref: entry
            for entry in LedgerEntry.objects.filter(
                kind=EntryKind.PURCHASE, external_ref__in=order_ids
            )
        }

        for order in orders:
            cls._check_order(order, entries.get(order.id), catalog, report)

        # Purchases recorded in the window that no fetched order explains
        window_entries = LedgerEntry.objects.filter(
            kind=EntryKind.PURCHASE,
            created_at__gte=window_start,
            created_at__lt=window_end,
        ).exclude(external_ref__in=order_ids)
        for entry in window_entries:
            cls._check_unmatched_entry(entry, adapter, report)

        report.entries_checked = len(entries) + len(window_entries)
        report.actual_total = sum(e.amount_delta for e in entries.values()) + sum(
            d.actual or 0
            for d in report.discrepancies
            if d.discrepancy_type == DiscrepancyType.ORPHAN_LEDGER_ENTRY
        )

        cls._check_balances(window_start, window_end, report)
        return report

    @classmethod
    def _check_order(
        cls,
        order: ProviderOrder,
        entry: LedgerEntry | None,
        catalog,
        report: ReconciliationReport,
    ) -> None:
        try:
            _, expected = catalog.resolve_price(order.price_id, order.product_id)
        except UnknownProduct:
            report.discrepancies.append(
                DiscrepancyRecord(
                    discrepancy_type=DiscrepancyType.UNKNOWN_PRODUCT,
                    external_ref=order.id,
                    account_id=entry.account_id if entry else None,
                    actual=entry.amount_delta if entry else None,
                    details={
                        "product_id": order.product_id,
                        "price_id": order.price_id,
                        "customer_id": order.customer_id,
                    },
                )
            )
            return

        report.expected_total += expected
        if entry is None:
            account = (
                CreditAccount.objects.filter(customer_ref=order.customer_id).first()
                if order.customer_id
                else None
            )
            report.discrepancies.append(
                DiscrepancyRecord(
                    discrepancy_type=DiscrepancyType.MISSING_LEDGER_ENTRY,
                    external_ref=order.id,
                    account_id=account.id if account else None,
                    expected=expected,
                    actual=0,
                    details={
                        "customer_id": order.customer_id,
                        "product_id": order.product_id,
                        "order_created_at": (
                            order.created_at.isoformat() if order.created_at else None
                        ),
                    },
                )
            )
        elif entry.amount_delta != expected:
            report.discrepancies.append(
                DiscrepancyRecord(
                    discrepancy_type=DiscrepancyType.AMOUNT_MISMATCH,
                    external_ref=order.id,
                    account_id=entry.account_id,
                    expected=expected,
                    actual=entry.amount_delta,
                    details={"entry_id": str(entry.id), "product_id": order.product_id},
                )
            )

    @classmethod
    def _check_unmatched_entry(
        cls, entry: LedgerEntry, adapter, report: ReconciliationReport
    ) -> None:
        # An order created just before the window may land here; ask for it
        order = adapter.get_order(entry.external_ref) if entry.external_ref else None
        if order is not None and order.status in PAID_ORDER_STATUSES:
            return
        report.discrepancies.append(
            DiscrepancyRecord(
                discrepancy_type=DiscrepancyType.ORPHAN_LEDGER_ENTRY,
                external_ref=entry.external_ref or "",
                account_id=entry.account_id,
                expected=0,
                actual=entry.amount_delta,
                details={
                    "entry_id": str(entry.id),
                    "provider_status": order.status if order else None,
                },
            )
        )

    @classmethod
    def _check_balances(
        cls, window_start: datetime, window_end: datetime, report: ReconciliationReport
    ) -> None:
        touched = (
            LedgerEntry.objects.filter(
                created_at__gte=window_start, created_at__lt=window_end
            )
            .values_list("account_id", flat=True)
            .distinct()
        )
        for account_id in touched:
            check = LedgerService.verify_balance(account_id)
            if check.is_consistent:
                continue
            report.discrepancies.append(
                DiscrepancyRecord(
                    discrepancy_type=DiscrepancyType.BALANCE_DRIFT,
                    account_id=account_id,
                    expected=check.computed,
                    actual=check.cached,
                    details={"drift": check.drift},
                )
            )

    # =========================================================================
    # Review queue
    # =========================================================================

    @classmethod
    def mark_reviewed(
        cls,
        discrepancy_ids: list[uuid.UUID],
        notes: str = "",
    ) -> int:
        """Mark discrepancies as manually resolved. Returns the count updated."""
        now = timezone.now()
        return ReconciliationDiscrepancy.objects.filter(
            id__in=discrepancy_ids, reviewed=False
        ).update(
            reviewed=True,
            reviewed_at=now,
            review_notes=notes,
            resolution=DiscrepancyResolution.MANUALLY_RESOLVED,
            updated_at=now,
        )
