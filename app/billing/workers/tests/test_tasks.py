"""
Tests for billing Celery tasks.

Tasks are called directly; their services are covered in
billing/services/tests, so these focus on batching, result dicts and
failure handling.
"""

import logging
from datetime import timedelta

import pytest
from celery.exceptions import Retry
from django.core.cache import cache
from django.utils import timezone

from billing.exceptions import ProviderRequestError, ProviderUnavailableError
from billing.ledger import AppendEntryParams, EntryKind, LedgerService
from billing.models import ReconciliationRun
from billing.state_machines import ReconciliationRunStatus, ReservationStatus
from billing.tests.factories import (
    CreditAccountFactory,
    LedgerEntryFactory,
    ReservationFactory,
    SubscriptionFactory,
)
from billing.workers import (
    expire_stale_reservations,
    grant_subscription_credits,
    refresh_usage_rollups,
    report_usage_event,
    run_scheduled_reconciliation,
)
from billing.workers.usage_reporter import build_usage_event


def usage_entry(account, credits=7, **metadata):
    return LedgerService.append(
        AppendEntryParams(
            account_id=account.id,
            amount_delta=-credits,
            kind=EntryKind.USAGE,
            external_ref=f"reservation:test_{credits}",
            metadata=metadata,
        )
    )


# =============================================================================
# Reservation sweeper
# =============================================================================


@pytest.mark.django_db
class TestExpireStaleReservations:
    def test_expires_only_stale_active_reservations(self, account):
        past = timezone.now() - timedelta(minutes=1)
        stale = ReservationFactory(account=account, expires_at=past)
        fresh = ReservationFactory(account=account)
        committed = ReservationFactory(
            account=account, expires_at=past, status=ReservationStatus.COMMITTED
        )

        result = expire_stale_reservations()

        assert result == {"expired": 1, "batches": 1}
        stale.refresh_from_db()
        fresh.refresh_from_db()
        committed.refresh_from_db()
        assert stale.status == ReservationStatus.EXPIRED
        assert fresh.status == ReservationStatus.ACTIVE
        assert committed.status == ReservationStatus.COMMITTED

    def test_runs_in_batches(self, account):
        past = timezone.now() - timedelta(minutes=1)
        ReservationFactory.create_batch(5, account=account, expires_at=past)

        result = expire_stale_reservations(batch_size=2)

        assert result == {"expired": 5, "batches": 3}

    def test_nothing_to_expire(self, db):
        assert expire_stale_reservations() == {"expired": 0, "batches": 1}


# =============================================================================
# Subscription scheduler
# =============================================================================


@pytest.mark.django_db
class TestGrantSubscriptionCredits:
    def test_grants_once_per_cycle(self, account):
        SubscriptionFactory(account=account)

        first = grant_subscription_credits()
        second = grant_subscription_credits()

        assert first["granted"] == 1
        assert second["granted"] == 0
        assert second["skipped"] == 1
        account.refresh_from_db()
        assert account.balance == 2000

    def test_no_subscriptions(self, db):
        assert grant_subscription_credits() == {
            "checked": 0,
            "granted": 0,
            "skipped": 0,
            "failed": 0,
        }


# =============================================================================
# Reconciliation
# =============================================================================


@pytest.mark.django_db
class TestRunScheduledReconciliation:
    def test_completed_when_balanced(self, account, fake_provider, mock_redis):
        fake_provider.add_order("ord_1")
        LedgerService.append(
            AppendEntryParams(
                account_id=account.id,
                amount_delta=100,
                kind=EntryKind.PURCHASE,
                external_ref="ord_1",
            )
        )

        result = run_scheduled_reconciliation()

        assert result["status"] == "completed"
        assert result["expected_total"] == 100
        assert result["actual_total"] == 100
        assert result["discrepancies_found"] == 0
        run = ReconciliationRun.objects.get(id=result["run_id"])
        assert run.status == ReconciliationRunStatus.COMPLETED

    def test_mismatch_is_reported_not_corrected(
        self, account, fake_provider, mock_redis, caplog
    ):
        fake_provider.add_order("ord_1")

        with caplog.at_level(logging.ERROR, logger="billing.workers.reconciliation_worker"):
            result = run_scheduled_reconciliation()

        assert result["status"] == "mismatch"
        assert result["error_code"] == "PROVIDER_MISMATCH"
        assert result["discrepancies_found"] == 1
        [record] = [
            r for r in caplog.records if r.name == "billing.workers.reconciliation_worker"
        ]
        assert record.levelno == logging.ERROR
        assert record.discrepancy_count == 1
        account.refresh_from_db()
        assert account.balance == 0

    def test_skipped_when_another_run_holds_the_lock(self, fake_provider, mock_redis, db):
        mock_redis.set.return_value = False

        result = run_scheduled_reconciliation()

        assert result["status"] == "skipped"
        assert not ReconciliationRun.objects.exists()

    def test_provider_failure_is_reported(self, fake_provider, mock_redis, db):
        fake_provider.list_error = ProviderUnavailableError("Polar is down")

        result = run_scheduled_reconciliation()

        assert result["status"] == "failed"
        assert result["error_code"] == "PROVIDER_UNAVAILABLE"
        assert ReconciliationRun.objects.get().status == ReconciliationRunStatus.FAILED


# =============================================================================
# Usage rollups
# =============================================================================


@pytest.mark.django_db
class TestRefreshUsageRollups:
    def test_warms_global_and_recent_accounts(self, funded_account):
        usage_entry(funded_account, feature="chat")
        idle = CreditAccountFactory()
        LedgerEntryFactory(account=idle, kind=EntryKind.ADJUSTMENT)

        result = refresh_usage_rollups(days=7)

        assert result == {"caches_warmed": 2}
        assert cache.get(f"billing_usage:{funded_account.id}:7") is not None


# =============================================================================
# Usage reporter
# =============================================================================


@pytest.mark.django_db
class TestReportUsageEvent:
    def test_builds_event_for_linked_customer(self, funded_account, fake_provider):
        entry = usage_entry(funded_account, feature="chat", model="gpt-4o", tokens_input=12)

        event = build_usage_event(entry)

        assert event["name"] == "ai_usage"
        assert event["customer_id"] == "cus_1"
        assert event["metadata"] == {
            "credits": 7,
            "ledger_entry_id": str(entry.id),
            "feature": "chat",
            "model": "gpt-4o",
            "tokens_input": 12,
        }

    def test_unlinked_account_uses_owner_id(self, grant_credits, fake_provider):
        account = CreditAccountFactory(owner_id="user_9")
        grant_credits(account, 10)
        entry = usage_entry(account, credits=3)

        event = build_usage_event(entry)

        assert "customer_id" not in event
        assert event["external_customer_id"] == "user_9"

    def test_reports_entry(self, funded_account, fake_provider):
        entry = usage_entry(funded_account)

        result = report_usage_event(str(entry.id))

        assert result == {"status": "reported", "entry_id": str(entry.id)}
        assert len(fake_provider.ingested) == 1

    def test_missing_entry_is_skipped(self, fake_provider, db):
        result = report_usage_event("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "skipped"
        assert fake_provider.ingested == []

    def test_transient_error_retries(self, funded_account, fake_provider, mocker):
        entry = usage_entry(funded_account)
        fake_provider.ingest_error = ProviderUnavailableError("Polar is down")
        retry = mocker.patch.object(report_usage_event, "retry", side_effect=Retry())

        with pytest.raises(Retry):
            report_usage_event(str(entry.id))

        retry.assert_called_once()
        assert retry.call_args.kwargs["exc"] is fake_provider.ingest_error

    def test_permanent_error_is_logged_not_raised(self, funded_account, fake_provider, mocker):
        entry = usage_entry(funded_account)
        fake_provider.ingest_error = ProviderRequestError("Bad event")
        retry = mocker.patch.object(report_usage_event, "retry")

        result = report_usage_event(str(entry.id))

        assert result["status"] == "failed"
        retry.assert_not_called()
