"""
Tests for AnalyticsService usage rollups.
"""

import pytest
from django.core.cache import cache
from django.utils import timezone

from billing.ledger import AppendEntryParams, EntryKind, LedgerService
from billing.services import AnalyticsService, UsageRollup
from billing.tests.factories import CreditAccountFactory


def use_credits(account, credits, feature="generate_test", model="gpt-4o", **tokens):
    return LedgerService.append(
        AppendEntryParams(
            account_id=account.id,
            amount_delta=-credits,
            kind=EntryKind.USAGE,
            metadata={"feature": feature, "model": model, **tokens},
        )
    )


@pytest.mark.django_db
class TestUsageRollup:
    def test_groups_by_day_feature_and_model(self, funded_account):
        use_credits(funded_account, 3, tokens_input=100, tokens_output=50)
        use_credits(funded_account, 2, tokens_input=40, tokens_output=10)
        use_credits(funded_account, 5, feature="bulk_grade")

        rollups = AnalyticsService.compute(account_id=funded_account.id, days=30)

        assert rollups == [
            UsageRollup(
                day=timezone.now().date(),
                feature="bulk_grade",
                model="gpt-4o",
                credits=5,
                events=1,
            ),
            UsageRollup(
                day=timezone.now().date(),
                feature="generate_test",
                model="gpt-4o",
                credits=5,
                events=2,
                tokens_input=140,
                tokens_output=60,
            ),
        ]

    def test_ignores_other_kinds_and_accounts(self, funded_account, grant_credits):
        other = CreditAccountFactory()
        grant_credits(other, 50)
        use_credits(other, 7)

        assert AnalyticsService.compute(account_id=funded_account.id) == []
        assert len(AnalyticsService.compute()) == 1

    def test_missing_metadata_groups_under_empty_strings(self, funded_account):
        LedgerService.append(
            AppendEntryParams(
                account_id=funded_account.id, amount_delta=-4, kind=EntryKind.USAGE
            )
        )

        (rollup,) = AnalyticsService.compute(account_id=funded_account.id)
        assert rollup.feature == ""
        assert rollup.model == ""
        assert rollup.credits == 4

    def test_result_is_cached(self, funded_account):
        use_credits(funded_account, 3)
        first = AnalyticsService.usage_rollup(account_id=funded_account.id, days=7)

        use_credits(funded_account, 4)
        cached = AnalyticsService.usage_rollup(account_id=funded_account.id, days=7)
        fresh = AnalyticsService.usage_rollup(
            account_id=funded_account.id, days=7, use_cache=False
        )

        assert cached == first
        assert fresh[0].credits == 7
        assert cache.get(f"billing_usage:{funded_account.id}:7") == fresh

    def test_days_are_clamped(self, funded_account):
        AnalyticsService.usage_rollup(account_id=funded_account.id, days=10_000)
        assert cache.get(f"billing_usage:{funded_account.id}:366") == []

    def test_refresh_warms_global_and_account_caches(self, funded_account):
        use_credits(funded_account, 3)

        warmed = AnalyticsService.refresh(account_ids=[funded_account.id], days=30)

        assert warmed == 2
        assert cache.get("billing_usage:all:30") is not None
        assert cache.get(f"billing_usage:{funded_account.id}:30") is not None

    def test_to_dict_serializes_day(self, funded_account):
        use_credits(funded_account, 3)
        (rollup,) = AnalyticsService.compute(account_id=funded_account.id)

        data = rollup.to_dict()
        assert data["day"] == timezone.now().date().isoformat()
        assert data["credits"] == 3
