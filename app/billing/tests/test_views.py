"""
Tests for the billing REST API.
"""

from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from billing.ledger import AppendEntryParams, CreditAccount, EntryKind, ledger
from billing.services import ReservationService
from billing.tests.factories import (
    ReconciliationDiscrepancyFactory,
    ReconciliationRunFactory,
)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def user_account(user, grant_credits):
    """The authenticated user's account holding 100 credits."""
    account = ledger.open_account(str(user.pk))
    grant_credits(account, 100)
    return account


def spend(account, credits, ref, **metadata):
    return ledger.append(
        AppendEntryParams(
            account_id=account.id,
            amount_delta=-credits,
            kind=EntryKind.USAGE,
            external_ref=ref,
            metadata=metadata,
        )
    )


@pytest.mark.django_db
class TestBalanceView:
    def test_requires_authentication(self, api_client):
        response = api_client.get(reverse("billing:balance"))
        assert response.status_code == 401

    def test_opens_account_on_first_access(self, auth_client, user):
        response = auth_client.get(reverse("billing:balance"))

        assert response.status_code == 200
        assert response.data == {"balance": 0, "reserved": 0, "available": 0}
        assert CreditAccount.objects.filter(owner_id=str(user.pk)).exists()

    def test_welcome_bonus_on_first_access(self, auth_client, settings):
        settings.BILLING_WELCOME_BONUS_CREDITS = 25

        first = auth_client.get(reverse("billing:balance"))
        second = auth_client.get(reverse("billing:balance"))

        assert first.data["balance"] == 25
        assert second.data["balance"] == 25

    def test_reserved_credits_reduce_available(self, auth_client, user_account):
        ReservationService.reserve(user_account.id, 30, feature="chat")

        response = auth_client.get(reverse("billing:balance"))

        assert response.data == {"balance": 100, "reserved": 30, "available": 70}


@pytest.mark.django_db
class TestTransactionListView:
    def test_lists_newest_first(self, auth_client, user_account):
        spend(user_account, 10, "reservation:a", feature="chat")

        response = auth_client.get(reverse("billing:transactions"))

        assert response.status_code == 200
        results = response.data["results"]
        assert [r["amount_delta"] for r in results] == [-10, 100]
        assert results[0]["balance_after"] == 90
        assert results[0]["kind"] == EntryKind.USAGE

    def test_filters_by_kind(self, auth_client, user_account):
        spend(user_account, 10, "reservation:a")

        response = auth_client.get(reverse("billing:transactions"), {"kind": "usage"})

        assert [r["kind"] for r in response.data["results"]] == ["usage"]

    def test_rejects_unknown_kind(self, auth_client, user_account):
        response = auth_client.get(reverse("billing:transactions"), {"kind": "bogus"})
        assert response.status_code == 400

    def test_only_own_entries(self, auth_client, user_account, funded_account):
        response = auth_client.get(reverse("billing:transactions"))
        assert len(response.data["results"]) == 1

    def test_cursor_pagination(self, auth_client, user_account):
        for i in range(3):
            spend(user_account, 1, f"reservation:{i}")

        first = auth_client.get(reverse("billing:transactions"), {"page_size": 2})
        assert len(first.data["results"]) == 2
        assert first.data["next"]

        second = auth_client.get(first.data["next"])
        assert len(second.data["results"]) == 2
        assert second.data["next"] is None


@pytest.mark.django_db
class TestUsageView:
    def test_returns_rollups(self, auth_client, user_account):
        spend(user_account, 4, "reservation:a", feature="chat", model="gpt-4o", tokens_input=10)
        spend(user_account, 6, "reservation:b", feature="chat", model="gpt-4o", tokens_input=5)

        response = auth_client.get(reverse("billing:usage"), {"days": 7})

        assert response.status_code == 200
        assert response.data["days"] == 7
        [bucket] = response.data["results"]
        assert bucket["feature"] == "chat"
        assert bucket["model"] == "gpt-4o"
        assert bucket["credits"] == 10
        assert bucket["events"] == 2
        assert bucket["tokens_input"] == 15

    def test_rejects_out_of_range_days(self, auth_client, user_account):
        response = auth_client.get(reverse("billing:usage"), {"days": 0})
        assert response.status_code == 400


@pytest.mark.django_db
class TestReconciliationRunViews:
    def test_staff_only(self, auth_client):
        response = auth_client.get(reverse("billing:reconciliation_runs"))
        assert response.status_code == 403

    def test_lists_runs(self, api_client, staff_user):
        api_client.force_authenticate(user=staff_user)
        older = ReconciliationRunFactory(started_at=timezone.now() - timedelta(hours=2))
        newer = ReconciliationRunFactory()

        response = api_client.get(reverse("billing:reconciliation_runs"))

        assert response.status_code == 200
        assert [r["id"] for r in response.data["results"]] == [str(newer.id), str(older.id)]

    def test_run_detail_includes_discrepancies(self, api_client, staff_user):
        api_client.force_authenticate(user=staff_user)
        discrepancy = ReconciliationDiscrepancyFactory()

        response = api_client.get(
            reverse("billing:reconciliation_run_detail", args=[discrepancy.run_id])
        )

        assert response.status_code == 200
        assert response.data["discrepancies"][0]["id"] == str(discrepancy.id)
        assert response.data["discrepancies"][0]["resolution"] == "flagged_for_review"

    def test_unknown_run_is_404(self, api_client, staff_user):
        api_client.force_authenticate(user=staff_user)
        response = api_client.get(
            reverse(
                "billing:reconciliation_run_detail",
                args=["00000000-0000-0000-0000-000000000000"],
            )
        )
        assert response.status_code == 404
