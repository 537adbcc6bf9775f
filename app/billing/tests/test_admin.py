"""
Tests for the billing admin: discrepancy review and account edits.
"""

import pytest
from django.urls import reverse

from billing.ledger import CreditAccount
from billing.state_machines import DiscrepancyResolution
from billing.tests.factories import ReconciliationDiscrepancyFactory

DISCREPANCY_CHANGELIST = "admin:billing_reconciliationdiscrepancy_changelist"
ACCOUNT_CHANGE = "admin:billing_creditaccount_change"


@pytest.mark.django_db
class TestDiscrepancyAdmin:
    def test_mark_reviewed_action(self, admin_client):
        flagged = ReconciliationDiscrepancyFactory.create_batch(2)
        untouched = ReconciliationDiscrepancyFactory()

        response = admin_client.post(
            reverse(DISCREPANCY_CHANGELIST),
            {
                "action": "mark_reviewed",
                "_selected_action": [str(d.id) for d in flagged],
            },
        )

        assert response.status_code == 302
        for discrepancy in flagged:
            discrepancy.refresh_from_db()
            assert discrepancy.reviewed
            assert discrepancy.resolution == DiscrepancyResolution.MANUALLY_RESOLVED
            assert discrepancy.review_notes.startswith("Reviewed by")
        untouched.refresh_from_db()
        assert untouched.needs_review

    def test_changelist_renders(self, admin_client):
        ReconciliationDiscrepancyFactory()

        assert admin_client.get(reverse(DISCREPANCY_CHANGELIST)).status_code == 200


@pytest.mark.django_db
class TestCreditAccountAdmin:
    def test_edit_saves_changed_fields_only(self, admin_client, funded_account, mocker):
        url = reverse(ACCOUNT_CHANGE, args=[funded_account.id])
        save = mocker.spy(CreditAccount, "save")

        response = admin_client.post(
            url, {"customer_ref": "cus_edited", "is_active": "on"}
        )

        assert response.status_code == 302
        funded_account.refresh_from_db()
        assert funded_account.customer_ref == "cus_edited"
        assert funded_account.balance == 100
        assert set(save.call_args.kwargs["update_fields"]) == {"customer_ref", "updated_at"}
