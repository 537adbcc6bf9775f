"""
Tests for LedgerService.

Covers account opening, idempotent appends, the non-negative balance rule,
held credits and balance verification.
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from billing.ledger import (
    AppendEntryParams,
    CreditAccount,
    EntryKind,
    InsufficientCredits,
    LedgerEntry,
    LedgerError,
    LedgerService,
    UnknownAccount,
)
from billing.state_machines import ReservationStatus
from billing.tests.factories import (
    CreditAccountFactory,
    LedgerEntryFactory,
    ReservationFactory,
)
from core.exceptions import ConflictError


def purchase(account, credits=100, ref="ord_1"):
    return AppendEntryParams(
        account_id=account.id,
        amount_delta=credits,
        kind=EntryKind.PURCHASE,
        external_ref=ref,
    )


@pytest.mark.django_db
class TestOpenAccount:
    def test_creates_account_once(self):
        first = LedgerService.open_account("owner_x")
        second = LedgerService.open_account("owner_x")

        assert first.id == second.id
        assert CreditAccount.objects.filter(owner_id="owner_x").count() == 1

    def test_grants_welcome_bonus_once(self, settings):
        settings.BILLING_WELCOME_BONUS_CREDITS = 50

        account = LedgerService.open_account("owner_new")
        LedgerService.open_account("owner_new")

        assert account.balance == 50
        entries = LedgerEntry.objects.filter(account=account)
        assert entries.count() == 1
        assert entries.get().external_ref == "welcome:owner_new"

    def test_no_bonus_entry_when_disabled(self):
        account = LedgerService.open_account("owner_zero")
        assert account.balance == 0
        assert not LedgerEntry.objects.filter(account=account).exists()

    def test_links_customer_ref(self):
        account = LedgerService.open_account("owner_y", customer_ref="cus_y")
        assert CreditAccount.objects.get(pk=account.pk).customer_ref == "cus_y"

    def test_customer_ref_of_another_account_conflicts(self, account):
        other = CreditAccountFactory()
        with pytest.raises(ConflictError):
            LedgerService.link_customer(other, account.customer_ref)


@pytest.mark.django_db
class TestResolveAccount:
    def test_resolves_by_customer_ref(self, account):
        assert LedgerService.resolve_account("cus_1") == account

    def test_falls_back_to_owner_id(self, account):
        assert LedgerService.resolve_account("owner_1") == account

    @pytest.mark.parametrize("ref", [None, "", "cus_nobody"])
    def test_unknown_reference_raises(self, ref):
        with pytest.raises(UnknownAccount):
            LedgerService.resolve_account(ref)


@pytest.mark.django_db
class TestAppend:
    def test_purchase_moves_balance(self, account):
        entry = LedgerService.append(purchase(account))

        account.refresh_from_db()
        assert account.balance == 100
        assert entry.balance_after == 100
        assert entry.amount_delta == 100
        assert entry.kind == EntryKind.PURCHASE

    def test_duplicate_external_ref_appends_once(self, account):
        first, created_first = LedgerService.append_or_get(purchase(account))
        second, created_second = LedgerService.append_or_get(purchase(account))

        account.refresh_from_db()
        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert account.balance == 100
        assert LedgerEntry.objects.filter(account=account).count() == 1

    def test_external_ref_of_another_account_is_an_error(self, account):
        LedgerService.append(purchase(account))
        other = CreditAccountFactory()

        with pytest.raises(LedgerError) as exc_info:
            LedgerService.append(purchase(other))
        assert exc_info.value.error_code == "EXTERNAL_REF_CONFLICT"

    def test_debit_beyond_balance_is_rejected(self, funded_account):
        with pytest.raises(InsufficientCredits) as exc_info:
            LedgerService.append(
                AppendEntryParams(
                    account_id=funded_account.id,
                    amount_delta=-101,
                    kind=EntryKind.USAGE,
                )
            )

        assert exc_info.value.required == 101
        assert exc_info.value.available == 100
        funded_account.refresh_from_db()
        assert funded_account.balance == 100

    def test_debit_cannot_spend_held_credits(self, funded_account):
        ReservationFactory(account=funded_account, amount_reserved=80)

        with pytest.raises(InsufficientCredits):
            LedgerService.append(
                AppendEntryParams(
                    account_id=funded_account.id,
                    amount_delta=-30,
                    kind=EntryKind.REFUND,
                )
            )

    def test_adjustment_may_go_negative(self, funded_account):
        LedgerService.append(
            AppendEntryParams(
                account_id=funded_account.id,
                amount_delta=-150,
                kind=EntryKind.ADJUSTMENT,
                description="Chargeback correction",
            )
        )
        funded_account.refresh_from_db()
        assert funded_account.balance == -50

    def test_unknown_account_raises(self):
        with pytest.raises(UnknownAccount):
            LedgerService.append(
                AppendEntryParams(
                    account_id=uuid.uuid4(), amount_delta=5, kind=EntryKind.ADJUSTMENT
                )
            )

    def test_balance_after_tracks_running_balance(self, account):
        LedgerService.append(purchase(account, 100, "ord_a"))
        LedgerService.append(purchase(account, 500, "ord_b"))
        last = LedgerService.append(
            AppendEntryParams(account_id=account.id, amount_delta=-40, kind=EntryKind.USAGE)
        )

        assert last.balance_after == 560
        assert LedgerService.balance_of(account.id) == 560


@pytest.mark.django_db
class TestReads:
    def test_held_amount_counts_only_active_unexpired(self, funded_account):
        ReservationFactory(account=funded_account, amount_reserved=10)
        ReservationFactory(
            account=funded_account,
            amount_reserved=20,
            expires_at=timezone.now() - timedelta(seconds=1),
        )
        ReservationFactory(
            account=funded_account, amount_reserved=30, status=ReservationStatus.RELEASED
        )

        assert LedgerService.held_amount(funded_account.id) == 10
        assert LedgerService.available_balance(funded_account.id) == 90

    def test_list_transactions_newest_first_with_filter(self, account):
        LedgerService.append(purchase(account, 100, "ord_a"))
        LedgerService.append(
            AppendEntryParams(account_id=account.id, amount_delta=-5, kind=EntryKind.USAGE)
        )

        entries = LedgerService.list_transactions(account.id)
        usage = LedgerService.list_transactions(account.id, kind=EntryKind.USAGE)

        assert [e.kind for e in entries] == [EntryKind.USAGE, EntryKind.PURCHASE]
        assert len(usage) == 1

    def test_verify_balance_detects_drift(self, funded_account):
        assert LedgerService.verify_balance(funded_account.id).is_consistent

        # Row written around the service: cached balance no longer matches
        LedgerEntryFactory(account=funded_account, amount_delta=7)
        check = LedgerService.verify_balance(funded_account.id)

        assert check.cached == 100
        assert check.computed == 107
        assert check.drift == -7

    def test_set_active_preserves_history(self, funded_account):
        LedgerService.set_active(funded_account.id, False)

        funded_account.refresh_from_db()
        assert funded_account.is_active is False
        assert funded_account.balance == 100
