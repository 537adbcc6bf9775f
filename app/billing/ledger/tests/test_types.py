"""
Tests for AppendEntryParams validation.
"""

import uuid

import pytest

from billing.ledger import AppendEntryParams, EntryKind


class TestAppendEntryParams:
    @pytest.mark.parametrize(
        "amount,kind",
        [
            (0, EntryKind.ADJUSTMENT),
            (-10, EntryKind.PURCHASE),
            (10, EntryKind.USAGE),
            (10, EntryKind.REFUND),
        ],
    )
    def test_rejects_amounts_with_wrong_sign(self, amount, kind):
        with pytest.raises(ValueError):
            AppendEntryParams(account_id=uuid.uuid4(), amount_delta=amount, kind=kind)

    def test_rejects_fractional_credits(self):
        with pytest.raises(ValueError, match="integer"):
            AppendEntryParams(
                account_id=uuid.uuid4(), amount_delta=1.5, kind=EntryKind.ADJUSTMENT
            )

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown entry kind"):
            AppendEntryParams(account_id=uuid.uuid4(), amount_delta=5, kind="bonus")

    def test_grant_requires_cycle_key(self):
        with pytest.raises(ValueError, match="cycle_key"):
            AppendEntryParams(
                account_id=uuid.uuid4(),
                amount_delta=2000,
                kind=EntryKind.SUBSCRIPTION_GRANT,
            )

    def test_adjustment_may_be_negative(self):
        params = AppendEntryParams(
            account_id=uuid.uuid4(), amount_delta=-25, kind=EntryKind.ADJUSTMENT
        )
        assert params.is_debit
