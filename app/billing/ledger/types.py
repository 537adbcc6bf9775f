"""
Data types for ledger operations.

Types:
    AppendEntryParams: Parameters for appending a ledger entry
    BalanceCheck: Result of verifying a cached balance

Usage:
    from billing.ledger.types import AppendEntryParams

    params = AppendEntryParams(
        account_id=account.id,
        amount_delta=100,
        kind=EntryKind.PURCHASE,
        external_ref="ord_1",
        description="500 credit pack",
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from .models import EntryKind


@dataclass
class AppendEntryParams:
    """
    Parameters for appending a single ledger entry.

    Required Attributes:
        account_id: UUID of the account whose balance moves
        amount_delta: Signed credits (positive grants, negative debits)
        kind: EntryKind value

    Optional Attributes:
        external_ref: Provider order id, reservation id... makes the append
            idempotent per (external_ref, kind)
        cycle_key: Billing cycle, required for subscription grants
        description: Human-readable description
        metadata: Arbitrary JSON-serializable data

    Example:
        params = AppendEntryParams(
            account_id=account.id,
            amount_delta=2000,
            kind=EntryKind.SUBSCRIPTION_GRANT,
            external_ref="sub_123:2025-11",
            cycle_key="2025-11",
        )
    """

    account_id: uuid.UUID
    amount_delta: int
    kind: str

    external_ref: str | None = None
    cycle_key: str | None = None
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.amount_delta, bool) or not isinstance(self.amount_delta, int):
            raise ValueError("amount_delta must be an integer number of credits")
        if self.amount_delta == 0:
            raise ValueError("amount_delta must be non-zero")
        if self.kind not in EntryKind.values:
            raise ValueError(f"Unknown entry kind: {self.kind}")
        if self.kind == EntryKind.SUBSCRIPTION_GRANT and not self.cycle_key:
            raise ValueError("cycle_key is required for subscription grants")
        if self.kind in (EntryKind.PURCHASE, EntryKind.SUBSCRIPTION_GRANT) and (
            self.amount_delta < 0
        ):
            raise ValueError(f"{self.kind} entries must be positive")
        if self.kind in (EntryKind.USAGE, EntryKind.REFUND) and self.amount_delta > 0:
            raise ValueError(f"{self.kind} entries must be negative")

    @property
    def is_debit(self) -> bool:
        return self.amount_delta < 0


@dataclass(frozen=True)
class BalanceCheck:
    """Cached balance compared with the sum of entries for one account."""

    account_id: uuid.UUID
    cached: int
    computed: int

    @property
    def drift(self) -> int:
        return self.cached - self.computed

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0
