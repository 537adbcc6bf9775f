"""
Ledger - Append-only credit ledger.

Every credit movement is an immutable LedgerEntry; each CreditAccount keeps
a cached balance equal to the sum of its entries.

Public API:
    Models:
        CreditAccount - Credit balance owned by one external identity
        LedgerEntry - Immutable signed credit movement
        EntryKind - Enum of movement categories

    Service:
        ledger - Singleton instance of LedgerService
        LedgerService - Class with all ledger operations

    Types:
        AppendEntryParams - Parameters for appending entries
        BalanceCheck - Cached vs computed balance

    Exceptions:
        LedgerError - Base exception for ledger operations
        UnknownAccount - Account lookup failures
        InactiveAccount - Operations on deactivated accounts
        InsufficientCredits - Available balance too low
        ImmutableEntryError - Update/delete of an entry

Usage:
    from billing.ledger import ledger, EntryKind, AppendEntryParams

    account = ledger.open_account(owner_id="user_123")
    ledger.append(AppendEntryParams(
        account_id=account.id,
        amount_delta=100,
        kind=EntryKind.PURCHASE,
        external_ref="ord_1",
    ))
"""

from .exceptions import (
    ImmutableEntryError,
    InactiveAccount,
    InsufficientCredits,
    LedgerError,
    UnknownAccount,
)
from .models import CreditAccount, EntryKind, LedgerEntry
from .services import LedgerService, ledger
from .types import AppendEntryParams, BalanceCheck

__all__ = [
    # Models
    "CreditAccount",
    "LedgerEntry",
    "EntryKind",
    # Service
    "ledger",
    "LedgerService",
    # Types
    "AppendEntryParams",
    "BalanceCheck",
    # Exceptions
    "LedgerError",
    "UnknownAccount",
    "InactiveAccount",
    "InsufficientCredits",
    "ImmutableEntryError",
]
