"""
Ledger-specific exceptions for credit operations.

Exception Hierarchy:
    LedgerError (base)
    ├── UnknownAccount - accountRef/owner lookup failures
    ├── InactiveAccount - Operations on deactivated accounts
    ├── InsufficientCredits - Available balance below the requested amount
    └── ImmutableEntryError - Attempt to update or delete a ledger entry

Usage:
    from billing.ledger.exceptions import InsufficientCredits

    if available < amount:
        raise InsufficientCredits(account.id, required=amount, available=available)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    import uuid
    from typing import Any


class LedgerError(BaseApplicationError):
    """
    Base exception for all ledger operations.

    Example:
        try:
            ledger.append(params)
        except LedgerError as e:
            logger.error(f"Ledger operation failed: {e}")
            return Response(e.to_dict(), status=400)
    """

    default_error_code: str = "LEDGER_ERROR"


class UnknownAccount(LedgerError):
    """
    Raised when an account reference cannot be resolved.

    Webhooks reference accounts by provider customer id or owner id. An
    unresolvable reference is logged for an operator; the provider keeps
    redelivering until the account exists.
    """

    default_error_code: str = "UNKNOWN_ACCOUNT"


class InactiveAccount(LedgerError):
    """
    Raised when reserving against a deactivated account.

    Credits still land on inactive accounts (a paid order is never dropped),
    but no new consumption is allowed.
    """

    default_error_code: str = "INACTIVE_ACCOUNT"


class InsufficientCredits(LedgerError):
    """
    Raised when available credits cannot cover an amount.

    Surfaced to the end user; retrying does not help until credits are
    purchased or reservations resolve.

    Attributes:
        account_id: The UUID of the account
        required: Credits that were required
        available: Credits that were available (balance minus active holds)
    """

    default_error_code: str = "INSUFFICIENT_CREDITS"

    def __init__(
        self,
        account_id: uuid.UUID,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.account_id = account_id
        self.required = required
        self.available = available

        full_details = {
            "account_id": str(account_id),
            "required": required,
            "available": available,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=(
                f"Account {account_id} has insufficient credits: "
                f"required {required}, available {available}"
            ),
            error_code=error_code,
            details=full_details,
        )


class ImmutableEntryError(LedgerError):
    default_error_code: str = "LEDGER_ENTRY_IMMUTABLE"
