"""
Ledger service layer for credit operations.

All balance mutations go through this service. Each append locks the
account row (SELECT ... FOR UPDATE), so operations on one account are
linearized while different accounts never contend.

Usage:
    from billing.ledger.services import ledger
    from billing.ledger.types import AppendEntryParams

    account = ledger.open_account(owner_id="user_123")

    entry = ledger.append(AppendEntryParams(
        account_id=account.id,
        amount_delta=500,
        kind=EntryKind.PURCHASE,
        external_ref="ord_1",
    ))

    ledger.balance_of(account.id)          # 550 (with welcome bonus)
    ledger.available_balance(account.id)   # balance minus active holds
"""

from __future__ import annotations

import logging
import uuid

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from billing.state_machines import ReservationStatus
from core.exceptions import ConflictError

from .exceptions import InsufficientCredits, LedgerError, UnknownAccount
from .models import CreditAccount, EntryKind, LedgerEntry
from .types import AppendEntryParams, BalanceCheck

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Service class for ledger operations.

    Key features:
    - Append-only entries with the cached balance updated in the same
      transaction
    - Idempotency via (external_ref, kind) and per-cycle grant uniqueness
    - Per-account row locks instead of any global lock
    - Only ADJUSTMENT entries may take a balance below zero

    All methods are static - no instance state is maintained.
    """

    # =========================================================================
    # Accounts
    # =========================================================================

    @staticmethod
    def open_account(owner_id: str, customer_ref: str | None = None) -> CreditAccount:
        """
        Get or create the account for an external identity.

        A newly created account receives the welcome bonus as an ADJUSTMENT
        entry keyed `welcome:<owner_id>`, so concurrent first requests
        grant it once.

        Args:
            owner_id: Stable identifier from the identity provider
            customer_ref: Optional payment provider customer id to link

        Returns:
            The CreditAccount with an up-to-date cached balance
        """
        with transaction.atomic():
            account, created = CreditAccount.objects.get_or_create(owner_id=owner_id)

            bonus = settings.BILLING_WELCOME_BONUS_CREDITS
            if created and bonus > 0:
                LedgerService.append(
                    AppendEntryParams(
                        account_id=account.id,
                        amount_delta=bonus,
                        kind=EntryKind.ADJUSTMENT,
                        external_ref=f"welcome:{owner_id}",
                        description="Welcome bonus",
                        metadata={"reason": "welcome_bonus"},
                    )
                )
                account.refresh_from_db(fields=["balance"])
                logger.info(
                    "Credit account opened",
                    extra={"account_id": str(account.id), "welcome_bonus": bonus},
                )

        if customer_ref and account.customer_ref != customer_ref:
            account = LedgerService.link_customer(account, customer_ref)
        return account

    @staticmethod
    def link_customer(account: CreditAccount, customer_ref: str) -> CreditAccount:
        """
        Record the provider customer id for an account.

        Raises:
            ConflictError: If the customer id belongs to another account
        """
        if (
            CreditAccount.objects.filter(customer_ref=customer_ref)
            .exclude(pk=account.pk)
            .exists()
        ):
            raise ConflictError(
                f"Customer {customer_ref} is linked to another account",
                details={"customer_ref": customer_ref, "account_id": str(account.id)},
            )
        # Field update only: a full save() would overwrite the cached balance.
        CreditAccount.objects.filter(pk=account.pk).update(
            customer_ref=customer_ref, updated_at=timezone.now()
        )
        account.customer_ref = customer_ref
        return account

    @staticmethod
    def get_account(account_id: uuid.UUID) -> CreditAccount:
        """
        Get account by ID.

        Raises:
            UnknownAccount: If account doesn't exist
        """
        try:
            return CreditAccount.objects.get(id=account_id)
        except CreditAccount.DoesNotExist:
            raise UnknownAccount(
                f"Account {account_id} not found",
                details={"account_id": str(account_id)},
            )

    @staticmethod
    def resolve_account(account_ref: str | None) -> CreditAccount:
        """
        Resolve a webhook account reference.

        Tries the provider customer id first, then the owner id.

        Raises:
            UnknownAccount: If neither matches
        """
        if account_ref:
            account = CreditAccount.objects.filter(customer_ref=account_ref).first()
            if account is None:
                account = CreditAccount.objects.filter(owner_id=account_ref).first()
            if account is not None:
                return account
        raise UnknownAccount(
            f"No account for reference {account_ref!r}",
            details={"account_ref": account_ref},
        )

    @staticmethod
    def set_active(account_id: uuid.UUID, is_active: bool) -> CreditAccount:
        """Deactivate or reactivate an account. History is preserved."""
        account = LedgerService.get_account(account_id)
        CreditAccount.objects.filter(pk=account.pk).update(
            is_active=is_active, updated_at=timezone.now()
        )
        account.is_active = is_active
        return account

    # =========================================================================
    # Appends
    # =========================================================================

    @staticmethod
    def append(params: AppendEntryParams) -> LedgerEntry:
        """
        Append a ledger entry and move the cached balance.

        Idempotent - an entry with the same (external_ref, kind), or a
        subscription grant for the same (account, cycle_key), is returned
        unchanged instead of appending again.

        Raises:
            UnknownAccount: If the account doesn't exist
            InsufficientCredits: If a debit exceeds the available balance
        """
        entry, _ = LedgerService.append_or_get(params)
        return entry

    @staticmethod
    def append_or_get(params: AppendEntryParams) -> tuple[LedgerEntry, bool]:
        """
        Same as append(), also reporting whether a new entry was created.

        Returns:
            (entry, created) - created is False for a duplicate
        """
        with transaction.atomic():
            account = LedgerService.lock_account(params.account_id)
            held = 0
            if params.is_debit and params.kind != EntryKind.ADJUSTMENT:
                held = LedgerService.held_amount(account.id)
            return LedgerService.append_locked(account, params, held=held)

    @staticmethod
    def lock_account(account_id: uuid.UUID) -> CreditAccount:
        """
        Lock an account row for the rest of the current transaction.

        Must be called inside transaction.atomic().
        """
        try:
            return CreditAccount.objects.select_for_update().get(id=account_id)
        except CreditAccount.DoesNotExist:
            raise UnknownAccount(
                f"Account {account_id} not found",
                details={"account_id": str(account_id)},
            )

    @staticmethod
    def append_locked(
        account: CreditAccount,
        params: AppendEntryParams,
        held: int = 0,
    ) -> tuple[LedgerEntry, bool]:
        """
        Append against an account already locked by the caller.

        Args:
            account: Account locked with lock_account() in this transaction
            params: Entry parameters
            held: Credits held by active reservations that a debit must
                leave untouched

        Returns:
            (entry, created)
        """
        existing = LedgerService._find_existing(account, params)
        if existing is not None:
            LedgerService._check_same_account(existing, account)
            return existing, False

        if params.is_debit and params.kind != EntryKind.ADJUSTMENT:
            available = account.balance - held
            if available < -params.amount_delta:
                raise InsufficientCredits(
                    account.id, required=-params.amount_delta, available=available
                )

        new_balance = account.balance + params.amount_delta
        try:
            with transaction.atomic():
                entry = LedgerEntry.objects.create(
                    account=account,
                    amount_delta=params.amount_delta,
                    kind=params.kind,
                    external_ref=params.external_ref,
                    cycle_key=params.cycle_key,
                    balance_after=new_balance,
                    description=params.description,
                    metadata=params.metadata,
                )
        except IntegrityError:
            # The external_ref was taken by a concurrent append on another account
            existing = LedgerService._find_existing(account, params)
            if existing is None:
                raise
            LedgerService._check_same_account(existing, account)
            return existing, False

        CreditAccount.objects.filter(pk=account.pk).update(
            balance=new_balance, updated_at=timezone.now()
        )
        account.balance = new_balance

        logger.info(
            f"Ledger entry appended: {params.kind} {params.amount_delta:+d}",
            extra={
                "account_id": str(account.id),
                "entry_id": str(entry.id),
                "kind": params.kind,
                "amount_delta": params.amount_delta,
                "external_ref": params.external_ref,
                "balance_after": new_balance,
            },
        )
        return entry, True

    @staticmethod
    def _find_existing(
        account: CreditAccount, params: AppendEntryParams
    ) -> LedgerEntry | None:
        if params.external_ref:
            existing = LedgerEntry.objects.filter(
                external_ref=params.external_ref, kind=params.kind
            ).first()
            if existing is not None:
                return existing
        if params.kind == EntryKind.SUBSCRIPTION_GRANT:
            return LedgerEntry.objects.filter(
                account=account,
                kind=EntryKind.SUBSCRIPTION_GRANT,
                cycle_key=params.cycle_key,
            ).first()
        return None

    @staticmethod
    def _check_same_account(entry: LedgerEntry, account: CreditAccount) -> None:
        if entry.account_id != account.id:
            raise LedgerError(
                f"External reference {entry.external_ref} already used by another account",
                error_code="EXTERNAL_REF_CONFLICT",
                details={
                    "external_ref": entry.external_ref,
                    "kind": entry.kind,
                    "account_id": str(account.id),
                },
            )

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    def balance_of(account_id: uuid.UUID) -> int:
        """
        Current cached balance.

        Raises:
            UnknownAccount: If account doesn't exist
        """
        return LedgerService.get_account(account_id).balance

    @staticmethod
    def held_amount(account_id: uuid.UUID, now=None) -> int:
        """
        Credits held by active, unexpired reservations.

        Reservations past expires_at no longer hold credits even before the
        sweeper marks them expired.
        """
        now = now or timezone.now()
        # Reverse relation query keeps this module free of the Reservation import
        return CreditAccount.objects.filter(pk=account_id).aggregate(
            held=Coalesce(
                Sum(
                    "reservations__amount_reserved",
                    filter=models.Q(
                        reservations__status=ReservationStatus.ACTIVE,
                        reservations__expires_at__gt=now,
                    ),
                ),
                0,
                output_field=models.BigIntegerField(),
            )
        )["held"]

    @staticmethod
    def available_balance(account_id: uuid.UUID) -> int:
        """Balance minus credits held by active reservations."""
        account = LedgerService.get_account(account_id)
        return account.balance - LedgerService.held_amount(account.id)

    @staticmethod
    def list_transactions(
        account_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        kind: str | None = None,
    ) -> list[LedgerEntry]:
        """
        Entries for an account, newest first.

        Args:
            account_id: UUID of the account
            limit: Maximum number of entries to return (default: 50)
            offset: Number of entries to skip (default: 0)
            kind: Optional EntryKind filter
        """
        queryset = LedgerEntry.objects.filter(account_id=account_id)
        if kind:
            queryset = queryset.filter(kind=kind)
        return list(queryset.order_by("-created_at", "-id")[offset : offset + limit])

    @staticmethod
    def verify_balance(account_id: uuid.UUID) -> BalanceCheck:
        """Compare the cached balance with the sum of the account's entries."""
        account = LedgerService.get_account(account_id)
        return BalanceCheck(
            account_id=account.id,
            cached=account.balance,
            computed=account.compute_balance(),
        )


# Singleton instance for convenience
# Usage: from billing.ledger.services import ledger
ledger = LedgerService()
