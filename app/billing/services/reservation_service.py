"""
Reservation manager: reserve -> commit/release protocol for usage debits.

AI feature cost is known only after the model call, so consumption is a
hold followed by a resolution:

    reservation = ReservationService.reserve(account.id, estimated_amount=8)
    try:
        result = call_model()
    except Exception:
        ReservationService.release(reservation.id)
        raise
    ReservationService.commit(reservation.id, actual_amount=result.cost)

Concurrency:
    - reserve() and commit() lock the account row, so the available-balance
      check and the write are one linearized step per account.
    - Every status change is a conditional UPDATE on status='active'. When
      commit, release and the expiry sweep race, exactly one wins and the
      others see ReservationAlreadyResolved (or an idempotent no-op).
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from billing.exceptions import (
    ReservationAlreadyResolved,
    ReservationExpired,
    ReservationInsufficient,
    ReservationNotFound,
)
from billing.ledger import (
    AppendEntryParams,
    EntryKind,
    InactiveAccount,
    InsufficientCredits,
    LedgerEntry,
    LedgerService,
)
from billing.models import Reservation
from billing.state_machines import ReservationStatus
from core.exceptions import ValidationError
from core.services import BaseService


class ReservationService(BaseService):
    """Holds, commits and releases credits for in-flight usage."""

    @classmethod
    def reserve(
        cls,
        account_id: uuid.UUID,
        estimated_amount: int,
        feature: str = "",
        model: str = "",
        metadata: dict[str, Any] | None = None,
        ttl_seconds: int | None = None,
    ) -> Reservation:
        """
        Hold credits against the available balance.

        Args:
            account_id: Account to reserve on
            estimated_amount: Upper bound of the expected cost (credits)
            feature: AI feature name, copied onto the usage entry
            model: AI model identifier
            metadata: Extra context copied onto the usage entry
            ttl_seconds: Hold lifetime (defaults to BILLING_RESERVATION_TTL_SECONDS)

        Returns:
            The ACTIVE Reservation

        Raises:
            ValidationError: If estimated_amount is not positive or ttl_seconds is negative
            UnknownAccount: If the account doesn't exist
            InactiveAccount: If the account is deactivated
            InsufficientCredits: If balance minus active holds < estimated_amount
        """
        if estimated_amount <= 0:
            raise ValidationError(
                "estimated_amount must be positive",
                details={"estimated_amount": estimated_amount},
            )
        ttl = settings.BILLING_RESERVATION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        if ttl < 0:
            raise ValidationError(
                "ttl_seconds cannot be negative", details={"ttl_seconds": ttl_seconds}
            )

        with transaction.atomic():
            account = LedgerService.lock_account(account_id)
            if not account.is_active:
                raise InactiveAccount(
                    f"Account {account.id} is inactive",
                    details={"account_id": str(account.id)},
                )

            now = timezone.now()
            available = account.balance - LedgerService.held_amount(account.id, now=now)
            if available < estimated_amount:
                raise InsufficientCredits(
                    account.id, required=estimated_amount, available=available
                )

            reservation = Reservation.objects.create(
                account=account,
                amount_reserved=estimated_amount,
                feature=feature,
                model=model,
                metadata=metadata or {},
                expires_at=now + timedelta(seconds=ttl),
            )

        cls.get_logger().info(
            "Credits reserved",
            extra={
                "account_id": str(account.id),
                "reservation_id": str(reservation.id),
                "amount": estimated_amount,
                "feature": feature,
            },
        )
        return reservation

    @classmethod
    def commit(
        cls,
        reservation_id: uuid.UUID,
        actual_amount: int,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEntry | None:
        """
        Resolve a reservation into a USAGE entry for the actual cost.

        A zero cost commits the reservation without a ledger entry.

        Args:
            reservation_id: Reservation to commit
            actual_amount: Final cost in credits, at most the reserved amount
            metadata: Extra usage details (tokens, submission id...) merged
                into the entry metadata

        Returns:
            The USAGE LedgerEntry, or None for a zero cost

        Raises:
            ValidationError: If actual_amount is negative
            ReservationNotFound: If the reservation doesn't exist
            ReservationAlreadyResolved: If it is no longer ACTIVE
            ReservationExpired: If its TTL passed (it is marked EXPIRED)
            ReservationInsufficient: If actual_amount exceeds the reservation
        """
        if actual_amount < 0:
            raise ValidationError(
                "actual_amount cannot be negative",
                details={"actual_amount": actual_amount},
            )

        expired = False
        with transaction.atomic():
            reservation = cls.get_reservation(reservation_id)
            account = LedgerService.lock_account(reservation.account_id)
            reservation.refresh_from_db()

            if reservation.status != ReservationStatus.ACTIVE:
                raise ReservationAlreadyResolved(
                    f"Reservation is {reservation.status}",
                    reservation_id=reservation.id,
                    details={"status": reservation.status},
                )

            now = timezone.now()
            if reservation.is_expired_at(now):
                cls._transition(reservation.id, ReservationStatus.EXPIRED, now)
                expired = True
            else:
                if actual_amount > reservation.amount_reserved:
                    raise ReservationInsufficient(
                        f"Actual cost {actual_amount} exceeds reserved "
                        f"{reservation.amount_reserved}",
                        reservation_id=reservation.id,
                        details={
                            "reserved": reservation.amount_reserved,
                            "actual": actual_amount,
                        },
                    )

                if not cls._transition(
                    reservation.id,
                    ReservationStatus.COMMITTED,
                    now,
                    amount_committed=actual_amount,
                ):
                    raise ReservationAlreadyResolved(
                        "Reservation was resolved concurrently",
                        reservation_id=reservation.id,
                    )

                entry = None
                if actual_amount > 0:
                    entry, _ = LedgerService.append_locked(
                        account,
                        AppendEntryParams(
                            account_id=account.id,
                            amount_delta=-actual_amount,
                            kind=EntryKind.USAGE,
                            external_ref=f"reservation:{reservation.id}",
                            description=f"AI usage: {reservation.feature or 'unspecified'}",
                            metadata={
                                **reservation.metadata,
                                **(metadata or {}),
                                "feature": reservation.feature,
                                "model": reservation.model,
                                "reservation_id": str(reservation.id),
                                "amount_reserved": reservation.amount_reserved,
                            },
                        ),
                        held=LedgerService.held_amount(account.id, now=now),
                    )
                    Reservation.objects.filter(pk=reservation.pk).update(
                        ledger_entry=entry
                    )
                    if settings.BILLING_REPORT_USAGE_TO_PROVIDER:
                        cls._schedule_usage_report(entry)

        if expired:
            cls.get_logger().info(
                "Commit after TTL, reservation expired",
                extra={"reservation_id": str(reservation.id)},
            )
            raise ReservationExpired(
                "Reservation expired before commit",
                reservation_id=reservation.id,
                details={"expires_at": reservation.expires_at.isoformat()},
            )

        cls.get_logger().info(
            "Reservation committed",
            extra={
                "account_id": str(account.id),
                "reservation_id": str(reservation.id),
                "reserved": reservation.amount_reserved,
                "actual": actual_amount,
            },
        )
        return entry

    @classmethod
    def release(cls, reservation_id: uuid.UUID) -> Reservation:
        """
        Give held credits back without a ledger entry.

        Idempotent for reservations already released or expired.

        Raises:
            ReservationNotFound: If the reservation doesn't exist
            ReservationAlreadyResolved: If it was committed
        """
        reservation = cls.get_reservation(reservation_id)
        if cls._transition(reservation.id, ReservationStatus.RELEASED, timezone.now()):
            cls.get_logger().info(
                "Reservation released",
                extra={
                    "account_id": str(reservation.account_id),
                    "reservation_id": str(reservation.id),
                    "amount": reservation.amount_reserved,
                },
            )
        reservation.refresh_from_db()

        if reservation.status == ReservationStatus.COMMITTED:
            raise ReservationAlreadyResolved(
                "Reservation was already committed",
                reservation_id=reservation.id,
                details={"status": reservation.status},
            )
        return reservation

    @classmethod
    def expire_stale(cls, now=None, batch_size: int = 500) -> int:
        """
        Mark ACTIVE reservations past their TTL as EXPIRED.

        Returns:
            Number of reservations expired by this call
        """
        now = now or timezone.now()
        stale_ids = list(
            Reservation.objects.filter(
                status=ReservationStatus.ACTIVE, expires_at__lte=now
            )
            .order_by("expires_at")
            .values_list("id", flat=True)[:batch_size]
        )
        if not stale_ids:
            return 0

        # The status filter makes each row's transition conditional
        expired = Reservation.objects.filter(
            id__in=stale_ids, status=ReservationStatus.ACTIVE
        ).update(status=ReservationStatus.EXPIRED, resolved_at=now, updated_at=now)

        if expired:
            cls.get_logger().info(
                f"Expired {expired} stale reservations",
                extra={"expired_count": expired},
            )
        return expired

    @staticmethod
    def get_reservation(reservation_id: uuid.UUID) -> Reservation:
        try:
            return Reservation.objects.get(id=reservation_id)
        except (Reservation.DoesNotExist, DjangoValidationError):
            raise ReservationNotFound(
                f"Reservation {reservation_id} not found",
                reservation_id=reservation_id,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _transition(reservation_id, target: str, now, **fields) -> bool:
        """Conditional ACTIVE -> target update; True if this call won."""
        return bool(
            Reservation.objects.filter(
                pk=reservation_id, status=ReservationStatus.ACTIVE
            ).update(status=target, resolved_at=now, updated_at=now, **fields)
        )

    @staticmethod
    def _schedule_usage_report(entry: LedgerEntry) -> None:
        from billing.workers.usage_reporter import report_usage_event

        entry_id = str(entry.id)
        transaction.on_commit(lambda: report_usage_event.delay(entry_id))
