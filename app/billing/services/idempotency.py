"""
Idempotency guard for provider events.

Exactly one caller observes FRESH for a given external event id: the guard
row is an INSERT against a unique constraint, not an existence check, and it
lives in the caller's transaction. If the caller's ledger write fails, the
guard row rolls back with it and a redelivery is processed normally.

Usage:
    from billing.services.idempotency import IdempotencyGuard

    with transaction.atomic():
        claim = IdempotencyGuard.try_begin("evt_1", "order.created", payload)
        if claim.is_fresh:
            apply_effect()
            IdempotencyGuard.mark_processed(claim.event)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from django.db import IntegrityError, transaction
from django.db.transaction import TransactionManagementError
from django.utils import timezone

from billing.exceptions import MalformedPayload
from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


class GuardStatus(str, Enum):
    FRESH = "fresh"
    ALREADY_PROCESSED = "already_processed"


@dataclass(frozen=True)
class GuardOutcome:
    status: GuardStatus
    event: WebhookEvent | None

    @property
    def is_fresh(self) -> bool:
        return self.status == GuardStatus.FRESH


class IdempotencyGuard:
    """Insert-if-absent on WebhookEvent.external_event_id."""

    @staticmethod
    def try_begin(
        external_event_id: str,
        event_type: str = "",
        payload: dict[str, Any] | None = None,
    ) -> GuardOutcome:
        """
        Claim an event id inside the caller's transaction.

        Raises:
            MalformedPayload: If the event id is empty
            TransactionManagementError: If called outside transaction.atomic()
        """
        if not external_event_id:
            raise MalformedPayload("Event has no identifier")
        if not transaction.get_connection().in_atomic_block:
            raise TransactionManagementError(
                "IdempotencyGuard.try_begin must run inside transaction.atomic()"
            )

        try:
            with transaction.atomic():
                event = WebhookEvent.objects.create(
                    external_event_id=external_event_id,
                    event_type=event_type,
                    payload=payload or {},
                )
        except IntegrityError:
            logger.info(
                "Duplicate event, already processed",
                extra={"external_event_id": external_event_id, "event_type": event_type},
            )
            return GuardOutcome(
                status=GuardStatus.ALREADY_PROCESSED,
                event=WebhookEvent.objects.filter(
                    external_event_id=external_event_id
                ).first(),
            )

        return GuardOutcome(status=GuardStatus.FRESH, event=event)

    @staticmethod
    def mark_processed(
        event: WebhookEvent,
        status: str = WebhookEventStatus.PROCESSED,
    ) -> WebhookEvent:
        event.status = status
        event.processed_at = timezone.now()
        event.save(update_fields=["status", "processed_at", "outcome"])
        return event
