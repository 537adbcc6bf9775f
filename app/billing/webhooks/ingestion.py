"""
Webhook ingestion: verify, parse, claim and apply a provider event.

handle() never raises for expected failures. It returns an
IngestionOutcome whose HTTP status carries the retry semantics to the
provider:

    200  applied, duplicate, or ignored (unknown event type)
    400  malformed payload (retrying the same body cannot succeed)
    401  invalid signature (no state change)
    409  event conflicts with existing ledger state
    422  unknown account or product (logged for an operator; the provider
         keeps retrying, so fixing the catalog or account lets it through)
    500  transient store failure (rolled back, provider retries)

The idempotency guard row and the ledger effect commit or roll back
together, so only a fully applied event is ever seen as a duplicate.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from django.db import InterfaceError, OperationalError, transaction

from billing.exceptions import (
    InvalidSignature,
    MalformedPayload,
    TransientStoreError,
    UnknownProduct,
)
from billing.ledger import LedgerError, UnknownAccount
from billing.services.idempotency import IdempotencyGuard
from billing.state_machines import WebhookEventStatus
from billing.webhooks import verifier
from billing.webhooks.handlers import WEBHOOK_HANDLERS, dispatch
from core.exceptions import BaseApplicationError, ConflictError

logger = logging.getLogger(__name__)

# Event types whose data.id repeats across distinct deliveries
VERSIONED_EVENT_TYPES = ("subscription.updated",)


class IngestionStatus(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class IngestionOutcome:
    """Result of handling one webhook delivery."""

    status: IngestionStatus
    http_status: int
    external_event_id: str | None = None
    event_type: str | None = None
    error_code: str | None = None
    message: str = ""
    is_retryable: bool = False

    @property
    def is_ack(self) -> bool:
        return self.http_status < 300

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status.value}
        if self.external_event_id:
            body["event_id"] = self.external_event_id
        if self.error_code:
            body["error_code"] = self.error_code
            body["message"] = self.message
        return body


def derive_event_id(event: dict[str, Any], raw_body: bytes, delivery_id: str | None = None) -> str:
    """
    Stable identifier for an event.

    Uses the body's top-level id, then the delivery id header, then
    "<type>:<data.id>". Types whose object id repeats across legitimate
    updates get a digest of the body appended.
    """
    if event.get("id"):
        return str(event["id"])
    if delivery_id:
        return delivery_id

    event_type = event.get("type")
    data = event.get("data") or {}
    if not data.get("id"):
        raise MalformedPayload(
            "Event has neither an id nor data.id", details={"event_type": event_type}
        )
    event_id = f"{event_type}:{data['id']}"
    if event_type in VERSIONED_EVENT_TYPES:
        event_id = f"{event_id}:{hashlib.sha256(raw_body).hexdigest()[:16]}"
    return event_id


def parse_event(raw_body: bytes) -> dict[str, Any]:
    """
    Decode a webhook body.

    Raises:
        MalformedPayload: If the body is not a JSON object with a string
            `type` and an object `data`
    """
    try:
        event = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPayload(f"Webhook body is not valid JSON: {e}")

    if not isinstance(event, dict):
        raise MalformedPayload("Webhook body must be a JSON object")
    if not isinstance(event.get("type"), str) or not event["type"]:
        raise MalformedPayload("Webhook body has no event type")
    if not isinstance(event.get("data"), dict):
        raise MalformedPayload(
            "Webhook body has no data object", details={"event_type": event["type"]}
        )
    return event


def _reject(
    status: IngestionStatus,
    http_status: int,
    error: BaseApplicationError,
    event_id: str | None = None,
    event_type: str | None = None,
) -> IngestionOutcome:
    return IngestionOutcome(
        status=status,
        http_status=http_status,
        external_event_id=event_id,
        event_type=event_type,
        error_code=error.error_code,
        message=error.message,
        is_retryable=error.is_retryable,
    )


def handle(
    raw_body: bytes,
    signature: str | None,
    delivery_id: str | None = None,
) -> IngestionOutcome:
    """
    Verify and apply one webhook delivery.

    Args:
        raw_body: Request body exactly as received
        signature: X-Polar-Signature header value
        delivery_id: Optional delivery id header, used when the body has no id

    Returns:
        IngestionOutcome (see module docstring for status mapping)
    """
    try:
        verifier.verify(raw_body, signature)
    except InvalidSignature as e:
        logger.warning("Webhook signature verification failed", extra={"error": e.message})
        return _reject(IngestionStatus.REJECTED, 401, e)

    try:
        event = parse_event(raw_body)
        event_id = derive_event_id(event, raw_body, delivery_id)
    except MalformedPayload as e:
        logger.warning("Malformed webhook payload", extra={"error": e.message})
        return _reject(IngestionStatus.REJECTED, 400, e)

    event_type = event["type"]
    log_context = {"external_event_id": event_id, "event_type": event_type}
    logger.info(f"Received webhook: {event_type}", extra=log_context)

    try:
        with transaction.atomic():
            claim = IdempotencyGuard.try_begin(event_id, event_type, event)
            if not claim.is_fresh:
                return IngestionOutcome(
                    status=IngestionStatus.DUPLICATE,
                    http_status=200,
                    external_event_id=event_id,
                    event_type=event_type,
                )

            if event_type not in WEBHOOK_HANDLERS:
                IdempotencyGuard.mark_processed(claim.event, WebhookEventStatus.IGNORED)
                logger.info(f"Ignoring unhandled event type {event_type}", extra=log_context)
                return IngestionOutcome(
                    status=IngestionStatus.IGNORED,
                    http_status=200,
                    external_event_id=event_id,
                    event_type=event_type,
                )

            dispatch(claim.event)
            IdempotencyGuard.mark_processed(claim.event)

    except MalformedPayload as e:
        logger.warning(f"Malformed {event_type} payload: {e.message}", extra=log_context)
        return _reject(IngestionStatus.REJECTED, 400, e, event_id, event_type)

    except (UnknownAccount, UnknownProduct) as e:
        logger.error(
            f"Webhook rejected for operator review: {e.message}",
            extra={**log_context, "error_code": e.error_code, "details": e.details},
        )
        return _reject(IngestionStatus.REJECTED, 422, e, event_id, event_type)

    except (ConflictError, LedgerError) as e:
        logger.error(
            f"Webhook conflicts with ledger state: {e.message}",
            extra={**log_context, "error_code": e.error_code, "details": e.details},
        )
        return _reject(IngestionStatus.REJECTED, 409, e, event_id, event_type)

    except (OperationalError, InterfaceError) as e:
        error = TransientStoreError(
            f"Store unavailable while processing {event_type}",
            details={"error": str(e)},
        )
        logger.error(error.message, extra=log_context, exc_info=True)
        return _reject(IngestionStatus.FAILED, 500, error, event_id, event_type)

    logger.info(f"Webhook applied: {event_type}", extra=log_context)
    return IngestionOutcome(
        status=IngestionStatus.APPLIED,
        http_status=200,
        external_event_id=event_id,
        event_type=event_type,
    )
