"""
Webhook event handlers for Polar events.

This module provides a handler registry and implementations for the
provider events that move credits.

Handlers run inside the ingestion transaction, after the idempotency guard
has claimed the event id. They raise typed billing errors instead of
returning failures, so a failed effect rolls the guard row back with it and
the provider's redelivery is processed normally.

Usage:
    from billing.webhooks.handlers import dispatch, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from billing.catalog import get_catalog
from billing.exceptions import MalformedPayload
from billing.ledger import (
    AppendEntryParams,
    CreditAccount,
    EntryKind,
    LedgerEntry,
    LedgerService,
    UnknownAccount,
)
from billing.models import WebhookEvent
from billing.services.reconciliation_service import PAID_ORDER_STATUSES
from billing.services.subscription_service import SubscriptionService, parse_timestamp
from core.services import ServiceResult

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a webhook event handler for one or more types.

    Usage:
        @register_handler("order.created", "order.paid")
        def handle_order(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch(webhook_event: WebhookEvent) -> ServiceResult | None:
    """
    Run the handler registered for the event's type.

    Returns:
        The handler's ServiceResult, or None if no handler is registered
        (unknown types are acknowledged and ignored)
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)
    if handler is None:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"external_event_id": webhook_event.external_event_id},
        )
        return None

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"external_event_id": webhook_event.external_event_id},
    )
    return handler(webhook_event)


# =============================================================================
# Payload helpers
# =============================================================================


def get_data(webhook_event: WebhookEvent) -> dict[str, Any]:
    """The event's `data` object, with a required scalar `id`."""
    data = (webhook_event.payload or {}).get("data")
    if not isinstance(data, dict) or not data.get("id"):
        raise MalformedPayload(
            f"{webhook_event.event_type} event has no data.id",
            details={"event_type": webhook_event.event_type},
        )
    get_reference(data, "id")
    return data


def get_mapping(data: dict[str, Any], key: str) -> dict[str, Any]:
    """A nested object field; missing or null reads as empty."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedPayload(
            f"Field {key} must be an object, got {type(value).__name__}",
            details={"field": key},
        )
    return value


def get_reference(data: dict[str, Any], key: str) -> str | None:
    """An identifier field as a string; ids may arrive as strings or integers."""
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedPayload(
            f"Field {key} must be a string, got {type(value).__name__}",
            details={"field": key},
        )
    return str(value)


def resolve_account(data: dict[str, Any]) -> CreditAccount:
    """
    Find the account an event belongs to.

    Tries the provider customer id, then an explicit accountRef, then owner
    ids carried in metadata. An account found through its owner id gets the
    customer id linked, so later events resolve directly.

    Raises:
        UnknownAccount: If no reference matches an account
        MalformedPayload: If a reference field has the wrong type
    """
    metadata = get_mapping(data, "metadata")
    customer = get_mapping(data, "customer")
    customer_id = get_reference(data, "customer_id") or get_reference(customer, "id")
    candidates = [
        customer_id,
        get_reference(data, "accountRef"),
        get_reference(metadata, "owner_id"),
        get_reference(metadata, "user_id"),
        get_reference(metadata, "userId"),
        get_reference(customer, "external_id"),
    ]
    refs = list(dict.fromkeys(c for c in candidates if c))

    for ref in refs:
        try:
            account = LedgerService.resolve_account(ref)
        except UnknownAccount:
            continue
        if customer_id and not account.customer_ref:
            account = LedgerService.link_customer(account, customer_id)
        return account

    raise UnknownAccount(
        "No account for webhook references",
        details={"refs": refs},
    )


# =============================================================================
# Order Handlers
# =============================================================================


@register_handler("order.created", "order.paid")
def handle_order_paid(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Grant the credits of a one-time purchase.

    The order id is the entry's external_ref, so order.created and
    order.paid for the same order grant once between them. Subscription
    renewal orders are skipped; their credits come from cycle grants.

    Raises:
        UnknownAccount: If the customer cannot be resolved
        UnknownProduct: If the price/product is not in the catalog
    """
    data = get_data(webhook_event)
    order_id = str(data["id"])

    status = get_reference(data, "status")
    if status and status not in PAID_ORDER_STATUSES:
        logger.info(
            f"Order {order_id} is {status}, not granting",
            extra={"external_event_id": webhook_event.external_event_id},
        )
        return ServiceResult.success(None)
    if get_reference(data, "subscription_id"):
        logger.info(
            f"Order {order_id} belongs to a subscription, credits come from cycle grants",
            extra={"external_event_id": webhook_event.external_event_id},
        )
        return ServiceResult.success(None)

    account = resolve_account(data)
    price_ref, credits = get_catalog().resolve_price(
        data.get("priceRef"), data.get("product_price_id"), data.get("product_id")
    )

    entry, created = LedgerService.append_or_get(
        AppendEntryParams(
            account_id=account.id,
            amount_delta=credits,
            kind=EntryKind.PURCHASE,
            external_ref=order_id,
            description=f"Purchase {price_ref}",
            metadata={
                "order_id": order_id,
                "price_ref": price_ref,
                "amount": data.get("total_amount", data.get("amount")),
                "currency": data.get("currency"),
                "external_event_id": webhook_event.external_event_id,
            },
        )
    )

    if not created:
        logger.info(
            f"Order {order_id} already granted",
            extra={"external_event_id": webhook_event.external_event_id},
        )
    return ServiceResult.success(entry)


def refund_ref(order_id: str, taken: int) -> str:
    """Ledger key of one clawback step: the order plus the credits taken before it."""
    return f"{order_id}:refund:{taken}"


@register_handler("order.refunded")
def handle_order_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Claw back the credits granted for a refunded order.

    refunded_amount is cumulative across partial refunds: the credits owed
    in total are proportional to it, and each refund takes only what earlier
    refund entries for the order have not taken yet. The clawback is capped
    at the available balance so the balance stays non-negative; the
    uncollected rest is recorded as `shortfall` in the entry metadata, or in
    the event's outcome when nothing could be collected.
    """
    data = get_data(webhook_event)
    order_id = get_reference(data, "id")

    purchase = LedgerEntry.objects.filter(
        kind=EntryKind.PURCHASE, external_ref=order_id
    ).first()
    if purchase is None:
        logger.warning(
            f"Refund for order {order_id} with no purchase entry",
            extra={"external_event_id": webhook_event.external_event_id},
        )
        return ServiceResult.success(None)

    owed_total = purchase.amount_delta
    total = data.get("total_amount", data.get("amount"))
    refunded = data.get("refunded_amount")
    if not isinstance(refunded, int) or isinstance(refunded, bool):
        refunded = None
    if isinstance(total, int) and refunded is not None and 0 <= refunded < total:
        owed_total = purchase.amount_delta * refunded // total

    with transaction.atomic():
        account = LedgerService.lock_account(purchase.account_id)
        taken = -(
            LedgerEntry.objects.filter(
                kind=EntryKind.REFUND, external_ref__startswith=f"{order_id}:refund:"
            ).aggregate(total=Sum("amount_delta"))["total"]
            or 0
        )
        owed = max(owed_total - taken, 0)
        if owed == 0:
            logger.info(
                f"Refund for order {order_id} already clawed back",
                extra={"external_event_id": webhook_event.external_event_id, "taken": taken},
            )
            return ServiceResult.success(None)

        held = LedgerService.held_amount(account.id)
        clawback = min(owed, max(account.balance - held, 0))
        shortfall = owed - clawback
        webhook_event.outcome = {
            "order_id": order_id,
            "owed": owed,
            "clawed_back": clawback,
            "shortfall": shortfall,
        }

        entry = None
        if clawback:
            entry, _ = LedgerService.append_locked(
                account,
                AppendEntryParams(
                    account_id=account.id,
                    amount_delta=-clawback,
                    kind=EntryKind.REFUND,
                    external_ref=refund_ref(order_id, taken),
                    description=f"Refund of order {order_id}",
                    metadata={
                        "order_id": order_id,
                        "purchase_entry_id": str(purchase.id),
                        "refunded_amount": refunded,
                        "owed_total": owed_total,
                        "owed": owed,
                        "shortfall": shortfall,
                        "external_event_id": webhook_event.external_event_id,
                    },
                ),
                held=held,
            )

    if shortfall:
        logger.error(
            f"Refund for order {order_id} capped at available balance",
            extra={
                "account_id": str(account.id),
                "owed": owed,
                "shortfall": shortfall,
                "external_event_id": webhook_event.external_event_id,
            },
        )
    return ServiceResult.success(entry)


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler("subscription.created", "subscription.updated", "subscription.active")
def handle_subscription_upsert(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Mirror the subscription and grant the current cycle when it is active.

    The grant is the same idempotent cycle grant the scheduler makes.
    """
    data = get_data(webhook_event)
    account = resolve_account(data)
    subscription = SubscriptionService.upsert_from_event(account, data)

    now = timezone.now()
    if subscription.is_grantable_at(now) and now >= subscription.anchor_at:
        result = SubscriptionService.grant_current_cycle(subscription, now=now)
        if result:
            return ServiceResult.success(result.data)
    return ServiceResult.success(None)


@register_handler("subscription.canceled")
def handle_subscription_canceled(webhook_event: WebhookEvent) -> ServiceResult:
    """Stop future grants after the paid period ends."""
    data = get_data(webhook_event)
    ends_at = parse_timestamp(data.get("ends_at")) or parse_timestamp(
        data.get("current_period_end")
    )
    subscription = SubscriptionService.cancel(str(data["id"]), ends_at=ends_at)
    if subscription is None:
        logger.warning(
            f"Cancel for unknown subscription {data['id']}",
            extra={"external_event_id": webhook_event.external_event_id},
        )
    return ServiceResult.success(subscription)


@register_handler("subscription.revoked")
def handle_subscription_revoked(webhook_event: WebhookEvent) -> ServiceResult:
    """Stop grants immediately."""
    data = get_data(webhook_event)
    subscription = SubscriptionService.revoke(str(data["id"]))
    if subscription is None:
        logger.warning(
            f"Revoke for unknown subscription {data['id']}",
            extra={"external_event_id": webhook_event.external_event_id},
        )
    return ServiceResult.success(subscription)
