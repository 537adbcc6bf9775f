"""
Subscription grants: recurring credits exactly once per billing cycle.

A cycle is identified by its start: "YYYY-MM" for monthly plans, "YYYY" for
yearly ones. Cycle starts are the anchor date stepped by whole months, with
the anchor day clamped to the month's length (a Jan 31 anchor cycles on
Feb 28/29, Mar 31...).

There is no external event id for "a new month started", so the ledger's
(account, cycle_key) uniqueness on SUBSCRIPTION_GRANT entries is the
idempotency mechanism: repeated and concurrent grant runs append once.

Usage:
    from billing.services import SubscriptionService

    result = SubscriptionService.grant_current_cycle(subscription)
    if result:
        entry = result.data
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Any

from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from django_fsm import can_proceed

from billing.catalog import get_catalog
from billing.exceptions import MalformedPayload
from billing.ledger import (
    AppendEntryParams,
    CreditAccount,
    EntryKind,
    LedgerEntry,
    LedgerService,
)
from billing.models import BillingInterval, Subscription
from billing.state_machines import SubscriptionStatus
from core.services import BaseService, ServiceResult


@dataclass(frozen=True)
class Cycle:
    key: str
    start: datetime
    end: datetime


def add_months(value: datetime, months: int, anchor_day: int | None = None) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year, month = value.year + month_index // 12, month_index % 12 + 1
    day = min(anchor_day or value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def current_cycle(anchor_at: datetime, interval: str, now: datetime | None = None) -> Cycle:
    """
    Billing cycle containing `now`.

    Raises:
        ValueError: If `now` is before the anchor
    """
    # Cycle boundaries are calendar months in UTC, whatever offset the anchor came with
    anchor_at = anchor_at.astimezone(dt_timezone.utc)
    now = (now or timezone.now()).astimezone(dt_timezone.utc)
    if now < anchor_at:
        raise ValueError("Billing cycle requested before the subscription anchor")

    step = 12 if interval == BillingInterval.YEAR else 1
    months = (now.year - anchor_at.year) * 12 + (now.month - anchor_at.month)
    cycles = months // step
    start = add_months(anchor_at, cycles * step, anchor_at.day)
    if start > now:
        cycles -= 1
        start = add_months(anchor_at, cycles * step, anchor_at.day)
    end = add_months(anchor_at, (cycles + 1) * step, anchor_at.day)

    key = f"{start.year:04d}" if step == 12 else f"{start.year:04d}-{start.month:02d}"
    return Cycle(key=key, start=start, end=end)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a provider timestamp into an aware UTC datetime (naive means UTC)."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parse_datetime(str(value))
        except ValueError as e:
            raise MalformedPayload(
                f"Invalid timestamp: {value}", details={"value": str(value)}
            ) from e
        if parsed is None:
            return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed.astimezone(dt_timezone.utc)


class SubscriptionService(BaseService):
    """Mirrors provider subscriptions and grants their cycle credits."""

    @classmethod
    def upsert_from_event(
        cls,
        account: CreditAccount,
        data: dict[str, Any],
        now: datetime | None = None,
    ) -> Subscription:
        """
        Create or update the local Subscription from a provider payload.

        Reads data.id, data.product_id (plan), data.status,
        data.current_period_start/started_at (anchor),
        data.current_period_end and data.cancel_at_period_end.

        Raises:
            MalformedPayload: If the subscription id is missing
            UnknownProduct: If the product is not a known plan
        """
        now = now or timezone.now()
        provider_id = data.get("id")
        if not provider_id:
            raise MalformedPayload("Subscription payload has no id")

        plan = get_catalog().plan_for(data.get("product_id") or data.get("priceRef"))
        provider_status = str(data.get("status") or "active")
        period_end = parse_timestamp(data.get("current_period_end"))
        wants_cancel = bool(data.get("cancel_at_period_end")) or provider_status == "canceled"

        with transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .filter(provider_subscription_id=provider_id)
                .first()
            )
            if subscription is None:
                anchor = (
                    parse_timestamp(data.get("current_period_start"))
                    or parse_timestamp(data.get("started_at"))
                    or now
                )
                subscription = Subscription(
                    provider_subscription_id=provider_id,
                    account=account,
                    anchor_at=anchor,
                )

            subscription.plan_ref = plan.product_ref
            subscription.credits_per_cycle = plan.credits
            subscription.interval = plan.interval
            subscription.provider_status = provider_status

            if wants_cancel and can_proceed(subscription.cancel):
                subscription.cancel(ends_at=period_end)
            elif not wants_cancel and can_proceed(subscription.reactivate):
                subscription.reactivate()

            subscription.save()

        cls.get_logger().info(
            f"Subscription {provider_id} synced: {subscription.status}",
            extra={
                "subscription_id": provider_id,
                "account_id": str(account.id),
                "plan_ref": plan.product_ref,
                "provider_status": provider_status,
            },
        )
        return subscription

    @classmethod
    def grant_current_cycle(
        cls,
        subscription: Subscription,
        now: datetime | None = None,
    ) -> ServiceResult[LedgerEntry]:
        """
        Grant the credits of the cycle containing `now`, once.

        Returns:
            success with the grant entry (new or already existing), or
            failure with error_code SUBSCRIPTION_NOT_GRANTABLE
        """
        now = now or timezone.now()
        if not subscription.is_grantable_at(now) or now < subscription.anchor_at:
            return ServiceResult.failure(
                f"Subscription {subscription.provider_subscription_id} is not grantable",
                error_code="SUBSCRIPTION_NOT_GRANTABLE",
            )

        cycle = current_cycle(subscription.anchor_at, subscription.interval, now)
        if subscription.ends_at is not None and cycle.start >= subscription.ends_at:
            return ServiceResult.failure(
                f"Cycle {cycle.key} starts after the subscription ends",
                error_code="SUBSCRIPTION_NOT_GRANTABLE",
            )

        entry, created = LedgerService.append_or_get(
            AppendEntryParams(
                account_id=subscription.account_id,
                amount_delta=subscription.credits_per_cycle,
                kind=EntryKind.SUBSCRIPTION_GRANT,
                external_ref=f"{subscription.provider_subscription_id}:{cycle.key}",
                cycle_key=cycle.key,
                description=f"Subscription credits {cycle.key} ({subscription.plan_ref})",
                metadata={
                    "subscription_id": subscription.provider_subscription_id,
                    "plan_ref": subscription.plan_ref,
                    "cycle_start": cycle.start.isoformat(),
                    "cycle_end": cycle.end.isoformat(),
                },
            )
        )

        if created:
            Subscription.objects.filter(pk=subscription.pk).update(
                last_granted_cycle=cycle.key, updated_at=timezone.now()
            )
            subscription.last_granted_cycle = cycle.key
            cls.get_logger().info(
                f"Granted {subscription.credits_per_cycle} credits for cycle {cycle.key}",
                extra={
                    "subscription_id": subscription.provider_subscription_id,
                    "account_id": str(subscription.account_id),
                    "cycle_key": cycle.key,
                },
            )
        return ServiceResult.success(entry)

    @classmethod
    def grant_all_due(cls, now: datetime | None = None) -> dict[str, int]:
        """
        Grant the current cycle for every grantable subscription.

        Failures are isolated per subscription and logged.

        Returns:
            Counts: checked, granted, skipped, failed
        """
        now = now or timezone.now()
        counts = {"checked": 0, "granted": 0, "skipped": 0, "failed": 0}

        candidates = Subscription.objects.filter(
            Q(status=SubscriptionStatus.ACTIVE)
            | Q(status=SubscriptionStatus.CANCELED, ends_at__gt=now),
            anchor_at__lte=now,
        ).order_by("anchor_at")

        for subscription in candidates.iterator():
            counts["checked"] += 1
            if subscription.last_granted_cycle == current_cycle(
                subscription.anchor_at, subscription.interval, now
            ).key:
                counts["skipped"] += 1
                continue
            try:
                result = cls.grant_current_cycle(subscription, now=now)
            except Exception as e:
                counts["failed"] += 1
                cls.get_logger().exception(
                    f"Subscription grant failed: {e}",
                    extra={"subscription_id": subscription.provider_subscription_id},
                )
                continue
            counts["granted" if result else "skipped"] += 1

        return counts

    @classmethod
    def cancel(
        cls,
        provider_subscription_id: str,
        ends_at: datetime | None = None,
    ) -> Subscription | None:
        """Stop granting after `ends_at` (end of the paid period)."""
        with transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .filter(provider_subscription_id=provider_subscription_id)
                .first()
            )
            if subscription is None:
                return None
            if can_proceed(subscription.cancel):
                subscription.cancel(ends_at=ends_at)
                subscription.provider_status = "canceled"
                subscription.save()
        return subscription

    @classmethod
    def revoke(cls, provider_subscription_id: str) -> Subscription | None:
        """Stop granting immediately."""
        with transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .filter(provider_subscription_id=provider_subscription_id)
                .first()
            )
            if subscription is None:
                return None
            if can_proceed(subscription.revoke):
                subscription.revoke()
                subscription.provider_status = "revoked"
                subscription.save()
        return subscription
