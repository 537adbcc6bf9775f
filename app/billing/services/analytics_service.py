"""
Usage analytics derived from the ledger.

Rollups group USAGE entries by day, feature and model. They are pure
derived state: always recomputable from the ledger, cached with a TTL and
safe to serve stale.

Design Decisions:
    - TTL-based caching (BILLING_USAGE_ROLLUP_CACHE_SECONDS)
    - One aggregate query per rollup regardless of entry count
    - Credits are reported as positive consumption

Usage:
    from billing.services import AnalyticsService

    rows = AnalyticsService.usage_rollup(account_id=account.id, days=30)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import date, timedelta

from django.conf import settings
from django.core.cache import cache
from django.db.models import CharField, Count, IntegerField, Sum, Value
from django.db.models.fields.json import KeyTextTransform
from django.db.models.functions import Cast, Coalesce, TruncDate
from django.utils import timezone

from billing.ledger import EntryKind, LedgerEntry

logger = logging.getLogger(__name__)

ROLLUP_CACHE_PREFIX = "billing_usage"
DEFAULT_ROLLUP_DAYS = 30
MAX_ROLLUP_DAYS = 366


@dataclass(frozen=True)
class UsageRollup:
    """
    Usage for one (day, feature, model) bucket.

    Attributes:
        day: UTC calendar day
        feature: AI feature name ("" when not recorded)
        model: Model name ("" when not recorded)
        credits: Credits consumed (positive)
        events: Number of usage entries
        tokens_input / tokens_output: Token totals where recorded
    """

    day: date
    feature: str
    model: str
    credits: int
    events: int
    tokens_input: int = 0
    tokens_output: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["day"] = self.day.isoformat()
        return data


class AnalyticsService:
    """Builds and caches usage rollups."""

    @staticmethod
    def _get_cache_key(account_id: uuid.UUID | str | None, days: int) -> str:
        return f"{ROLLUP_CACHE_PREFIX}:{account_id or 'all'}:{days}"

    @classmethod
    def usage_rollup(
        cls,
        account_id: uuid.UUID | str | None = None,
        days: int = DEFAULT_ROLLUP_DAYS,
        use_cache: bool = True,
    ) -> list[UsageRollup]:
        """
        Rollups for the last `days` days, newest day first.

        Args:
            account_id: Restrict to one account (None for all accounts)
            days: Window length, clamped to 1..366
            use_cache: Serve from cache when available
        """
        days = max(1, min(int(days), MAX_ROLLUP_DAYS))
        cache_key = cls._get_cache_key(account_id, days)

        if use_cache:
            cached = cache.get(cache_key)
            if cached is not None:
                return cached

        rollups = cls.compute(account_id=account_id, days=days)
        cache.set(cache_key, rollups, settings.BILLING_USAGE_ROLLUP_CACHE_SECONDS)
        return rollups

    @classmethod
    def compute(
        cls,
        account_id: uuid.UUID | str | None = None,
        days: int = DEFAULT_ROLLUP_DAYS,
        now=None,
    ) -> list[UsageRollup]:
        """Scan USAGE entries in the window and aggregate them."""
        now = now or timezone.now()
        since = now - timedelta(days=days)

        queryset = LedgerEntry.objects.filter(
            kind=EntryKind.USAGE, created_at__gte=since, created_at__lte=now
        )
        if account_id is not None:
            queryset = queryset.filter(account_id=account_id)

        rows = (
            queryset.annotate(
                day=TruncDate("created_at"),
                feature=Coalesce(
                    KeyTextTransform("feature", "metadata"), Value(""), output_field=CharField()
                ),
                model_name=Coalesce(
                    KeyTextTransform("model", "metadata"), Value(""), output_field=CharField()
                ),
            )
            .values("day", "feature", "model_name")
            .annotate(
                credits=Sum("amount_delta"),
                events=Count("id"),
                tokens_input=Sum(
                    Cast(KeyTextTransform("tokens_input", "metadata"), IntegerField())
                ),
                tokens_output=Sum(
                    Cast(KeyTextTransform("tokens_output", "metadata"), IntegerField())
                ),
            )
            .order_by("-day", "feature", "model_name")
        )

        return [
            UsageRollup(
                day=row["day"],
                feature=row["feature"],
                model=row["model_name"],
                credits=-(row["credits"] or 0),
                events=row["events"],
                tokens_input=row["tokens_input"] or 0,
                tokens_output=row["tokens_output"] or 0,
            )
            for row in rows
        ]

    @classmethod
    def refresh(cls, account_ids=None, days: int = DEFAULT_ROLLUP_DAYS) -> int:
        """Recompute and re-cache rollups. Returns the number of caches warmed."""
        targets = [None] + list(account_ids or [])
        for account_id in targets:
            cls.usage_rollup(account_id=account_id, days=days, use_cache=False)
        logger.info(
            "Usage rollups refreshed",
            extra={"caches_warmed": len(targets), "days": days},
        )
        return len(targets)

