"""
Product/price catalog: exact mapping from provider references to credits.

Loaded from settings (BILLING_PRICE_CATALOG, BILLING_PLAN_CATALOG), read-only
at runtime. Lookups are exact; an id that merely contains a known key
does not match.

Usage:
    from billing.catalog import get_catalog

    catalog = get_catalog()
    catalog.resolve_price("1000_credits")  # ("1000_credits", 1000)
    catalog.plan_for("pro_plan").credits  # 5000
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from billing.exceptions import MalformedPayload, UnknownProduct


@dataclass(frozen=True)
class Plan:
    """A recurring plan: credits granted per cycle."""

    product_ref: str
    credits: int
    interval: str = "month"


class PriceCatalog:
    """
    Immutable price and plan lookup.

    Args:
        prices: priceRef -> credits for one-time packs
        plans: productRef -> {"credits": int, "interval": "month" | "year"}
    """

    INTERVALS = ("month", "year")

    def __init__(self, prices: dict[str, int], plans: dict[str, dict[str, Any]]):
        self._prices: dict[str, int] = {}
        for ref, credits in prices.items():
            self._prices[ref] = self._validate_credits(ref, credits)

        self._plans: dict[str, Plan] = {}
        for ref, plan in plans.items():
            interval = plan.get("interval", "month")
            if interval not in self.INTERVALS:
                raise ImproperlyConfigured(
                    f"Plan {ref!r} has invalid interval {interval!r}"
                )
            self._plans[ref] = Plan(
                product_ref=ref,
                credits=self._validate_credits(ref, plan.get("credits")),
                interval=interval,
            )

    @classmethod
    def from_settings(cls) -> PriceCatalog:
        return cls(
            prices=settings.BILLING_PRICE_CATALOG,
            plans=settings.BILLING_PLAN_CATALOG,
        )

    @staticmethod
    def _validate_credits(ref: str, credits: Any) -> int:
        if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
            raise ImproperlyConfigured(
                f"Catalog entry {ref!r} must map to a positive integer, got {credits!r}"
            )
        return credits

    @staticmethod
    def _check_ref(ref: Any) -> None:
        if ref is not None and not isinstance(ref, str):
            raise MalformedPayload(
                f"Catalog reference must be a string, got {type(ref).__name__}",
                details={"ref": repr(ref)},
            )

    def resolve_price(self, *refs: str | None) -> tuple[str, int]:
        """
        First reference with a catalog entry, and its credits.

        Payloads carry several identifiers (price id, product id); each is
        matched exactly, in the order given.

        Raises:
            UnknownProduct: If none of the references is in the catalog
            MalformedPayload: If a reference is not a string
        """
        for ref in refs:
            self._check_ref(ref)
            if ref and ref in self._prices:
                return ref, self._prices[ref]
        raise UnknownProduct(
            f"No catalog entry for any of {[r for r in refs if r]!r}",
            details={"refs": [r for r in refs if r]},
        )

    def plan_for(self, product_ref: str | None) -> Plan:
        """
        Recurring plan for a product.

        Raises:
            UnknownProduct: If the product is not a known plan
            MalformedPayload: If the reference is not a string
        """
        self._check_ref(product_ref)
        if product_ref in self._plans:
            return self._plans[product_ref]
        raise UnknownProduct(
            f"No plan for product {product_ref!r}",
            details={"product_ref": product_ref},
        )


def get_catalog() -> PriceCatalog:
    """Build the catalog from current settings."""
    return PriceCatalog.from_settings()
