"""
Tests for the price/plan catalog.
"""

import pytest
from django.core.exceptions import ImproperlyConfigured

from billing.catalog import PriceCatalog, get_catalog
from billing.exceptions import MalformedPayload, UnknownProduct


@pytest.fixture
def catalog():
    return PriceCatalog(
        prices={"price_100": 100, "1000_credits": 1000},
        plans={"pro_plan": {"credits": 5000, "interval": "month"}},
    )


class TestPriceCatalog:
    def test_exact_lookup(self, catalog):
        assert catalog.resolve_price("price_100") == ("price_100", 100)

    def test_substring_does_not_match(self, catalog):
        with pytest.raises(UnknownProduct):
            catalog.resolve_price("price_1000_credits_bundle")

    def test_resolve_price_takes_first_known_ref(self, catalog):
        assert catalog.resolve_price(None, "unknown", "1000_credits") == ("1000_credits", 1000)

    def test_resolve_price_with_no_known_ref(self, catalog):
        with pytest.raises(UnknownProduct) as exc_info:
            catalog.resolve_price("a", None, "b")
        assert exc_info.value.details["refs"] == ["a", "b"]

    def test_plan_lookup(self, catalog):
        plan = catalog.plan_for("pro_plan")
        assert plan.credits == 5000
        assert plan.interval == "month"

    def test_unknown_plan(self, catalog):
        with pytest.raises(UnknownProduct):
            catalog.plan_for("price_100")

    @pytest.mark.parametrize("ref", [["price_100"], {"id": "price_100"}, 100])
    def test_non_string_refs_are_malformed(self, catalog, ref):
        with pytest.raises(MalformedPayload):
            catalog.resolve_price(ref)
        with pytest.raises(MalformedPayload):
            catalog.plan_for(ref)

    @pytest.mark.parametrize("credits", [0, -1, 2.5, True, None])
    def test_rejects_invalid_credit_values(self, credits):
        with pytest.raises(ImproperlyConfigured):
            PriceCatalog(prices={"bad": credits}, plans={})

    def test_rejects_unknown_interval(self):
        with pytest.raises(ImproperlyConfigured):
            PriceCatalog(prices={}, plans={"p": {"credits": 10, "interval": "week"}})

    def test_built_from_settings(self, settings):
        settings.BILLING_PRICE_CATALOG = {"pack": 42}
        assert get_catalog().resolve_price("pack") == ("pack", 42)
