"""
Pytest fixtures for billing tests.

Fixtures here are shared by every billing test package (ledger, services,
webhooks, workers, adapters).

Usage:
    def test_reserve(funded_account):
        reservation = ReservationService.reserve(funded_account.id, 10)
"""

import json
from dataclasses import replace
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from django.utils import timezone

from billing.adapters import PolarAdapter, ProviderOrder, set_provider_adapter
from billing.ledger import AppendEntryParams, EntryKind, ledger
from billing.tests.factories import CreditAccountFactory, UserFactory
from billing.webhooks import verifier


# =============================================================================
# User and Account Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def staff_user(db):
    """Create a staff user for admin-only endpoints."""
    return UserFactory(is_staff=True)


@pytest.fixture
def account(db):
    """An empty active account linked to provider customer cus_1."""
    return CreditAccountFactory(owner_id="owner_1", customer_ref="cus_1")


@pytest.fixture
def grant_credits(db):
    """
    Credit an account through the ledger.

    Usage:
        grant_credits(account, 100)
    """
    counter = {"n": 0}

    def _grant(account, credits, kind=EntryKind.ADJUSTMENT):
        counter["n"] += 1
        entry = ledger.append(
            AppendEntryParams(
                account_id=account.id,
                amount_delta=credits,
                kind=kind,
                external_ref=f"test_grant_{account.id}_{counter['n']}",
                description="Test credits",
            )
        )
        account.refresh_from_db()
        return entry

    return _grant


@pytest.fixture
def funded_account(account, grant_credits):
    """Account cus_1 holding 100 credits."""
    grant_credits(account, 100)
    return account


# =============================================================================
# Provider Fixtures
# =============================================================================


class FakeProviderAdapter:
    """In-memory stand-in for PolarAdapter's reconciliation/usage surface."""

    USAGE_EVENT_NAME = "ai_usage"

    def __init__(self):
        self.orders: list[ProviderOrder] = []
        self.extra_orders: dict[str, ProviderOrder] = {}
        self.ingested: list[dict] = []
        self.list_error: Exception | None = None
        self.ingest_error: Exception | None = None

    def add_order(self, order_id, created_at=None, **fields) -> ProviderOrder:
        order = ProviderOrder(
            id=order_id,
            customer_id=fields.pop("customer_id", "cus_1"),
            product_id=fields.pop("product_id", None),
            price_id=fields.pop("price_id", "price_100"),
            amount=fields.pop("amount", 1000),
            created_at=created_at or timezone.now(),
            **fields,
        )
        self.orders.append(order)
        return order

    def list_orders(self, since: datetime, until: datetime) -> list[ProviderOrder]:
        if self.list_error is not None:
            raise self.list_error
        return [o for o in self.orders if since <= o.created_at < until]

    def get_order(self, order_id: str) -> ProviderOrder | None:
        for order in self.orders:
            if order.id == order_id:
                return replace(order)
        return self.extra_orders.get(order_id)

    def ingest_usage_events(self, events: list[dict]) -> dict:
        if self.ingest_error is not None:
            raise self.ingest_error
        self.ingested.extend(events)
        return {"inserted": len(events)}


@pytest.fixture(autouse=True)
def _reset_provider():
    """Restore the real adapter and its HTTP transport after each test."""
    yield
    set_provider_adapter(None)
    PolarAdapter.transport = None


@pytest.fixture
def fake_provider():
    """Install a FakeProviderAdapter as the active provider adapter."""
    adapter = FakeProviderAdapter()
    set_provider_adapter(adapter)
    return adapter


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured so locks are always free.
    """
    client = MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1
    mocker.patch("billing.locks.get_redis_connection", return_value=client)
    return client


# =============================================================================
# Webhook Fixtures
# =============================================================================


@pytest.fixture
def webhook_body():
    """
    Build a raw webhook body and its valid signature.

    Usage:
        body, signature = webhook_body("order.created", {"id": "ord_1", ...})
    """

    def _build(event_type, data, event_id=None):
        event = {"type": event_type, "data": data}
        if event_id:
            event["id"] = event_id
        body = json.dumps(event).encode()
        return body, verifier.sign(body)

    return _build


@pytest.fixture
def order_data():
    """Payload data for a paid one-time order of `price_100` (100 credits)."""

    def _build(order_id="ord_1", **overrides):
        data = {
            "id": order_id,
            "status": "paid",
            "customer_id": "cus_1",
            "product_id": "prod_credits",
            "product_price_id": "price_100",
            "total_amount": 1000,
            "currency": "usd",
        }
        data.update(overrides)
        return data

    return _build
