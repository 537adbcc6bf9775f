"""
Polar API adapter.

All outbound calls to the payment provider go through PolarAdapter so they
share timeouts, retries, error translation, logging and the circuit breaker.

Features:
- httpx client with bearer token and configurable timeout
- Retries with exponential backoff and jitter for timeouts, 429 and 5xx
- 4xx responses are permanent and never retried
- Cache-backed circuit breaker shared by every worker

Configuration (via settings):
- POLAR_API_URL: API base URL (default: https://api.polar.sh)
- POLAR_ACCESS_TOKEN: Organization access token
- POLAR_ORGANIZATION_ID: Organization whose orders are listed
- POLAR_API_TIMEOUT_SECONDS: Per-request timeout (default: 10)
- POLAR_MAX_RETRIES: Retries after the first attempt (default: 3)

Usage:
    from billing.adapters import PolarAdapter

    orders = PolarAdapter.list_orders(since, until)
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from django.conf import settings
from django.utils.dateparse import parse_datetime

from billing.exceptions import (
    ProviderError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from core.circuit_breaker import CircuitBreaker, CircuitOpenError


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ProviderOrder:
    """
    A provider order, as needed for reconciliation.

    Attributes:
        id: Provider order id (ledger external_ref of the purchase)
        customer_id: Provider customer id
        product_id: Provider product id
        price_id: Provider product price id, if any
        amount: Charged amount in minor currency units
        created_at: Order creation time
        status: Provider order status (paid, refunded...)
        subscription_id: Set for subscription renewals
        metadata: Order metadata (may carry an owner id)
    """

    id: str
    customer_id: str | None
    product_id: str | None
    price_id: str | None
    amount: int
    created_at: datetime | None
    status: str = "paid"
    subscription_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> ProviderOrder:
        created = item.get("created_at")
        return cls(
            id=item["id"],
            customer_id=item.get("customer_id"),
            product_id=item.get("product_id"),
            price_id=item.get("product_price_id"),
            amount=int(item.get("total_amount", item.get("amount")) or 0),
            created_at=parse_datetime(created) if created else None,
            status=item.get("status") or "paid",
            subscription_id=item.get("subscription_id"),
            metadata=item.get("metadata") or {},
        )

    @property
    def is_subscription_order(self) -> bool:
        return bool(self.subscription_id)


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_provider_error(error: Exception) -> bool:
    """True for transient provider failures (timeouts, 429, 5xx, open circuit)."""
    if isinstance(error, (ProviderError, CircuitOpenError)):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Exponential backoff with 0-25% jitter.

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    return delay + delay * random.uniform(0, 0.25)


# =============================================================================
# Polar Adapter
# =============================================================================


class PolarAdapter:
    """
    Adapter for Polar API operations.

    All methods are class methods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Tests swap the HTTP layer by setting `transport` to an
    httpx.MockTransport.
    """

    circuit = CircuitBreaker("polar-api", failure_threshold=5, recovery_timeout=60)
    transport: httpx.BaseTransport | None = None

    PAGE_SIZE = 100
    USAGE_EVENT_NAME = "ai_usage"

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _client(cls) -> httpx.Client:
        return httpx.Client(
            base_url=settings.POLAR_API_URL,
            headers={
                "Authorization": f"Bearer {settings.POLAR_ACCESS_TOKEN}",
                "Accept": "application/json",
            },
            timeout=settings.POLAR_API_TIMEOUT_SECONDS,
            transport=cls.transport,
        )

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def list_orders(cls, since: datetime, until: datetime) -> list[ProviderOrder]:
        """
        Orders created in [since, until), oldest first.

        Pages through /v1/orders/ newest first and stops at the first page
        reaching past `since`.

        Raises:
            ProviderError: On a permanent or exhausted transient failure
            CircuitOpenError: If the provider circuit is open
        """
        orders: list[ProviderOrder] = []
        page = 1
        while True:
            params: dict[str, Any] = {
                "page": page,
                "limit": cls.PAGE_SIZE,
                "sorting": "-created_at",
            }
            if settings.POLAR_ORGANIZATION_ID:
                params["organization_id"] = settings.POLAR_ORGANIZATION_ID

            body = cls._request("GET", "/v1/orders/", params=params, operation="list_orders")
            items = body.get("items") or []

            reached_start = False
            for item in items:
                order = ProviderOrder.from_api(item)
                if order.created_at is None:
                    continue
                if order.created_at < since:
                    reached_start = True
                    break
                if order.created_at < until:
                    orders.append(order)

            max_page = (body.get("pagination") or {}).get("max_page", page)
            if reached_start or not items or page >= max_page:
                break
            page += 1

        orders.sort(key=lambda o: o.created_at)
        return orders

    @classmethod
    def get_order(cls, order_id: str) -> ProviderOrder | None:
        """Fetch one order; None if the provider does not know it."""
        try:
            body = cls._request("GET", f"/v1/orders/{order_id}", operation="get_order")
        except ProviderRequestError as e:
            if e.details.get("status_code") == 404:
                return None
            raise
        return ProviderOrder.from_api(body)

    @classmethod
    def ingest_usage_events(cls, events: list[dict[str, Any]]) -> dict[str, Any]:
        """
        Report usage events to the provider's meter ingestion endpoint.

        Each event: {"name", "customer_id" or "external_customer_id", "metadata"}.
        """
        return cls._request(
            "POST",
            "/v1/events/ingest",
            json={"events": events},
            operation="ingest_usage_events",
        )

    # =========================================================================
    # Transport
    # =========================================================================

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Send a request with retries and circuit breaking.

        Raises:
            CircuitOpenError: If the circuit is open
            ProviderRequestError: On 4xx (not retried)
            ProviderRateLimitError / ProviderUnavailableError /
            ProviderTimeoutError: After retries are exhausted
        """
        logger = cls.get_logger()
        max_retries = settings.POLAR_MAX_RETRIES
        log_context = {"operation": operation, "method": method, "path": path}

        attempt = 0
        while True:
            if not cls.circuit.is_available():
                raise CircuitOpenError(
                    f"Circuit '{cls.circuit.name}' is open",
                    details={"circuit": cls.circuit.name, "operation": operation},
                )

            start_time = time.time()
            try:
                body = cls._send(method, path, params=params, json=json)
            except ProviderError as e:
                duration_ms = (time.time() - start_time) * 1000
                if not e.is_retryable:
                    # The provider answered; a 4xx says nothing about its health
                    cls.circuit.record_success()
                    logger.error(
                        f"Polar request rejected: {e.message}",
                        extra={**log_context, "duration_ms": duration_ms},
                    )
                    raise

                cls.circuit.record_failure()
                if attempt >= max_retries:
                    logger.error(
                        f"Polar request failed after {attempt + 1} attempts: {e.message}",
                        extra={**log_context, "duration_ms": duration_ms},
                    )
                    raise

                delay = backoff_delay(attempt)
                logger.warning(
                    f"Polar request failed, retrying in {delay:.2f}s: {e.message}",
                    extra={**log_context, "attempt": attempt, "duration_ms": duration_ms},
                )
                time.sleep(delay)
                attempt += 1
                continue

            cls.circuit.record_success()
            logger.info(
                "Polar operation completed",
                extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
            )
            return body

    @classmethod
    def _send(
        cls,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """One HTTP round trip, with httpx errors translated to ProviderError."""
        try:
            with cls._client() as client:
                response = client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Polar request timed out: {e}", details={"path": path}
            )
        except httpx.TransportError as e:
            raise ProviderUnavailableError(
                f"Could not reach Polar: {e}", details={"path": path}
            )

        status_code = response.status_code
        details = {"path": path, "status_code": status_code}
        if status_code == 429:
            raise ProviderRateLimitError("Polar rate limit exceeded", details=details)
        if status_code >= 500:
            raise ProviderUnavailableError(
                f"Polar returned {status_code}", details=details
            )
        if status_code >= 400:
            raise ProviderRequestError(
                f"Polar rejected request with {status_code}",
                details={**details, "body": response.text[:500]},
            )

        if not response.content:
            return {}
        return response.json()
