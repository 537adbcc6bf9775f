"""
Payment provider adapters.

All provider API calls go through these adapters for consistent timeouts,
retries, error translation and observability.

Reconciliation and usage reporting fetch the active adapter with
get_provider_adapter(); tests install a fake with set_provider_adapter().

Usage:
    from billing.adapters import get_provider_adapter

    orders = get_provider_adapter().list_orders(since, until)
"""

from billing.adapters.polar_adapter import (
    PolarAdapter,
    ProviderOrder,
    backoff_delay,
    is_retryable_provider_error,
)

_adapter_override = None


def get_provider_adapter():
    """Active provider adapter (PolarAdapter unless overridden)."""
    return _adapter_override or PolarAdapter


def set_provider_adapter(adapter) -> None:
    """Install an adapter exposing list_orders/get_order/ingest_usage_events; None restores Polar."""
    global _adapter_override
    _adapter_override = adapter


__all__ = [
    "PolarAdapter",
    "ProviderOrder",
    "backoff_delay",
    "get_provider_adapter",
    "is_retryable_provider_error",
    "set_provider_adapter",
]
