"""
Billing-specific exceptions.

Every exception carries `is_retryable` so the boundary that catches it (the
webhook view, a Celery task, an AI feature handler) can decide between
"tell the caller to retry" and "give up and surface the error".

Exception Hierarchy:
    BillingError (base for billing domain)
    ├── InvalidSignature - Webhook HMAC mismatch (4xx, no retry benefit)
    ├── MalformedPayload - Webhook body unparseable or missing fields (4xx)
    ├── UnknownProduct - priceRef/productRef absent from the catalog
    ├── ReservationError - Base for reservation protocol failures
    │   ├── ReservationNotFound
    │   ├── ReservationAlreadyResolved
    │   ├── ReservationExpired
    │   └── ReservationInsufficient
    ├── ProviderMismatch - Reconciliation divergence (operator review)
    └── TransientStoreError - Database unavailable (retryable, 5xx)

    ProviderError (inherits ExternalServiceError)
    ├── ProviderRequestError - 4xx from the provider (permanent)
    ├── ProviderRateLimitError - 429 (retryable)
    ├── ProviderUnavailableError - 5xx / connection failure (retryable)
    └── ProviderTimeoutError - request timed out (retryable)

    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    └── ReconciliationLockError - Another reconciliation run holds the lock

Account-level errors (UnknownAccount, InactiveAccount, InsufficientCredits)
live in billing.ledger.exceptions next to the ledger that raises them.

Usage:
    from billing.exceptions import ReservationExpired

    try:
        ReservationService.commit(reservation_id, actual_amount=4)
    except ReservationExpired:
        # Caller must reserve again
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any

    from billing.services.reconciliation_service import ReconciliationReport


class BillingError(BaseApplicationError):
    """Base exception for the billing domain."""

    default_error_code: str = "BILLING_ERROR"


# =============================================================================
# Webhook Errors
# =============================================================================


class InvalidSignature(BillingError):
    """
    Raised when a webhook signature does not match the raw body.

    No state is changed. Retrying the same request cannot succeed.
    """

    default_error_code: str = "INVALID_SIGNATURE"


class MalformedPayload(BillingError):
    """
    Raised when a webhook body is not JSON or lacks required fields.

    Example:
        raise MalformedPayload(
            "order.created event missing data.id",
            details={"event_type": "order.created"},
        )
    """

    default_error_code: str = "MALFORMED_PAYLOAD"


class UnknownProduct(BillingError):
    """
    Raised when a price/product reference has no catalog entry.

    Logged for an operator: the catalog is configuration, so the fix is a
    deploy, after which the provider's redelivery succeeds.
    """

    default_error_code: str = "UNKNOWN_PRODUCT"


# =============================================================================
# Reservation Errors
# =============================================================================


class ReservationError(BillingError):
    """
    Base for reservation protocol failures.

    All of these mean the caller must reserve again before consuming.
    """

    default_error_code: str = "RESERVATION_ERROR"

    def __init__(
        self,
        message: str,
        reservation_id: Any = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.reservation_id = reservation_id
        full_details = {}
        if reservation_id is not None:
            full_details["reservation_id"] = str(reservation_id)
        if details:
            full_details.update(details)
        super().__init__(message, error_code=error_code, details=full_details)


class ReservationNotFound(ReservationError):
    default_error_code: str = "RESERVATION_NOT_FOUND"


class ReservationAlreadyResolved(ReservationError):
    """Raised when the reservation left the active state before this call."""

    default_error_code: str = "RESERVATION_ALREADY_RESOLVED"


class ReservationExpired(ReservationError):
    """Raised when commit arrives after the reservation's TTL."""

    default_error_code: str = "RESERVATION_EXPIRED"


class ReservationInsufficient(ReservationError):
    """
    Raised when the actual cost exceeds the reserved amount.

    The reservation stays active; the caller reserves an additional
    increment and commits the two separately.
    """

    default_error_code: str = "RESERVATION_INSUFFICIENT"


# =============================================================================
# Reconciliation / Infrastructure Errors
# =============================================================================


class ProviderMismatch(BillingError):
    """
    Raised when ledger totals diverge from the provider's records.

    Never auto-corrected. The attached report lists every discrepancy and
    is also persisted as a ReconciliationRun for the review queue.
    """

    default_error_code: str = "PROVIDER_MISMATCH"

    def __init__(self, report: ReconciliationReport):
        self.report = report
        super().__init__(
            f"Ledger diverges from provider: expected {report.expected_total} "
            f"credits, found {report.actual_total}",
            details={
                "run_id": str(report.run_id) if report.run_id else None,
                "window_start": report.window_start.isoformat(),
                "window_end": report.window_end.isoformat(),
                "expected_total": report.expected_total,
                "actual_total": report.actual_total,
                "discrepancy_count": len(report.discrepancies),
            },
        )


class TransientStoreError(BillingError):
    """
    Raised when the database is unreachable or times out mid-operation.

    The transaction was rolled back, so retrying is safe. The webhook
    endpoint maps this to HTTP 500 so the provider redelivers.
    """

    default_error_code: str = "TRANSIENT_STORE_ERROR"
    is_retryable = True


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(ExternalServiceError):
    """Base for payment provider API failures."""

    default_error_code: str = "PROVIDER_ERROR"


class ProviderRequestError(ProviderError):
    default_error_code: str = "PROVIDER_REQUEST_ERROR"


class ProviderRateLimitError(ProviderError):
    default_error_code: str = "PROVIDER_RATE_LIMITED"
    is_retryable = True


class ProviderUnavailableError(ProviderError):
    default_error_code: str = "PROVIDER_UNAVAILABLE"
    is_retryable = True


class ProviderTimeoutError(ProviderError):
    default_error_code: str = "PROVIDER_TIMEOUT"
    is_retryable = True


# =============================================================================
# Concurrency Errors
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired in time.

    Example:
        raise LockAcquisitionError(
            "Could not acquire lock 'billing:reconciliation:run' within 5s",
            details={"key": "lock:billing:reconciliation:run", "timeout": 5},
        )
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
    is_retryable = True


class ReconciliationLockError(LockAcquisitionError):
    """Raised when another reconciliation run is already in progress."""

    default_error_code: str = "RECONCILIATION_IN_PROGRESS"
