"""
Base exception classes for application-wide error handling.

Every domain error raised by the billing engine derives from
BaseApplicationError so views, tasks and webhook handlers can turn it into a
consistent, machine-readable payload.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures
    ├── NotFoundError - Resource not found
    ├── ConflictError - State conflicts (duplicates, concurrent modifications)
    └── ExternalServiceError - Third-party service failures

Usage:
    from core.exceptions import NotFoundError

    raise NotFoundError(
        "Credit account not found",
        error_code="ACCOUNT_NOT_FOUND",
        details={"account_ref": "cus_123"},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, amounts, states)
        is_retryable: Whether repeating the same call may succeed
    """

    default_error_code: str = "APPLICATION_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Account has insufficient credits",
                "error_code": "INSUFFICIENT_CREDITS",
                "details": {"required": 6, "available": 4}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for service-layer checks (non-positive amounts, malformed payloads).
    DRF serializer validation stays in DRF.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for single-resource lookups where existence is expected; list
    queries return empty results instead.
    """

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Invalid state transitions (committing a released reservation)
    - Lock contention
    - Balance checks that lost against a concurrent writer

    HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Example:
        try:
            response = client.get("/v1/orders/")
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                "Payment provider timed out",
                error_code="PROVIDER_TIMEOUT",
                details={"service": "polar", "original_error": str(e)},
            )

    Log the original error but don't expose internal details to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
