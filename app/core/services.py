"""
Base service layer patterns for business logic encapsulation.

- ServiceResult: result wrapper for expected success/failure outcomes
- BaseService: per-service logger

Services own the business rules; views deal with HTTP, models with data.
Use ServiceResult where a caller is expected to branch on the outcome
(task return values, webhook handlers) and typed exceptions from
core.exceptions for everything the caller cannot reasonably handle.

Usage:
    from core.services import BaseService, ServiceResult

    class GrantService(BaseService):
        @classmethod
        def grant(cls, account_id, credits) -> ServiceResult[LedgerEntry]:
            if credits <= 0:
                return ServiceResult.failure(
                    "Credits must be positive", error_code="INVALID_AMOUNT"
                )
            entry = ledger.append(...)
            cls.get_logger().info("Granted credits", extra={"credits": credits})
            return ServiceResult.success(entry)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling

    Usage:
        result = SubscriptionService.grant_current_cycle(subscription)
        if result:
            entry = result.data
        else:
            logger.warning(result.error, extra={"code": result.error_code})
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
        """
        return cls(success=False, error=error, error_code=error_code)

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Services are stateless: use @staticmethod or @classmethod only.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get a logger named after the concrete service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")
