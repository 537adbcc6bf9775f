"""
Cache-backed circuit breaker for outbound provider calls.

State lives in the Django cache (Redis in production) so every web and
Celery process sees the same circuit for a given name.

States:
    - CLOSED: calls pass through, consecutive failures are counted
    - OPEN: calls fail fast with CircuitOpenError until recovery_timeout
    - HALF_OPEN: a limited number of trial calls decide whether to close

Usage:
    from core.circuit_breaker import CircuitBreaker

    provider_circuit = CircuitBreaker("polar-api", failure_threshold=5)

    with provider_circuit.call():
        response = client.get("/v1/orders/")

If the cache itself is unreachable the breaker fails open: the provider call
is still attempted and the cache error is logged.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: int = 60
    half_open_max_calls: int = 1
    # Must outlive recovery_timeout or an open circuit silently closes.
    cache_ttl: int = 3600


class CircuitOpenError(ExternalServiceError):
    """
    Raised when a call is attempted through an open circuit.

    Signals that the dependency is considered down, not that this call
    failed. Callers should treat it as retryable.
    """

    default_error_code = "CIRCUIT_OPEN"
    is_retryable = True


class CircuitBreaker:
    """
    Distributed circuit breaker keyed by name.

    Args:
        name: Circuit identifier, e.g. "polar-api"
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds an open circuit waits before probing
        half_open_max_calls: Trial calls allowed while half-open
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1,
    ):
        self.name = name
        self.config = CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            half_open_max_calls=half_open_max_calls,
        )
        prefix = f"circuit:{name}"
        self._state_key = f"{prefix}:state"
        self._failures_key = f"{prefix}:failures"
        self._opened_at_key = f"{prefix}:opened_at"
        self._trials_key = f"{prefix}:trials"

    # =========================================================================
    # Public API
    # =========================================================================

    def is_available(self) -> bool:
        """Return True when a call may go through (and count it as a trial)."""
        try:
            state = self.state
            if state == CircuitState.CLOSED:
                return True

            if state == CircuitState.OPEN:
                opened_at = cache.get(self._opened_at_key)
                if (
                    opened_at is not None
                    and time.time() - opened_at < self.config.recovery_timeout
                ):
                    return False
                self._set_state(CircuitState.HALF_OPEN)
                cache.set(self._trials_key, 0, timeout=self.config.cache_ttl)
                logger.info(
                    "Circuit breaker half-open, probing",
                    extra={"circuit": self.name},
                )

            trials = self._incr(self._trials_key)
            return trials <= self.config.half_open_max_calls
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        try:
            if self.state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.CLOSED)
                logger.info(
                    "Circuit breaker closed after successful trial",
                    extra={"circuit": self.name},
                )
            cache.set(self._failures_key, 0, timeout=self.config.cache_ttl)
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        try:
            if self.state == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(
                    "Circuit breaker reopened after failed trial",
                    extra={"circuit": self.name},
                )
                return

            failures = self._incr(self._failures_key)
            if failures >= self.config.failure_threshold:
                self._open()
                logger.warning(
                    f"Circuit breaker opened after {failures} failures",
                    extra={
                        "circuit": self.name,
                        "failure_count": failures,
                        "threshold": self.config.failure_threshold,
                    },
                )
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Guard a block: fail fast when open, record the block's outcome.

        Raises:
            CircuitOpenError: If the circuit is open
        """
        if not self.is_available():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open",
                details={"circuit": self.name},
            )
        try:
            yield
        except CircuitOpenError:
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        """Force the circuit closed (admin/testing)."""
        cache.delete_many(
            [self._state_key, self._failures_key, self._opened_at_key, self._trials_key]
        )

    def get_status(self) -> dict:
        """Snapshot for health checks and monitoring."""
        try:
            status = {
                "name": self.name,
                "state": self.state.value,
                "failure_count": cache.get(self._failures_key, 0),
                "failure_threshold": self.config.failure_threshold,
            }
            opened_at = cache.get(self._opened_at_key)
            if status["state"] != CircuitState.CLOSED.value and opened_at:
                elapsed = time.time() - opened_at
                status["recovery_in_seconds"] = max(
                    0, int(self.config.recovery_timeout - elapsed)
                )
            return status
        except Exception as e:
            return {"name": self.name, "state": "unknown", "error": str(e)}

    @property
    def state(self) -> CircuitState:
        raw = cache.get(self._state_key, CircuitState.CLOSED.value)
        try:
            return CircuitState(raw)
        except ValueError:
            return CircuitState.CLOSED

    # =========================================================================
    # Cache helpers
    # =========================================================================

    def _set_state(self, state: CircuitState) -> None:
        cache.set(self._state_key, state.value, timeout=self.config.cache_ttl)

    def _open(self) -> None:
        self._set_state(CircuitState.OPEN)
        cache.set(self._opened_at_key, time.time(), timeout=self.config.cache_ttl)

    def _incr(self, key: str) -> int:
        try:
            return cache.incr(key)
        except ValueError:
            cache.set(key, 1, timeout=self.config.cache_ttl)
            return 1

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r})"
