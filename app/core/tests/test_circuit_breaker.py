"""
Tests for the CircuitBreaker class.

These tests verify the cache-backed circuit breaker:
- Failure counting and threshold detection
- Recovery timeout and half-open probing
- Context manager usage
- State shared across instances through the cache
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from django.core.cache import cache

from core.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState


@pytest.fixture
def circuit():
    """Create a circuit breaker with test-friendly settings."""
    return CircuitBreaker(
        name="test-service",
        failure_threshold=3,
        recovery_timeout=5,
        half_open_max_calls=1,
    )


def trip(circuit: CircuitBreaker) -> float:
    """Open the circuit and return the time it opened."""
    for _ in range(circuit.config.failure_threshold):
        circuit.record_failure()
    return cache.get(circuit._opened_at_key)


class TestCircuitBreakerFailureTracking:
    def test_starts_closed(self, circuit: CircuitBreaker):
        status = circuit.get_status()
        assert status["state"] == "closed"
        assert status["failure_count"] == 0
        assert circuit.is_available() is True

    def test_failures_below_threshold_keep_circuit_closed(self, circuit: CircuitBreaker):
        circuit.record_failure()
        circuit.record_failure()

        assert circuit.is_available() is True
        assert circuit.get_status()["failure_count"] == 2

    def test_reaching_threshold_opens_circuit(self, circuit: CircuitBreaker):
        trip(circuit)

        assert circuit.state == CircuitState.OPEN
        assert circuit.is_available() is False

    def test_success_resets_failure_count(self, circuit: CircuitBreaker):
        circuit.record_failure()
        circuit.record_failure()

        circuit.record_success()
        circuit.record_failure()

        assert circuit.state == CircuitState.CLOSED
        assert circuit.get_status()["failure_count"] == 1


class TestCircuitBreakerRecovery:
    def test_half_open_after_recovery_timeout(self, circuit: CircuitBreaker):
        opened_at = trip(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            assert circuit.is_available() is True
            assert circuit.state == CircuitState.HALF_OPEN

    def test_half_open_limits_trial_calls(self, circuit: CircuitBreaker):
        opened_at = trip(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            assert circuit.is_available() is True
            assert circuit.is_available() is False

    def test_successful_trial_closes_circuit(self, circuit: CircuitBreaker):
        opened_at = trip(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            circuit.is_available()
            circuit.record_success()

        assert circuit.state == CircuitState.CLOSED
        assert circuit.is_available() is True

    def test_failed_trial_reopens_circuit(self, circuit: CircuitBreaker):
        opened_at = trip(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            circuit.is_available()
            circuit.record_failure()
            assert circuit.state == CircuitState.OPEN
            assert circuit.is_available() is False


class TestCircuitBreakerContextManager:
    def test_records_success(self, circuit: CircuitBreaker):
        circuit.record_failure()

        with circuit.call():
            pass

        assert circuit.get_status()["failure_count"] == 0

    def test_records_failure_and_reraises(self, circuit: CircuitBreaker):
        with pytest.raises(ValueError):
            with circuit.call():
                raise ValueError("Simulated error")

        assert circuit.get_status()["failure_count"] == 1

    def test_open_circuit_fails_fast(self, circuit: CircuitBreaker):
        trip(circuit)

        with pytest.raises(CircuitOpenError) as exc_info:
            with circuit.call():
                pytest.fail("Block must not run while the circuit is open")

        assert exc_info.value.is_retryable
        assert exc_info.value.details == {"circuit": "test-service"}


class TestCircuitBreakerSharedState:
    def test_state_shared_across_instances(self):
        first = CircuitBreaker(name="shared-service", failure_threshold=3)
        second = CircuitBreaker(name="shared-service", failure_threshold=3)

        trip(first)

        assert second.is_available() is False

    def test_different_circuits_are_independent(self):
        circuit_a = CircuitBreaker(name="service-a", failure_threshold=3)
        circuit_b = CircuitBreaker(name="service-b", failure_threshold=3)

        trip(circuit_a)

        assert circuit_b.is_available() is True

    def test_reset_closes_open_circuit(self, circuit: CircuitBreaker):
        trip(circuit)

        circuit.reset()

        assert circuit.get_status() == {
            "name": "test-service",
            "state": "closed",
            "failure_count": 0,
            "failure_threshold": 3,
        }


class TestCircuitBreakerCacheFailure:
    def test_is_available_fails_open(self, circuit: CircuitBreaker):
        with patch.object(cache, "get", side_effect=Exception("Cache error")):
            assert circuit.is_available() is True

    def test_recording_does_not_raise(self, circuit: CircuitBreaker):
        with patch.object(cache, "get", side_effect=Exception("Cache error")):
            circuit.record_success()
            circuit.record_failure()

    def test_status_reports_unknown_state(self, circuit: CircuitBreaker):
        with patch.object(cache, "get", side_effect=Exception("Cache error")):
            assert circuit.get_status()["state"] == "unknown"


class TestCircuitBreakerStatus:
    def test_open_status_includes_recovery_time(self, circuit: CircuitBreaker):
        trip(circuit)

        status = circuit.get_status()

        assert status["state"] == "open"
        assert 0 <= status["recovery_in_seconds"] <= 5

    def test_repr_includes_name(self, circuit: CircuitBreaker):
        assert "test-service" in repr(circuit)
