"""Unit tests for per-provider circuit breakers."""

from unittest.mock import patch

from letterbox_daemon.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    get_circuit_breaker,
)


def test_opens_after_threshold_of_quota_errors() -> None:
    breaker = CircuitBreaker("openai", failure_threshold=2)

    breaker.record_failure(Exception("insufficient_quota"))
    assert breaker.check_can_proceed() is True

    breaker.record_failure(Exception("Rate limit reached"))
    assert breaker.state == CircuitState.OPEN
    assert breaker.check_can_proceed() is False


def test_ignores_request_errors() -> None:
    """Test errors that don't indicate unavailability are not counted."""
    breaker = CircuitBreaker("openai", failure_threshold=1)

    breaker.record_failure(Exception("invalid JSON: Expecting value"))

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


def test_half_open_after_recovery_timeout_then_closes() -> None:
    breaker = CircuitBreaker("openai", failure_threshold=1, recovery_timeout_seconds=60)

    with patch("letterbox_daemon.circuit_breaker.time.time", return_value=1000.0):
        breaker.record_failure(Exception("429"))
    with patch("letterbox_daemon.circuit_breaker.time.time", return_value=1030.0):
        assert breaker.check_can_proceed() is False
    with patch("letterbox_daemon.circuit_breaker.time.time", return_value=1061.0):
        assert breaker.check_can_proceed() is True
    assert breaker.state == CircuitState.HALF_OPEN

    breaker.record_success()

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


def test_half_open_failure_reopens() -> None:
    breaker = CircuitBreaker("openai", failure_threshold=5)
    breaker.state = CircuitState.HALF_OPEN

    breaker.record_failure(Exception("Request timed out"))

    assert breaker.state == CircuitState.OPEN


def test_breakers_are_shared_per_provider() -> None:
    assert get_circuit_breaker("a") is get_circuit_breaker("a")
    assert get_circuit_breaker("a") is not get_circuit_breaker("b")


def test_status_reports_recovery_time() -> None:
    breaker = CircuitBreaker("openai", failure_threshold=1, recovery_timeout_seconds=600)
    breaker.record_failure(Exception("quota"))

    status = breaker.get_status()

    assert status["provider"] == "openai"
    assert status["state"] == "open"
    assert 0 < status["recovery_in_seconds"] <= 600
