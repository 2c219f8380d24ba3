"""Per-provider circuit breakers so a provider that keeps failing is skipped."""

import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Dict

from .observability import log as obs_log

logger = logging.getLogger(__name__)

TRIPPING_PATTERNS = (
    "quota",
    "insufficient_quota",
    "billing",
    "payment_required",
    "rate limit",
    "rate_limit",
    "ratelimit",
    "429",
    "too many requests",
    "timed out",
    "timeout",
    "connection refused",
)


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Skipping provider
    HALF_OPEN = "half_open"  # One trial call allowed


class CircuitBreaker:
    """Circuit breaker for one LLM provider.

    Opens after repeated quota/availability errors; after the recovery
    timeout a single trial call decides whether it closes again.
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 3,
        recovery_timeout_seconds: int = 600,
    ):
        self.provider = provider
        self.state = CircuitState.CLOSED
        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds

        self.failure_count = 0
        self.opened_at: float | None = None
        self._lock = threading.Lock()

    @staticmethod
    def is_tripping_error(error: Exception) -> bool:
        """True for errors that say the provider is unavailable, not the request bad."""
        error_str = str(error).lower()
        return any(pattern in error_str for pattern in TRIPPING_PATTERNS)

    def check_can_proceed(self) -> bool:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return True

            elapsed = time.time() - (self.opened_at or 0)
            if elapsed < self.recovery_timeout_seconds:
                return False

            self.state = CircuitState.HALF_OPEN
        obs_log(
            "circuit_breaker.state",
            provider=self.provider,
            state="half_open",
            elapsed_seconds=int(elapsed),
        )
        logger.info(f"Circuit breaker for {self.provider} HALF_OPEN: trying again")
        return True

    def record_failure(self, error: Exception) -> None:
        if not self.is_tripping_error(error):
            return

        with self._lock:
            self.failure_count += 1
            if self.state == CircuitState.HALF_OPEN:
                reason = "half_open_failure"
            elif self.failure_count >= self.failure_threshold:
                reason = "threshold_exceeded"
            else:
                return
            self.state = CircuitState.OPEN
            self.opened_at = time.time()
            failures = self.failure_count

        obs_log(
            "circuit_breaker.state",
            provider=self.provider,
            state="open",
            reason=reason,
            failure_count=failures,
        )
        logger.warning(
            f"Circuit breaker for {self.provider} OPEN after {failures} failures ({reason})"
        )

    def record_success(self) -> None:
        with self._lock:
            recovered = self.state == CircuitState.HALF_OPEN
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None

        if recovered:
            obs_log(
                "circuit_breaker.state",
                provider=self.provider,
                state="closed",
                reason="recovery_success",
            )
            logger.info(f"Circuit breaker for {self.provider} CLOSED: recovered")

    def get_status(self) -> dict:
        status = {
            "provider": self.provider,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
        }
        if self.opened_at is not None:
            remaining = max(
                0, self.recovery_timeout_seconds - (time.time() - self.opened_at)
            )
            status["opened_at"] = datetime.fromtimestamp(self.opened_at).isoformat()
            status["recovery_in_seconds"] = int(remaining)
        return status


_breakers: Dict[str, CircuitBreaker] = {}
_breakers_lock = threading.Lock()


def get_circuit_breaker(provider: str) -> CircuitBreaker:
    """Shared breaker for a provider name, created on first use."""
    with _breakers_lock:
        breaker = _breakers.get(provider)
        if breaker is None:
            breaker = CircuitBreaker(provider)
            _breakers[provider] = breaker
        return breaker


def reset_circuit_breakers() -> None:
    """Forget all breakers (for testing)."""
    with _breakers_lock:
        _breakers.clear()
