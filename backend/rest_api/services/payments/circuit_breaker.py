"""
Circuit breakers for the blocking calls to Stripe and WEB-SRM.

States:
    closed     calls pass; consecutive failures are counted
    open       calls fail fast with CircuitBreakerError until the cool-down ends
    half_open  a limited number of trial calls decide whether to close again

Only outages count as failures. Errors the remote service returns on purpose
(a declined refund, a rejected FER) are passed as `ignore=` and leave the
breaker untouched.

Usage:
    with stripe_breaker.call(ignore=(stripe.CardError,)):
        stripe.Refund.create(...)
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterator

from shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    name: str
    failure_threshold: int = 5
    # Trial successes needed to close from half_open
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3


@dataclass
class CircuitBreakerStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0


class CircuitBreakerError(Exception):
    """The circuit is open; the call was not attempted."""

    def __init__(self, breaker_name: str, retry_after: float):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{breaker_name}' is open, retry in {retry_after:.1f}s")


class CircuitBreaker:
    """Thread-safe breaker; request handlers run in the worker thread pool."""

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self._lock = threading.Lock()
        self._stats = CircuitBreakerStats()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_successes = 0
        self._trials_in_flight = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    def _set_state(self, state: CircuitState) -> None:
        """Caller holds the lock."""
        logger.info(
            "Circuit breaker state change",
            breaker=self.config.name,
            old_state=self._state.value,
            new_state=state.value,
            failures=self._failures,
        )
        self._state = state
        self._stats.state_changes += 1
        self._trial_successes = 0
        self._trials_in_flight = 0
        if state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif state == CircuitState.CLOSED:
            self._failures = 0

    def _acquire(self) -> None:
        with self._lock:
            if self._state == CircuitState.OPEN:
                remaining = self.config.timeout_seconds - (time.monotonic() - self._opened_at)
                if remaining > 0:
                    self._stats.rejected_calls += 1
                    raise CircuitBreakerError(self.config.name, remaining)
                self._set_state(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trials_in_flight >= self.config.half_open_max_calls:
                    self._stats.rejected_calls += 1
                    raise CircuitBreakerError(self.config.name, 1.0)
                self._trials_in_flight += 1

    def _on_success(self) -> None:
        with self._lock:
            self._stats.total_calls += 1
            self._stats.successful_calls += 1
            if self._state == CircuitState.HALF_OPEN:
                self._trials_in_flight = max(0, self._trials_in_flight - 1)
                self._trial_successes += 1
                if self._trial_successes >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            else:
                self._failures = 0

    def _on_failure(self, error: BaseException) -> None:
        with self._lock:
            self._stats.total_calls += 1
            self._stats.failed_calls += 1
            self._failures += 1
            logger.warning(
                "Circuit breaker recorded failure",
                breaker=self.config.name,
                error=str(error),
                failures=self._failures,
                threshold=self.config.failure_threshold,
            )
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

    @contextmanager
    def call(self, ignore: tuple[type[BaseException], ...] = ()) -> Iterator[None]:
        """
        Guard one call.

        Raises:
            CircuitBreakerError: the circuit is open.
        """
        self._acquire()
        try:
            yield
        except ignore:
            # The service answered; it is up
            self._on_success()
            raise
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()

    def reset(self) -> None:
        with self._lock:
            self._set_state(CircuitState.CLOSED)


stripe_breaker = CircuitBreaker(
    CircuitBreakerConfig(name="stripe", failure_threshold=5, timeout_seconds=30.0, half_open_max_calls=2)
)

# A closing can always be completed later, so open quickly
websrm_breaker = CircuitBreaker(
    CircuitBreakerConfig(
        name="websrm",
        failure_threshold=3,
        success_threshold=1,
        timeout_seconds=60.0,
        half_open_max_calls=1,
    )
)


def get_all_breaker_stats() -> dict[str, dict]:
    """State and counters of every breaker, for the detailed health check."""
    return {
        breaker.config.name: {"state": breaker.state.value, **asdict(breaker.stats)}
        for breaker in (stripe_breaker, websrm_breaker)
    }
