"""Circuit breaker guarding the ingestion path.

State machine::

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(reset_timeout elapsed, next call)--> HALF_OPEN
    HALF_OPEN --(half_open_successes consecutive successes)--> CLOSED
    HALF_OPEN --(any failure)--> OPEN

While OPEN every call is rejected with :class:`CircuitOpenError` without
invoking the guarded function.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any, TypeVar

from uavlink.exceptions import CircuitOpenError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Synchronous three-state circuit breaker.

    Parameters
    ----------
    name : str
        Label used in logs, stats and :class:`CircuitOpenError`.
    failure_threshold : int
        Consecutive failures in CLOSED that open the breaker.
    reset_timeout : float
        Seconds OPEN rejects calls before a half-open trial.
    half_open_successes : int
        Consecutive half-open successes needed to close.
    clock : callable
        Monotonic clock; injectable for tests.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        reset_timeout: float = 10.0,
        half_open_successes: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._half_open_successes = half_open_successes
        self._clock = clock
        self._lock = threading.Lock()

        self._state = BreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None

        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejected = 0

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    def _transition(self, new_state: BreakerState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        if new_state == BreakerState.OPEN:
            self._opened_at = self._clock()
            self._success_count = 0
            _logger.warning("Circuit %s opened after %d failures", self.name, self._failure_count)
        elif new_state == BreakerState.HALF_OPEN:
            self._success_count = 0
            _logger.info("Circuit %s half-open, admitting trial calls", self.name)
        else:
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None
            _logger.info("Circuit %s closed", self.name)

    def _admit(self) -> None:
        """Count the call and raise if it must be rejected. Caller holds the lock."""
        self._total_calls += 1
        if self._state != BreakerState.OPEN:
            return
        elapsed = self._clock() - (self._opened_at or 0.0)
        if elapsed >= self._reset_timeout:
            self._transition(BreakerState.HALF_OPEN)
            return
        self._total_rejected += 1
        retry_after = max(0.0, self._reset_timeout - elapsed)
        raise CircuitOpenError(
            f"Circuit {self.name} is open",
            name=self.name,
            retry_after=retry_after,
        )

    def _on_success(self) -> None:
        with self._lock:
            self._total_successes += 1
            if self._state == BreakerState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._half_open_successes:
                    self._transition(BreakerState.CLOSED)
            else:
                self._failure_count = 0

    def _on_failure(self) -> None:
        with self._lock:
            self._total_failures += 1
            self._failure_count += 1
            if self._state == BreakerState.HALF_OPEN:
                self._transition(BreakerState.OPEN)
            elif self._state == BreakerState.CLOSED and self._failure_count >= self._failure_threshold:
                self._transition(BreakerState.OPEN)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke *fn* through the breaker.

        Any exception raised by *fn* counts as a failure and is re-raised.

        Raises
        ------
        CircuitOpenError
            If the breaker is OPEN and the reset timeout has not elapsed.
        """
        with self._lock:
            self._admit()
        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Force the breaker CLOSED and clear the consecutive counters."""
        with self._lock:
            self._transition(BreakerState.CLOSED)
            self._failure_count = 0
            self._success_count = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            completed = self._total_successes + self._total_failures
            success_rate = (self._total_successes / completed) if completed else 1.0
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "total_calls": self._total_calls,
                "total_failures": self._total_failures,
                "total_successes": self._total_successes,
                "total_rejected": self._total_rejected,
                "success_rate": round(success_rate, 4),
            }
