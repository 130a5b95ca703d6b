"""
Failure isolation for the two things the ledger cannot control: the database
and the valuation source that prices a fund.

``db_circuit_breaker`` guards every repository call; only connection-level
errors count against it, so a rejected redemption never trips it.
``valuation_circuit_breaker`` guards the valuation source and counts any
exception, because a price feed that raises is as useless as one that hangs.
While it is open, NAV work fails with ``InvalidValuationError`` and the stored
NAV is left alone.

Breaker lifecycle::

    CLOSED ──(threshold failures)──▶ OPEN ──(recovery timeout)──▶ HALF_OPEN
      ▲                                ▲                              │
      └─────────(probe succeeds)───────┼──────────────────────────────┤
                                       └───────(probe fails)──────────┘

``retry_with_backoff`` exists for start-up only (creating tables while the
database container boots).  Ledger writes and valuation calls are never
retried: a retried subscription could issue units twice.
"""

import asyncio
import functools
import logging
import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, Tuple, Type

from fundledger.core.config import settings

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: Tuple[Type[Exception], ...] = (ConnectionError, OSError, TimeoutError)


# ────────────────────────────────────────────────────────────────────────────
# Circuit breaker
# ────────────────────────────────────────────────────────────────────────────


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """The dependency behind ``name`` is failing; try again in ``retry_after`` seconds."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is OPEN; retry after {retry_after:.1f}s")


class CircuitBreaker:
    """
    Counts consecutive failures of an async dependency and stops calling it
    once ``failure_threshold`` is reached.

    After ``recovery_timeout`` seconds one call is let through as a probe.
    Only exceptions listed in ``expected_exceptions`` count as failures; any
    other exception propagates and leaves the counters untouched.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self.reset()

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = 0.0

    def _seconds_open(self) -> float:
        return time.monotonic() - self._last_failure_time

    @property
    def state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._seconds_open() >= self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit '%s' half-open, letting a probe through", self.name)
        return self._state

    def _on_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit '%s' closed again after %d failures", self.name, self._failure_count)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count += 1

    def _on_failure(self, exc: BaseException) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        probing = self._state is CircuitState.HALF_OPEN

        if probing or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.error(
                "Circuit '%s' opened after %d failures (%s); failing fast for %.1fs",
                self.name,
                self._failure_count,
                type(exc).__name__,
                self.recovery_timeout,
            )
            return
        logger.warning(
            "Circuit '%s' failure %d of %d: %s",
            self.name,
            self._failure_count,
            self.failure_threshold,
            exc,
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``func(*args, **kwargs)`` unless the circuit is open."""
        if self.state is CircuitState.OPEN:
            remaining = max(self.recovery_timeout - self._seconds_open(), 0)
            raise CircuitBreakerError(self.name, remaining)

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions as exc:
            self._on_failure(exc)
            raise
        self._on_success()
        return result

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "success_count": self._success_count,
            "recovery_timeout_s": self.recovery_timeout,
        }


db_circuit_breaker = CircuitBreaker(
    name="database",
    failure_threshold=settings.CB_FAILURE_THRESHOLD,
    recovery_timeout=settings.CB_RECOVERY_TIMEOUT,
    expected_exceptions=TRANSIENT_ERRORS,
)

valuation_circuit_breaker = CircuitBreaker(
    name="valuation",
    failure_threshold=settings.CB_FAILURE_THRESHOLD,
    recovery_timeout=settings.CB_RECOVERY_TIMEOUT,
)


# ────────────────────────────────────────────────────────────────────────────
# Start-up retry
# ────────────────────────────────────────────────────────────────────────────


def _backoff_delays(retries: int, base: float, cap: float, jitter: bool) -> Iterator[float]:
    delay = base
    for _ in range(retries):
        wait = min(delay, cap)
        if jitter:
            wait += random.uniform(0, wait / 2)
        yield wait
        delay *= 2


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = TRANSIENT_ERRORS,
) -> Callable:
    """
    Retry an async function on transient errors, doubling the wait each time.

    The first call is not counted, so ``max_retries=3`` means up to four
    attempts.  Waits are capped at ``max_delay`` before jitter (up to half the
    wait) is added.  Exceptions outside ``retryable_exceptions`` propagate on
    the first occurrence.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            delays = _backoff_delays(max_retries, base_delay, max_delay, jitter)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    wait: Optional[float] = next(delays, None)
                    if wait is None:
                        logger.error(
                            "%s still failing after %d attempts: %s",
                            func.__qualname__,
                            attempt,
                            exc,
                        )
                        raise
                    logger.warning(
                        "%s failed (attempt %d, %s: %s); retrying in %.2fs",
                        func.__qualname__,
                        attempt,
                        type(exc).__name__,
                        exc,
                        wait,
                    )
                    await asyncio.sleep(wait)

        return wrapper

    return decorator
