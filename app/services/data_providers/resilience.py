"""
Resilience patterns for external API calls.

This module provides:
1. Circuit Breaker - Fail fast after consecutive provider failures
2. Request Coalescing - One in-flight operation per key
3. Retry - Exponential backoff with jitter for transient errors

Usage:
    from app.services.data_providers.resilience import (
        CircuitBreaker,
        RequestCoalescer,
        retry_async,
    )

    breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30.0, name="finnhub")
    quote = await breaker.call(lambda: client.get("/quote", params={"symbol": "AAPL"}))

    coalescer = RequestCoalescer()
    snapshot = await coalescer.execute("snapshot:AAPL", lambda: build_snapshot("AAPL"))
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from app.core.logging import get_logger

logger = get_logger("resilience")

T = TypeVar("T")


# =============================================================================
# Exceptions
# =============================================================================


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open and blocking calls."""

    def __init__(self, name: str, message: str = "Circuit breaker is open"):
        self.name = name
        self.message = message
        super().__init__(f"{name}: {message}")


class RetryExhaustedError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        message = f"All {attempts} retry attempts exhausted"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast, blocking calls
    HALF_OPEN = "half_open"  # Testing if provider recovered


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for one provider.

    States:
    - CLOSED: Normal operation, counting consecutive failures
    - OPEN: After threshold failures, block all calls
    - HALF_OPEN: After recovery timeout, allow a test request

    Args:
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to wait before testing (half-open)
        name: Identifier for logging
        excluded_exceptions: Exception types that do not count as failures
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    name: str = "circuit"
    excluded_exceptions: tuple[type, ...] = ()

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        """Current circuit state (may transition from OPEN to HALF_OPEN)."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def guard(self) -> None:
        """Raise CircuitOpenError if the circuit is open."""
        state = self.state
        if state == CircuitState.OPEN:
            remaining = self.recovery_timeout - (time.monotonic() - (self._last_failure_time or 0))
            raise CircuitOpenError(
                self.name,
                f"Circuit open after {self._failure_count} failures, retry in {remaining:.1f}s",
            )
        if state == CircuitState.HALF_OPEN:
            logger.info(f"[{self.name}] Circuit half-open, allowing test request")

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"[{self.name}] Circuit closed after successful recovery")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None

    def record_failure(self, error: Exception | None = None) -> None:
        if error is not None and isinstance(error, self.excluded_exceptions):
            return

        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(f"[{self.name}] Circuit OPEN after {self._failure_count} failures")
            self._state = CircuitState.OPEN
        else:
            logger.debug(f"[{self.name}] Failure {self._failure_count}/{self.failure_threshold}")

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func`` under the breaker."""
        self.guard()
        try:
            result = await func()
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


# =============================================================================
# Request Coalescing
# =============================================================================


class RequestCoalescer:
    """
    Coalesces concurrent requests for the same key.

    The first caller for a key starts the operation as a task; callers that
    arrive while it is in flight await the same task and observe the same
    result or the same exception. The entry is removed as the operation
    settles, so a later, non-overlapping call starts a fresh operation.

    The registry is an explicit object: construct one per process (or per
    test) and hand it to the components that need it.
    """

    def __init__(self, name: str = "coalescer"):
        self.name = name
        self._pending: dict[str, asyncio.Task[Any]] = {}

    async def execute(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory()`` once per in-flight ``key`` and share its outcome."""
        task = self._pending.get(key)
        if task is not None:
            logger.debug(f"[{self.name}] Joining in-flight request {key}")
            return await asyncio.shield(task)

        async def _run() -> T:
            try:
                return await factory()
            finally:
                if self._pending.get(key) is task:
                    del self._pending[key]

        task = asyncio.ensure_future(_run())
        task.add_done_callback(_consume_exception)
        self._pending[key] = task
        return await asyncio.shield(task)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def get_pending_count(self) -> int:
        """Return number of in-flight coalesced requests."""
        return len(self._pending)


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # Mark the exception retrieved when every waiter has gone away
    if not task.cancelled():
        task.exception()


# =============================================================================
# Retry with Exponential Backoff
# =============================================================================

DEFAULT_RETRY_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: float = 0.5,
    retry_on: tuple[type[Exception], ...] = DEFAULT_RETRY_EXCEPTIONS,
) -> T:
    """
    Retry an async function with exponential backoff.

    Raises:
        RetryExhaustedError: If all attempts fail with a retryable error
    """
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except retry_on as e:
            last_error = e

            if attempt >= max_attempts:
                raise RetryExhaustedError(max_attempts, last_error) from e

            delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
            if jitter > 0:
                delay *= 1 + (random.random() - 0.5) * 2 * jitter

            logger.debug(f"Retry {attempt}/{max_attempts} after {delay:.2f}s: {e}")
            await asyncio.sleep(delay)

    raise RetryExhaustedError(max_attempts, last_error)
