"""Tests for resilience patterns: circuit breaker, request coalescing and retry."""

from __future__ import annotations

import asyncio

import pytest

from app.services.data_providers.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    RequestCoalescer,
    RetryExhaustedError,
    retry_async,
)


# =============================================================================
# Circuit Breaker Tests
# =============================================================================


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    @pytest.mark.asyncio
    async def test_starts_closed(self):
        breaker = CircuitBreaker(name="test")
        assert breaker.state == CircuitState.CLOSED
        assert not breaker.is_open

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3, name="test")

        async def failing():
            raise ValueError("boom")

        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.call(failing)

        assert breaker.state == CircuitState.OPEN

        async def succeeding():
            return "ok"

        with pytest.raises(CircuitOpenError):
            await breaker.call(succeeding)

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker(failure_threshold=2, name="test")

        async def failing():
            raise ValueError("boom")

        async def succeeding():
            return "ok"

        with pytest.raises(ValueError):
            await breaker.call(failing)
        assert await breaker.call(succeeding) == "ok"
        with pytest.raises(ValueError):
            await breaker.call(failing)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.01, name="test")
        breaker.record_failure(ValueError("boom"))
        assert breaker.state == CircuitState.OPEN

        await asyncio.sleep(0.02)
        assert breaker.state == CircuitState.HALF_OPEN

        async def succeeding():
            return "recovered"

        assert await breaker.call(succeeding) == "recovered"
        assert breaker.state == CircuitState.CLOSED

    def test_excluded_exceptions_do_not_count(self):
        breaker = CircuitBreaker(failure_threshold=1, name="test", excluded_exceptions=(KeyError,))
        breaker.record_failure(KeyError("missing"))
        assert breaker.state == CircuitState.CLOSED

    def test_guard_raises_when_open(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60, name="test")
        breaker.record_failure()
        with pytest.raises(CircuitOpenError):
            breaker.guard()

    def test_reset_and_stats(self):
        breaker = CircuitBreaker(failure_threshold=1, name="stats")
        breaker.record_failure()
        assert breaker.get_stats()["state"] == "open"

        breaker.reset()
        stats = breaker.get_stats()
        assert stats["state"] == "closed"
        assert stats["failure_count"] == 0


# =============================================================================
# Request Coalescer Tests
# =============================================================================


async def _settle_tasks() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


class TestRequestCoalescer:
    """Tests for RequestCoalescer."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_operation(self):
        coalescer = RequestCoalescer("test")
        gate = asyncio.Event()
        calls = 0

        async def factory():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "value"

        first = asyncio.create_task(coalescer.execute("k", factory))
        second = asyncio.create_task(coalescer.execute("k", factory))
        await _settle_tasks()

        assert coalescer.is_pending("k")
        assert coalescer.get_pending_count() == 1

        gate.set()
        assert await first == "value"
        assert await second == "value"
        assert calls == 1
        assert not coalescer.is_pending("k")

    @pytest.mark.asyncio
    async def test_shared_exception(self):
        coalescer = RequestCoalescer("test")
        gate = asyncio.Event()

        async def factory():
            await gate.wait()
            raise ValueError("upstream failed")

        first = asyncio.create_task(coalescer.execute("k", factory))
        second = asyncio.create_task(coalescer.execute("k", factory))
        await _settle_tasks()
        gate.set()

        with pytest.raises(ValueError, match="upstream failed"):
            await first
        with pytest.raises(ValueError, match="upstream failed"):
            await second
        assert not coalescer.is_pending("k")

    @pytest.mark.asyncio
    async def test_settled_key_starts_fresh_operation(self):
        coalescer = RequestCoalescer("test")
        calls = 0

        async def factory():
            nonlocal calls
            calls += 1
            return calls

        assert await coalescer.execute("k", factory) == 1
        assert await coalescer.execute("k", factory) == 2

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        coalescer = RequestCoalescer("test")

        async def make_a():
            await asyncio.sleep(0)
            return "A"

        async def make_b():
            await asyncio.sleep(0)
            return "B"

        results = await asyncio.gather(
            coalescer.execute("a", make_a),
            coalescer.execute("b", make_b),
        )
        assert results == ["A", "B"]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_operation(self):
        coalescer = RequestCoalescer("test")
        gate = asyncio.Event()

        async def factory():
            await gate.wait()
            return "done"

        waiter = asyncio.create_task(coalescer.execute("k", factory))
        await _settle_tasks()
        waiter.cancel()
        await _settle_tasks()

        other = asyncio.create_task(coalescer.execute("k", factory))
        await _settle_tasks()
        gate.set()
        assert await other == "done"


# =============================================================================
# Retry Tests
# =============================================================================


class TestRetryAsync:
    """Tests for retry_async()."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise ConnectionError("reset")
            return "ok"

        result = await retry_async(flaky, max_attempts=3, base_delay=0.001, jitter=0)
        assert result == "ok"
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises(self):
        async def always_fails():
            raise TimeoutError("slow")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_async(always_fails, max_attempts=2, base_delay=0.001, jitter=0)

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, TimeoutError)

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates(self):
        attempts = 0

        async def bad_input():
            nonlocal attempts
            attempts += 1
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await retry_async(bad_input, max_attempts=3, base_delay=0.001)
        assert attempts == 1
