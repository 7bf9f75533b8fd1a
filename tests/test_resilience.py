"""
Tests for the retry policy and the circuit breaker.

Sleeps and clocks are injected, so no test waits on real time.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from config.constants import CircuitState
from exceptions import (
    CircuitOpenError,
    RetryExhaustedError,
    TransportConfigurationError,
    TransportError,
)
from monitoring.resilience import CircuitBreaker, RetryPolicy


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================
# RETRY POLICY
# ============================================================

class TestRetryPolicy:

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    async def test_success_needs_one_call(self, sleep):
        fn = AsyncMock(return_value="ok")
        policy = RetryPolicy(max_retries=3, sleep=sleep)

        assert await policy.execute(fn) == "ok"
        assert fn.await_count == 1
        sleep.assert_not_awaited()

    async def test_recovers_after_failures(self, sleep):
        fn = AsyncMock(side_effect=[TransportError("a"), TransportError("b"), "ok"])
        policy = RetryPolicy(max_retries=3, sleep=sleep)

        assert await policy.execute(fn) == "ok"
        assert fn.await_count == 3
        assert sleep.await_count == 2

    async def test_exhaustion_runs_max_retries_plus_one(self, sleep):
        fn = AsyncMock(side_effect=TransportError("webhook down"))
        policy = RetryPolicy(max_retries=2, sleep=sleep)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.execute(fn, context="webhook")

        assert fn.await_count == 3
        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "webhook down"

    async def test_configuration_errors_are_not_retried(self, sleep):
        fn = AsyncMock(side_effect=TransportConfigurationError("no url"))
        policy = RetryPolicy(max_retries=5, sleep=sleep)

        with pytest.raises(TransportConfigurationError):
            await policy.execute(fn)

        assert fn.await_count == 1

    async def test_retry_on_predicate(self, sleep):
        fn = AsyncMock(side_effect=ValueError("bad payload"))
        policy = RetryPolicy(max_retries=5, retry_on=lambda e: not isinstance(e, ValueError), sleep=sleep)

        with pytest.raises(ValueError):
            await policy.execute(fn)

        assert fn.await_count == 1

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(initial_delay=1.0, max_delay=5.0, jitter=0.0)
        assert [policy.compute_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_in_bounds(self):
        low = RetryPolicy(initial_delay=2.0, max_delay=10.0, jitter=0.1, rng=lambda: 0.0)
        high = RetryPolicy(initial_delay=2.0, max_delay=10.0, jitter=0.1, rng=lambda: 1.0)
        assert low.compute_delay(0) == pytest.approx(1.8)
        assert high.compute_delay(0) == pytest.approx(2.2)


# ============================================================
# CIRCUIT BREAKER
# ============================================================

class TestCircuitBreaker:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker("webhook", failure_threshold=3, reset_timeout=30.0, clock=clock)

    async def _fail(self, breaker, times=1):
        for _ in range(times):
            with pytest.raises(TransportError):
                await breaker.execute(AsyncMock(side_effect=TransportError("down")))

    async def test_opens_after_threshold(self, breaker):
        await self._fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

        await self._fail(breaker)
        assert breaker.state == CircuitState.OPEN

    async def test_open_short_circuits(self, breaker):
        await self._fail(breaker, 3)
        fn = AsyncMock()

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(fn)

        fn.assert_not_awaited()
        assert exc_info.value.retry_after == pytest.approx(30.0)

    async def test_fallback_used_while_open(self, breaker):
        await self._fail(breaker, 3)

        assert await breaker.execute(AsyncMock(), fallback=lambda: "cached") == "cached"

    async def test_success_resets_counter(self, breaker):
        await self._fail(breaker, 2)
        await breaker.execute(AsyncMock(return_value="ok"))
        await self._fail(breaker, 2)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 2

    async def test_half_open_trial_success_closes(self, breaker, clock):
        await self._fail(breaker, 3)
        clock.advance(31)

        assert await breaker.execute(AsyncMock(return_value="ok")) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    async def test_half_open_trial_failure_reopens(self, breaker, clock):
        await self._fail(breaker, 3)
        clock.advance(31)

        await self._fail(breaker)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock())

    async def test_half_open_admits_single_trial(self, breaker, clock):
        await self._fail(breaker, 3)
        clock.advance(31)
        release = asyncio.Event()

        async def slow_trial():
            await release.wait()
            return "ok"

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock())

        release.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED

    async def test_filtered_errors_do_not_count(self, clock):
        breaker = CircuitBreaker(
            "email",
            failure_threshold=1,
            reset_timeout=30.0,
            error_filter=lambda e: not isinstance(e, TransportConfigurationError),
            clock=clock,
        )

        with pytest.raises(TransportConfigurationError):
            await breaker.execute(AsyncMock(side_effect=TransportConfigurationError("no host")))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    async def test_snapshot(self, breaker):
        await self._fail(breaker, 3)
        snapshot = breaker.snapshot()

        assert snapshot["name"] == "webhook"
        assert snapshot["state"] == "open"
        assert snapshot["failure_count"] == 3
        assert snapshot["retry_after"] == pytest.approx(30.0)

    async def test_reset(self, breaker):
        await self._fail(breaker, 3)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
