"""
============================================================================
UPTIME MONITOR - RESILIENCE PRIMITIVES
============================================================================
Retry policy with capped exponential back-off and a three-state circuit
breaker. The notification dispatcher wraps each transport call as

    breaker.execute(lambda: retry.execute(send))

so an exhausted retry sequence counts as one breaker failure and an open
breaker skips the retries entirely.

Circuit States
--------------
CLOSED     calls pass through; consecutive counted failures accumulate,
           a success resets the counter
OPEN       reached after ``failure_threshold`` failures; calls are
           short-circuited until ``reset_timeout`` seconds pass
HALF_OPEN  a single trial call is admitted; success closes the
           breaker, failure reopens it

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import inspect
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from config.constants import CircuitState
from config.settings import ResilienceSettings
from exceptions import (
    CircuitOpenError,
    RetryExhaustedError,
    TransportConfigurationError,
)
from utils.logger import get_logger


logger = get_logger("Resilience")


# ============================================================================
# RETRY POLICY
# ============================================================================

class RetryPolicy:
    """
    Retries an async call with exponential back-off.

    ``max_retries`` extra attempts are made after the first, so the
    call runs at most ``max_retries + 1`` times. The delay before retry
    *n* (0-based) is ``min(initial_delay * 2**n, max_delay)`` with
    ±``jitter`` proportional noise.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: float = 0.1,
        retry_on: Optional[Callable[[BaseException], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.max_retries = max(0, max_retries)
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retry_on = retry_on
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, settings: ResilienceSettings, **kwargs: Any) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            **kwargs
        )

    def compute_delay(self, attempt: int) -> float:
        """Back-off before retry *attempt* (0-based), in seconds."""
        base = min(self.initial_delay * (2 ** attempt), self.max_delay)
        noise = base * self.jitter * (2 * self._rng() - 1)
        return max(0.0, base + noise)

    def _should_retry(self, error: BaseException) -> bool:
        if isinstance(error, TransportConfigurationError):
            return False
        if self.retry_on is not None:
            return self.retry_on(error)
        return True

    async def execute(
        self,
        fn: Callable[[], Awaitable[Any]],
        context: str = "Operation",
    ) -> Any:
        """
        Run *fn* until it succeeds or attempts run out.

        Raises:
            RetryExhaustedError: after ``max_retries + 1`` failed calls,
                wrapping the last error
            Exception: a non-retryable error, unchanged
        """
        last_error: Optional[BaseException] = None
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                return await fn()
            except Exception as e:
                if not self._should_retry(e):
                    raise
                last_error = e

                if attempt < self.max_retries:
                    delay = self.compute_delay(attempt)
                    logger.debug(
                        f"{context} attempt {attempt + 1}/{attempts} failed: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await self._sleep(delay)

        logger.warning(f"{context} failed after {attempts} attempts: {last_error}")
        raise RetryExhaustedError(context, attempts, last_error) from last_error


# ============================================================================
# CIRCUIT BREAKER
# ============================================================================

class CircuitBreaker:
    """
    Circuit breaker for preventing repeated calls to a failing dependency.

    ``error_filter`` decides which exceptions count as failures; rejected
    exceptions are re-raised without touching the counter.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        error_filter: Optional[Callable[[BaseException], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.reset_timeout = reset_timeout
        self.error_filter = error_filter
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @classmethod
    def from_settings(cls, name: str, settings: ResilienceSettings, **kwargs: Any) -> "CircuitBreaker":
        return cls(
            name=name,
            failure_threshold=settings.failure_threshold,
            reset_timeout=settings.reset_timeout,
            **kwargs
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _remaining_open_time(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self._clock() - self._opened_at))

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning(
            f"Circuit breaker '{self.name}' opened after {self._failure_count} failures "
            f"(reset in {self.reset_timeout}s)"
        )

    def _close(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit breaker '{self.name}' closed")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False

    def reset(self) -> None:
        """Force the breaker back to closed."""
        self._close()

    async def _short_circuit(self, fallback: Optional[Callable[[], Any]]) -> Any:
        if fallback is None:
            raise CircuitOpenError(retry_after=self._remaining_open_time(), transport=self.name)
        result = fallback()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            logger.warning(f"Circuit breaker '{self.name}' trial call failed")
            self._open()
        elif self._failure_count >= self.failure_threshold:
            self._open()

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        else:
            self._failure_count = 0

    async def execute(
        self,
        fn: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """
        Call *fn* through the breaker.

        Raises:
            CircuitOpenError: when short-circuited and no fallback is given
            Exception: whatever *fn* raised
        """
        if self._state == CircuitState.OPEN:
            if self._remaining_open_time() > 0:
                return await self._short_circuit(fallback)
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info(f"Circuit breaker '{self.name}' half-open, admitting trial call")

        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                return await self._short_circuit(fallback)
            self._trial_in_flight = True

        try:
            result = await fn()
        except Exception as e:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
            if self.error_filter is not None and not self.error_filter(e):
                raise
            self._record_failure()
            raise

        self._record_success()
        return result

    def snapshot(self) -> Dict[str, Any]:
        """State summary for health reporting."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure_time": self._last_failure_time,
            "retry_after": round(self._remaining_open_time(), 3) if self._state == CircuitState.OPEN else None,
        }
