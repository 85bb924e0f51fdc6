"""
Storefront Circuit Breaker: Resilience for Store Calls

Protects against:
- Transient store failures (retry with exponential backoff)
- Cascading failures (circuit breaker pattern)
- Piling up requests on a store that is down (fail fast while open)
"""
from __future__ import annotations
from typing import Callable, Optional, Any
from enum import Enum
import asyncio
import inspect
import time


class CircuitState(str, Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing reject calls
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitOpenError(RuntimeError):
    """Raised instead of calling through while the circuit is open."""


class CircuitBreaker:
    """
    Circuit breaker with exponential backoff.

    Exceptions listed in ``excluded`` are business outcomes (e.g. a missing
    row), not backend failures: they propagate immediately and never trip
    the circuit.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        max_retries: int = 0,
        backoff_base: float = 0.1,
        backoff_max: float = 2.0,
        excluded: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.excluded = excluded
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._last_failure is not None and (
                self._clock() - self._last_failure
            ) > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure = None

    async def call(
        self,
        func: Callable,
        *args,
        retries: Optional[int] = None,
        **kwargs,
    ) -> Any:
        """Execute func with circuit breaker protection.

        ``retries`` overrides ``max_retries`` for one call; pass 0 for
        writes that must not be replayed.
        """
        if self.state == CircuitState.OPEN:
            raise CircuitOpenError(
                f"Circuit breaker OPEN. Retry after {self.recovery_timeout}s"
            )

        attempts = self.max_retries if retries is None else retries
        last_error: Optional[BaseException] = None
        for attempt in range(attempts + 1):
            try:
                if inspect.iscoroutinefunction(func):
                    result = await func(*args, **kwargs)
                else:
                    result = func(*args, **kwargs)
            except self.excluded:
                raise
            except Exception as e:
                last_error = e
                if attempt < attempts:
                    backoff = min(
                        self.backoff_base * (2 ** attempt),
                        self.backoff_max,
                    )
                    await asyncio.sleep(backoff)
                continue

            # Success reset circuit
            self._failure_count = 0
            self._state = CircuitState.CLOSED
            return result

        # All retries failed
        self._failure_count += 1
        self._last_failure = self._clock()

        if (
            self._state == CircuitState.HALF_OPEN
            or self._failure_count >= self.failure_threshold
        ):
            self._state = CircuitState.OPEN

        raise last_error
