"""
Reliability utilities.

Circuit breaker guarding network-bound collaborators (the routing service).
"""

import time
from typing import Awaitable, Callable, Any


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    After 'failure_threshold' consecutive failures the circuit opens and
    rejects calls for 'reset_timeout' seconds. The first call after that
    window runs half-open: success closes the circuit, failure re-opens it.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = self.CLOSED

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        if self.state == self.OPEN:
            if self._clock() - self.last_failure_time >= self.reset_timeout:
                self.state = self.HALF_OPEN
            else:
                raise CircuitOpenError(f"Circuit is OPEN after {self.failures} failures")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = self._clock()
        if self.state == self.HALF_OPEN or self.failures >= self.failure_threshold:
            self.state = self.OPEN

    def reset_state(self):
        self.failures = 0
        self.state = self.CLOSED
