"""
Adaptive throughput control for external calls.

Bounds how many collaborator calls run at once, keeps a minimum spacing
between call starts and backs off after failures.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog


logger = structlog.get_logger(__name__)

SUCCESSES_BEFORE_INCREASE = 2


class AdaptiveThrottle:
    """
    Concurrency limiter whose limit follows recent outcomes.

    Two consecutive fully successful backlog entries raise the limit by one
    (up to ``max_concurrency``). Any failure halves it (down to
    ``min_concurrency``) and delays the next call start by
    ``min(base_delay * 2**(failures - 1), max_delay)``.
    """

    def __init__(
        self,
        initial_concurrency: int = 2,
        min_concurrency: int = 1,
        max_concurrency: int = 4,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        call_spacing: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_concurrency < 1 or max_concurrency < min_concurrency:
            raise ValueError("Concurrency bounds must satisfy 1 <= min <= max")

        self.logger = logger.bind(service="adaptive_throttle")

        self.min_concurrency = min_concurrency
        self.max_concurrency = max_concurrency
        self.concurrency = max(min_concurrency, min(initial_concurrency, max_concurrency))
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.call_spacing = call_spacing

        self.consecutive_successes = 0
        self.consecutive_failures = 0
        self.backoff_delay = 0.0

        self._sleep = sleep
        self._clock = clock
        self._active = 0
        self._next_call_at = 0.0
        self._condition = asyncio.Condition()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "AdaptiveThrottle":
        return cls(
            initial_concurrency=settings.initial_concurrency,
            min_concurrency=settings.min_concurrency,
            max_concurrency=settings.max_concurrency,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            call_spacing=settings.source_call_spacing,
            **kwargs,
        )

    @property
    def active(self) -> int:
        return self._active

    @asynccontextmanager
    async def slot(self):
        """Hold one concurrency slot for the duration of an external call."""
        async with self._condition:
            await self._condition.wait_for(lambda: self._active < self.concurrency)
            self._active += 1
        try:
            await self._pace()
            yield
        finally:
            async with self._condition:
                self._active -= 1
                self._condition.notify_all()

    async def _pace(self):
        now = self._clock()
        start_at = max(now, self._next_call_at)
        self._next_call_at = start_at + self.call_spacing
        wait = start_at - now
        if wait > 0:
            await self._sleep(wait)

    def record_success(self):
        self.consecutive_failures = 0
        self.backoff_delay = 0.0
        self.consecutive_successes += 1

        if self.consecutive_successes >= SUCCESSES_BEFORE_INCREASE:
            self.consecutive_successes = 0
            if self.concurrency < self.max_concurrency:
                self.concurrency += 1
                self.logger.info("Concurrency increased", concurrency=self.concurrency)

    def record_failure(self):
        self.consecutive_successes = 0
        self.consecutive_failures += 1

        previous = self.concurrency
        self.concurrency = max(self.min_concurrency, self.concurrency // 2)
        self.backoff_delay = min(self.base_delay * 2 ** (self.consecutive_failures - 1), self.max_delay)
        self._next_call_at = max(self._next_call_at, self._clock() + self.backoff_delay)

        self.logger.warning(
            "Backing off after failure",
            previous_concurrency=previous,
            concurrency=self.concurrency,
            consecutive_failures=self.consecutive_failures,
            backoff_delay=self.backoff_delay,
        )
