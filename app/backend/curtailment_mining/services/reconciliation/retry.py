"""
Unified retry with exponential backoff and per-call timeout.

Every external call made by the engine (event fetch, difficulty lookup,
storage write) goes through ``retry_async`` with the same policy object.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from curtailment_mining.core.exceptions import TransientExternalError, is_retryable


logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    timeout: Optional[float] = 30.0  # per call, seconds

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given failed attempt (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_call_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            timeout=settings.call_timeout,
        )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation_name: str = "external_call",
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()`` until it succeeds, a non-retryable error is raised or
    ``policy.max_attempts`` is reached.

    A call exceeding ``policy.timeout`` is cancelled and counts as a
    TransientExternalError. The last error is re-raised unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            if policy.timeout:
                try:
                    return await asyncio.wait_for(operation(), timeout=policy.timeout)
                except asyncio.TimeoutError as e:
                    raise TransientExternalError(
                        f"{operation_name} timed out after {policy.timeout}s"
                    ) from e
            return await operation()

        except Exception as e:
            if not retryable(e) or attempt >= policy.max_attempts:
                if attempt > 1:
                    logger.error(
                        "❌ Call failed after retries",
                        operation=operation_name,
                        attempts=attempt,
                        error=str(e),
                    )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                "Call failed, retrying",
                operation=operation_name,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=str(e),
            )
            await sleep(delay)
