"""
Test the unified retry helper.
"""

import asyncio

import pytest

from curtailment_mining.core.exceptions import (
    DataIntegrityError,
    StorageConflictError,
    TransientExternalError,
)
from curtailment_mining.services.reconciliation import RetryPolicy, retry_async


class Flaky:
    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or TransientExternalError("temporary")
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def test_delay_for_is_capped_exponential():
    policy = RetryPolicy(max_attempts=6, base_delay=2.0, max_delay=30.0)
    assert [policy.delay_for(a) for a in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0]


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    operation = Flaky(failures=2)
    sleep = SleepRecorder()

    result = await retry_async(operation, RetryPolicy(max_attempts=3), sleep=sleep)

    assert result == "ok"
    assert operation.calls == 3
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_reraises_last_error_after_max_attempts():
    operation = Flaky(failures=10)
    sleep = SleepRecorder()

    with pytest.raises(TransientExternalError):
        await retry_async(operation, RetryPolicy(max_attempts=3), sleep=sleep)

    assert operation.calls == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_storage_conflicts_are_retried():
    operation = Flaky(failures=1, error=StorageConflictError("duplicate key"))
    assert await retry_async(operation, RetryPolicy(max_attempts=2), sleep=SleepRecorder()) == "ok"


@pytest.mark.asyncio
async def test_non_retryable_errors_raise_immediately():
    operation = Flaky(failures=1, error=DataIntegrityError("bad volume"))
    sleep = SleepRecorder()

    with pytest.raises(DataIntegrityError):
        await retry_async(operation, RetryPolicy(max_attempts=5), sleep=sleep)

    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_timeout_counts_as_transient_failure():
    calls = 0

    async def slow():
        nonlocal calls
        calls += 1
        await asyncio.sleep(1)

    policy = RetryPolicy(max_attempts=2, base_delay=0, max_delay=0, timeout=0.01)
    with pytest.raises(TransientExternalError):
        await retry_async(slow, policy, operation_name="slow_call", sleep=SleepRecorder())

    assert calls == 2


@pytest.mark.asyncio
async def test_custom_retry_predicate():
    operation = Flaky(failures=1, error=ValueError("odd"))
    result = await retry_async(
        operation,
        RetryPolicy(max_attempts=2),
        retryable=lambda e: isinstance(e, ValueError),
        sleep=SleepRecorder(),
    )
    assert result == "ok"
