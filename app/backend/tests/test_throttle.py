"""
Test the adaptive throttle.
"""

import asyncio

import pytest

from curtailment_mining.services.reconciliation import AdaptiveThrottle


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


def test_rejects_invalid_bounds():
    with pytest.raises(ValueError):
        AdaptiveThrottle(min_concurrency=0)
    with pytest.raises(ValueError):
        AdaptiveThrottle(min_concurrency=3, max_concurrency=2)


def test_initial_concurrency_is_clamped():
    assert AdaptiveThrottle(initial_concurrency=10, max_concurrency=4).concurrency == 4
    assert AdaptiveThrottle(initial_concurrency=0, min_concurrency=1).concurrency == 1


def test_two_successes_raise_concurrency_up_to_max():
    throttle = AdaptiveThrottle(initial_concurrency=2, max_concurrency=3)

    throttle.record_success()
    assert throttle.concurrency == 2
    throttle.record_success()
    assert throttle.concurrency == 3

    throttle.record_success()
    throttle.record_success()
    assert throttle.concurrency == 3


def test_failure_halves_concurrency_and_backs_off():
    clock = FakeClock()
    throttle = AdaptiveThrottle(
        initial_concurrency=4, max_concurrency=4, base_delay=2.0, max_delay=5.0, clock=clock,
    )

    throttle.record_failure()
    assert throttle.concurrency == 2
    assert throttle.backoff_delay == 2.0

    throttle.record_failure()
    assert throttle.concurrency == 1
    assert throttle.backoff_delay == 4.0

    throttle.record_failure()
    assert throttle.concurrency == 1
    assert throttle.backoff_delay == 5.0


def test_success_resets_failure_streak():
    throttle = AdaptiveThrottle(initial_concurrency=2, base_delay=1.0)
    throttle.record_failure()
    throttle.record_success()

    assert throttle.consecutive_failures == 0
    assert throttle.backoff_delay == 0.0


@pytest.mark.asyncio
async def test_slot_waits_out_backoff():
    clock = FakeClock()
    throttle = AdaptiveThrottle(base_delay=3.0, clock=clock, sleep=clock.sleep)
    throttle.record_failure()

    async with throttle.slot():
        pass

    assert clock.sleeps == [3.0]


@pytest.mark.asyncio
async def test_call_spacing_between_starts():
    clock = FakeClock()
    throttle = AdaptiveThrottle(initial_concurrency=1, call_spacing=0.5, clock=clock, sleep=clock.sleep)

    for _ in range(3):
        async with throttle.slot():
            pass

    assert clock.sleeps == [0.5, 0.5]


@pytest.mark.asyncio
async def test_slots_never_exceed_concurrency():
    throttle = AdaptiveThrottle(initial_concurrency=2, max_concurrency=2)
    peak = 0

    async def call():
        nonlocal peak
        async with throttle.slot():
            peak = max(peak, throttle.active)
            await asyncio.sleep(0.01)

    await asyncio.gather(*[call() for _ in range(6)])

    assert peak == 2
    assert throttle.active == 0
