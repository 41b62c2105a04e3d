# tests/test_limiter.py
import asyncio

import pytest

from error_handler import BudgetExceededError
from fakes import FakeClock
from limiter import TokenWindowLimiter


def make_limiter(clock, budget=1000, min_interval=0.0, max_in_flight=4):
    return TokenWindowLimiter(
        tokens_per_minute=budget,
        min_interval=min_interval,
        max_in_flight=max_in_flight,
        clock=clock,
        sleep=clock.sleep,
    )


def test_admits_immediately_with_room():
    clock = FakeClock()
    limiter = make_limiter(clock)

    async def scenario():
        await limiter.reserve(400)
        limiter.release()
        await limiter.reserve(600)
        limiter.release()

    asyncio.run(scenario())
    assert clock.sleeps == []
    assert limiter.snapshot()["used_tokens"] == 1000


def test_waits_for_oldest_entry_to_leave_the_window():
    clock = FakeClock(start=0.0)
    limiter = make_limiter(clock)

    async def scenario():
        await limiter.reserve(900)
        limiter.release()
        clock.now = 10.0
        await limiter.reserve(200)
        limiter.release()

    asyncio.run(scenario())
    assert clock.sleeps == [50.0]
    assert clock.now == 60.0
    snapshot = limiter.snapshot()
    assert snapshot["used_tokens"] == 200
    assert snapshot["calls_in_window"] == 1


def test_call_larger_than_budget_fails_fast():
    clock = FakeClock()
    limiter = make_limiter(clock, budget=1000)

    with pytest.raises(BudgetExceededError) as exc_info:
        asyncio.run(limiter.reserve(1001))

    assert exc_info.value.status_code == 413
    assert exc_info.value.details["estimated_tokens"] == 1001
    assert clock.sleeps == []
    assert limiter.snapshot()["used_tokens"] == 0


def test_call_equal_to_budget_is_admitted():
    clock = FakeClock()
    limiter = make_limiter(clock, budget=1000)

    async def scenario():
        await limiter.reserve(1000)
        limiter.release()

    asyncio.run(scenario())
    assert limiter.snapshot()["remaining_tokens"] == 0


def test_min_interval_between_dispatches():
    clock = FakeClock(start=0.0)
    limiter = make_limiter(clock, min_interval=2.0)

    async def scenario():
        await limiter.reserve(10)
        limiter.release()
        clock.now = 0.5
        await limiter.reserve(10)
        limiter.release()

    asyncio.run(scenario())
    assert clock.sleeps == [1.5]


def test_concurrent_callers_cannot_share_the_same_room():
    clock = FakeClock(start=0.0)
    limiter = make_limiter(clock)
    admitted = []

    async def caller(name):
        await limiter.reserve(600)
        admitted.append((name, clock.now))
        limiter.release()

    async def scenario():
        await asyncio.gather(caller("first"), caller("second"))

    asyncio.run(scenario())
    assert admitted == [("first", 0.0), ("second", 60.0)]
    assert clock.sleeps == [60.0]


def test_in_flight_cap_holds_later_callers():
    clock = FakeClock(start=0.0)
    limiter = make_limiter(clock, max_in_flight=1)
    order = []

    async def first():
        await limiter.reserve(10)
        order.append("first admitted")
        await asyncio.sleep(0)
        order.append("first done")
        limiter.release()

    async def second():
        await limiter.reserve(10)
        order.append("second admitted")
        limiter.release()

    async def scenario():
        await asyncio.gather(first(), second())

    asyncio.run(scenario())
    assert order == ["first admitted", "first done", "second admitted"]


def test_snapshot_prunes_expired_entries():
    clock = FakeClock(start=0.0)
    limiter = make_limiter(clock)

    async def scenario():
        await limiter.reserve(300)
        limiter.release()

    asyncio.run(scenario())
    assert limiter.snapshot()["used_tokens"] == 300
    clock.now = 60.0
    snapshot = limiter.snapshot()
    assert snapshot["used_tokens"] == 0
    assert snapshot["remaining_tokens"] == 1000
    assert snapshot["tokens_per_minute"] == 1000


def test_rejects_non_positive_budget():
    with pytest.raises(ValueError):
        TokenWindowLimiter(tokens_per_minute=0)
