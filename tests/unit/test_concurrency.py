import asyncio
import time

import pytest

from ratingo.utils.concurrency import Deadline, async_pool


@pytest.mark.asyncio
async def test_pool_keeps_input_order():
    async def work(n):
        await asyncio.sleep(0.001 * (5 - n))
        return n * 10

    assert await async_pool(3, [1, 2, 3, 4], work) == [10, 20, 30, 40]


@pytest.mark.asyncio
async def test_pool_never_exceeds_limit():
    in_flight = 0
    peak = 0

    async def work(n):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return n

    await async_pool(2, list(range(10)), work)
    assert peak == 2


@pytest.mark.asyncio
async def test_pool_handles_empty_input():
    async def work(n):
        return n

    assert await async_pool(6, [], work) == []


@pytest.mark.asyncio
async def test_items_not_started_leave_empty_slots():
    started = []

    async def work(n):
        started.append(n)
        return n

    # allow only the first two items to start
    results = await async_pool(1, [1, 2, 3, 4], work, should_start=lambda: len(started) < 2)
    assert results == [1, 2, None, None]


def test_zero_deadline_never_expires():
    deadline = Deadline(0)
    assert deadline.open()
    assert not deadline.expired()


def test_tiny_deadline_expires():
    deadline = Deadline(0.000001)
    time.sleep(0.001)
    assert deadline.expired()
    assert not deadline.open()
