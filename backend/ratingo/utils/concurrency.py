"""
Bounded-parallelism helpers for the sync pipeline.
"""
import asyncio
import time
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def async_pool(
    limit: int,
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    should_start: Optional[Callable[[], bool]] = None,
) -> List[Optional[R]]:
    """Run `fn` over `items` with at most `limit` calls in flight.

    Results come back in input order. When `should_start` returns False an
    item is not started and its slot holds None.
    """
    results: List[Optional[R]] = [None] * len(items)
    if not items:
        return results
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            index = next_index
            next_index += 1
            if should_start is not None and not should_start():
                continue
            results[index] = await fn(items[index])

    workers = [asyncio.create_task(worker()) for _ in range(max(1, min(limit, len(items))))]
    await asyncio.gather(*workers)
    return results


class Deadline:
    """Wall-clock limit for a batch; zero or negative seconds means unbounded."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds or 0
        self._start = time.monotonic()

    def expired(self) -> bool:
        return self.seconds > 0 and (time.monotonic() - self._start) >= self.seconds

    def open(self) -> bool:
        return not self.expired()


def elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))
