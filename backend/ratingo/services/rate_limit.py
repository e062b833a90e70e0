"""
rate_limit.py

Retry with exponential backoff and jitter for upstream API calls, plus the
shared upstream error type and Retry-After handling used by the clients.
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Hashable, Optional, TypeVar

from ratingo.utils.lru_cache import LRUCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException], Any]


class UpstreamError(Exception):
    """An external API answered with an error status or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, service: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.service = service


def retry_after_seconds(value: Optional[str], default: int = 10) -> int:
    """Parse a Retry-After header given in seconds; fall back to `default`."""
    if value is None:
        return default
    try:
        seconds = int(float(str(value).strip()))
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> float:
    return base_delay_ms * (2 ** (attempt - 1)) + random.random() * 100


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = 3,
    base_delay_ms: int = 300,
    on_retry: Optional[OnRetry] = None,
) -> T:
    """Call `fn` until it succeeds or `retries` retries are spent.

    Waits `base * 2^(attempt-1) + jitter(0..100)` ms between attempts and
    re-raises the last error once the attempts are used up.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            attempt += 1
            if attempt > retries:
                raise
            if on_retry is not None:
                on_retry(attempt, e)
            delay = backoff_delay_ms(attempt, base_delay_ms)
            logger.debug(f"Retry {attempt}/{retries} in {delay:.0f}ms after: {e}")
            await asyncio.sleep(delay / 1000.0)


async def cached_with_retry(
    cache: LRUCache,
    key: Hashable,
    label: str,
    fn: Callable[[], Awaitable[T]],
    on_retry_label: Optional[Callable[[str], OnRetry]] = None,
    retries: int = 3,
    base_delay_ms: int = 300,
) -> T:
    """Fetch through `cache`: cached value, else an in-flight fetch for the same key, else a new retried fetch."""
    if key in cache:
        return cache.get(key)
    pending = cache.inflight.get(key)
    if pending is not None:
        return await pending

    loop = asyncio.get_running_loop()
    future = loop.create_future()
    cache.inflight[key] = future
    try:
        value = await with_retry(
            fn,
            retries=retries,
            base_delay_ms=base_delay_ms,
            on_retry=on_retry_label(label) if on_retry_label else None,
        )
    except Exception as e:
        future.set_exception(e)
        # mark retrieved so a fetch nobody joined does not warn at shutdown
        future.exception()
        raise
    else:
        cache.set(key, value)
        future.set_result(value)
        return value
    finally:
        cache.inflight.pop(key, None)
