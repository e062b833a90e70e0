"""
Bounded in-memory LRU cache with optional per-entry TTL.

One instance is created per pipeline run for each lookup kind; instances are
never shared between runs.
"""
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")

_MISSING = object()


class LRUCache(Generic[V]):
    def __init__(self, max_size: int = 300, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: "OrderedDict[Hashable, Tuple[V, Optional[float]]]" = OrderedDict()
        # key -> asyncio.Future of a fetch currently in progress
        self.inflight: Dict[Hashable, Any] = {}

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def _lookup(self, key: Hashable) -> Any:
        entry = self._data.get(key, _MISSING)
        if entry is _MISSING:
            return _MISSING
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            # expired reads count as misses
            del self._data[key]
            return _MISSING
        self._data.move_to_end(key)
        return value

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: Hashable, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        expires_at = self._clock() + ttl if ttl is not None else None
        if key in self._data:
            del self._data[key]
        self._data[key] = (value, expires_at)
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)

    def delete(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()
