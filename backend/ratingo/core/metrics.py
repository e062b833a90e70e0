from __future__ import annotations
import logging
from typing import Dict

from ratingo.core.redis_client import get_redis

logger = logging.getLogger(__name__)

COUNTERS_KEY = "metrics:counters"


async def increment(name: str, amount: int = 1) -> None:
    r = get_redis()
    try:
        await r.hincrby(COUNTERS_KEY, name, amount)
    except Exception as e:
        logger.debug(f"metrics increment {name} failed: {e}")


async def timing(name: str, milliseconds: float) -> None:
    """Record latency aggregates (count/sum/min/max)."""
    r = get_redis()
    try:
        key = f"metrics:latency:{name}"
        ms = float(milliseconds)
        pipe = r.pipeline()
        pipe.hincrby(key, "count", 1)
        pipe.hincrbyfloat(key, "sum", ms)
        pipe.hget(key, "min")
        pipe.hget(key, "max")
        res = await pipe.execute()
        cur_min, cur_max = res[2], res[3]
        if cur_min is None or ms < float(cur_min):
            await r.hset(key, "min", ms)
        if cur_max is None or ms > float(cur_max):
            await r.hset(key, "max", ms)
    except Exception as e:
        logger.debug(f"metrics timing {name} failed: {e}")


async def record_sync_run(prefix: str, counters: Dict[str, int], phases_ms: Dict[str, float]) -> None:
    """Publish one run's counters and phase timings under `prefix`."""
    for name, value in counters.items():
        if value:
            await increment(f"{prefix}.{name}", int(value))
    for name, ms in phases_ms.items():
        await timing(f"{prefix}.{name}", ms)

