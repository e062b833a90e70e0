"""
tasks.py

Celery task definitions for the trending pipeline.
Each task runs its async pipeline in a fresh event loop; syncs of the same
kind are serialized with a Redis lock so overlapping beats never race on the
same rows.
"""
import asyncio
import logging
from celery import shared_task
from typing import Optional

from ratingo.core.redis_client import get_redis
from ratingo.core.database import SessionLocal
from ratingo.core.config import settings
from ratingo.models import MEDIA_MOVIE, MEDIA_SHOW
from ratingo.services.sync.calendar import prune_stale_airings
from ratingo.services.sync.queue import enqueue_trending_job, process_pending_tasks
from ratingo.services.sync.trending import run_trending_movies_sync, run_trending_sync

logger = logging.getLogger(__name__)

SYNC_LOCK_TIMEOUT = 60 * 60


class SyncLock:
    """Redis-based lock for one kind of sync run."""

    def __init__(self, name: str, timeout: int = SYNC_LOCK_TIMEOUT):
        self.lock_key = f"lock:sync:{name}"
        self.timeout = timeout
        self.redis = get_redis()

    async def acquire(self) -> bool:
        acquired = await self.redis.set(self.lock_key, "locked", ex=self.timeout, nx=True)
        if not acquired:
            logger.info(f"Lock already held: {self.lock_key}")
        return bool(acquired)

    async def release(self):
        await self.redis.delete(self.lock_key)

    async def __aenter__(self):
        if not await self.acquire():
            raise SyncLockBusy(f"Could not acquire lock: {self.lock_key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()


class SyncLockBusy(Exception):
    """Raised when sync lock cannot be acquired."""


async def _locked(name: str, fn) -> Optional[dict]:
    try:
        async with SyncLock(name):
            return await fn()
    except SyncLockBusy:
        logger.info(f"{name} already running; skipping this run")
        return None


@shared_task
def sync_trending_shows():
    """Full trending-shows batch: items, backfills, calendar and prune."""
    async def _run():
        result = await _locked("trending_shows", run_trending_sync)
        return result.to_dict() if result else {"skipped": "locked"}
    return asyncio.run(_run())


@shared_task
def sync_trending_movies():
    """Full trending-movies batch: items and backfills."""
    async def _run():
        result = await _locked("trending_movies", run_trending_movies_sync)
        return result.to_dict() if result else {"skipped": "locked"}
    return asyncio.run(_run())


@shared_task
def enqueue_trending_job_task(media_type: str = MEDIA_SHOW):
    """Snapshot the trending list into the durable task queue."""
    if media_type not in (MEDIA_SHOW, MEDIA_MOVIE):
        raise ValueError(f"Unknown media type: {media_type}")

    async def _run():
        return await enqueue_trending_job(media_type)
    return {"job_id": asyncio.run(_run())}


@shared_task
def process_sync_queue(limit: Optional[int] = None):
    """Work off one batch of pending sync tasks."""
    async def _run():
        result = await _locked("queue", lambda: process_pending_tasks(limit or settings.queue_batch_size))
        return result if result is not None else {"skipped": "locked"}
    return asyncio.run(_run())


@shared_task
def prune_airings():
    """Delete airings whose air date has passed."""
    try:
        deleted = prune_stale_airings(SessionLocal)
    except Exception as e:
        logger.error(f"prune_airings failed: {e}")
        raise
    return {"airings_deleted": deleted}
