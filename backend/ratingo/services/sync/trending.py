"""
Batch orchestrators for the trending sync.

A run fetches the Trakt trending list once, fixes the normalization baseline
(max watchers, monthly maps) for the whole batch, fans the items out over a
bounded pool and then runs the maintenance phases. Only a failed trending
fetch aborts the run; everything else is reported in the result.
"""
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional

from ratingo.core import metrics
from ratingo.core.config import settings
from ratingo.models import MEDIA_MOVIE, MEDIA_SHOW
from ratingo.schemas import TrendingItem
from ratingo.services.rate_limit import UpstreamError, with_retry
from ratingo.services.sync.backfill import run_meta_backfill, run_omdb_backfill
from ratingo.services.sync.calendar import prune_stale_airings, sync_calendar
from ratingo.services.sync.context import SyncContext, create_sync_context
from ratingo.services.sync.engine import ItemResult, processor_for
from ratingo.services.sync.metrics import build_monthly_maps, compute_max_watchers
from ratingo.utils.concurrency import Deadline, async_pool, elapsed_ms
from ratingo.utils.logger import logger
from ratingo.utils.timezone import utc_now


class TrendingUnavailableError(UpstreamError):
    """Raised when the trending list cannot be fetched; there is no batch without it."""

    def __init__(self, message: str = "Trakt API unavailable - cannot fetch trending data"):
        super().__init__(message, service="trakt")


def _related_totals() -> Dict[str, object]:
    return {
        "shows_inserted": 0,
        "links_added": 0,
        "source_counts": {"trakt": 0, "tmdb": 0},
        "candidates_total": 0,
        "shows_with_candidates": 0,
    }


@dataclass
class SyncRunResult:
    success: bool = True
    updated: int = 0
    added: int = 0
    skipped: int = 0
    timestamp: str = ""
    totals: Dict[str, int] = field(default_factory=lambda: {"trending_fetched": 0})
    related: Dict[str, object] = field(default_factory=_related_totals)
    ratings: Dict[str, int] = field(default_factory=lambda: {"updated": 0, "buckets_upserted": 0})
    snapshots: Dict[str, int] = field(default_factory=lambda: {"inserted": 0, "unchanged": 0, "processed": 0})
    prune: Dict[str, int] = field(default_factory=lambda: {"airings_deleted": 0})
    backfill: Dict[str, int] = field(default_factory=lambda: {"omdb_updated": 0, "meta_updated": 0})
    calendar: Dict[str, int] = field(default_factory=lambda: {"processed": 0, "inserted": 0, "updated": 0})
    perf: Dict[str, Dict[str, int]] = field(default_factory=lambda: {"phases": {}, "retries": {}})
    errors: List[str] = field(default_factory=list)
    error_count: int = 0
    deadline_skipped: int = 0

    def add_item(self, res: ItemResult) -> None:
        self.updated += res.updated
        self.added += res.added
        self.skipped += int(res.skipped)
        self.ratings["updated"] += res.ratings_updated
        self.ratings["buckets_upserted"] += res.buckets_upserted
        self.snapshots["inserted"] += res.snapshots_inserted
        self.snapshots["unchanged"] += res.snapshots_unchanged
        self.snapshots["processed"] += res.snapshots_processed
        self.related["shows_inserted"] += res.related_shows_inserted
        self.related["links_added"] += res.related_links_added
        self.related["candidates_total"] += res.related_candidates_total
        self.related["shows_with_candidates"] += res.related_shows_with_candidates
        for source, count in res.related_source_counts.items():
            self.related["source_counts"][source] = self.related["source_counts"].get(source, 0) + count
        if res.error:
            self.errors.append(f"{res.tmdb_id}: {res.error}")

    def counters(self) -> Dict[str, int]:
        """Flat counters for the metrics store."""
        return {
            "updated": self.updated,
            "added": self.added,
            "skipped": self.skipped,
            "errors": self.error_count,
            "deadline_skipped": self.deadline_skipped,
            "snapshots_inserted": self.snapshots["inserted"],
            "ratings_updated": self.ratings["updated"],
        }

    def to_dict(self) -> dict:
        return asdict(self)


async def fetch_trending(ctx: SyncContext, limit: int) -> List[TrendingItem]:
    try:
        return await with_retry(
            lambda: ctx.trakt.get_trending(ctx.media_type, limit),
            retries=ctx.retry_attempts,
            base_delay_ms=ctx.retry_base_delay_ms,
            on_retry=ctx.on_retry_label("trakt.trending"),
        )
    except Exception as e:
        logger.error(f"Failed to fetch trending {ctx.media_type}s: {e}")
        raise TrendingUnavailableError() from e


async def _guarded_phase(result: SyncRunResult, name: str, failure: str, fn: Callable):
    """Run one post-processing phase; a failure is appended to `errors` and yields None."""
    start = time.perf_counter()
    try:
        return await fn()
    except Exception as e:
        logger.error(f"{failure}: {e}", exc_info=True)
        result.errors.append(failure)
        return None
    finally:
        result.perf["phases"][name] = elapsed_ms(start)


async def _run_batch(ctx: SyncContext) -> SyncRunResult:
    result = SyncRunResult(timestamp=utc_now().isoformat())
    phases = result.perf["phases"]
    deadline = Deadline(settings.sync_deadline_seconds)

    start = time.perf_counter()
    items = await fetch_trending(ctx, settings.trending_limit)
    phases["trending_fetch_ms"] = elapsed_ms(start)
    result.totals["trending_fetched"] = len(items)

    ctx.max_watchers = compute_max_watchers([i.watchers for i in items], settings.min_max_watchers)
    start = time.perf_counter()
    ctx.monthly = await build_monthly_maps(ctx, limit=settings.monthly_limit)
    phases["monthly_maps_ms"] = elapsed_ms(start)

    processor = processor_for(ctx.media_type)
    results = await async_pool(
        settings.sync_concurrency,
        items,
        lambda item: processor(item, ctx),
        should_start=deadline.open,
    )

    item_times = []
    for item, res in zip(items, results):
        if res is None:
            result.deadline_skipped += 1
            continue
        result.add_item(res)
        item_times.append(res.elapsed_ms)
    phases["per_item_avg_ms"] = int(sum(item_times) / len(item_times)) if item_times else 0
    phases["per_item_max_ms"] = max(item_times) if item_times else 0
    if result.deadline_skipped:
        result.errors.append(
            f"Deadline of {settings.sync_deadline_seconds}s reached: {result.deadline_skipped} items not started"
        )
        logger.warning(f"{ctx.media_type} sync deadline reached, {result.deadline_skipped} items not started")

    backfilled = await _guarded_phase(
        result, "omdb_backfill_ms", "OMDb backfill failed",
        lambda: run_omdb_backfill(ctx, settings.omdb_backfill_limit),
    )
    result.backfill["omdb_updated"] = backfilled or 0
    backfilled = await _guarded_phase(
        result, "meta_backfill_ms", "Metadata backfill failed",
        lambda: run_meta_backfill(ctx, settings.meta_backfill_limit),
    )
    result.backfill["meta_updated"] = backfilled or 0

    if ctx.media_type == MEDIA_SHOW:
        trending_ids = {i.tmdb_id for i in items if i.tmdb_id}
        calendar = await _guarded_phase(
            result, "calendar_sync_ms", "Calendar sync failed",
            lambda: sync_calendar(ctx, trending_ids),
        )
        if calendar:
            result.calendar.update(calendar)

        async def prune():
            return prune_stale_airings(ctx.session_factory)

        deleted = await _guarded_phase(result, "prune_ms", "Airings prune failed", prune)
        result.prune["airings_deleted"] = deleted or 0

    result.perf["retries"] = dict(ctx.retries)
    result.error_count = len(result.errors)

    logger.info(
        f"Trending {ctx.media_type} sync done: fetched={result.totals['trending_fetched']} "
        f"updated={result.updated} added={result.added} skipped={result.skipped} errors={result.error_count}"
    )
    if settings.sync_metrics_enabled:
        await metrics.record_sync_run(f"sync.{ctx.media_type}", result.counters(), phases)
    return result


async def run_trending_sync(ctx: Optional[SyncContext] = None) -> SyncRunResult:
    """Trending shows: item fan-out, then OMDb/metadata backfill, calendar sync and airing prune."""
    return await _run_batch(ctx or create_sync_context(MEDIA_SHOW))


async def run_trending_movies_sync(ctx: Optional[SyncContext] = None) -> SyncRunResult:
    """Trending movies: item fan-out, then OMDb and metadata backfill."""
    return await _run_batch(ctx or create_sync_context(MEDIA_MOVIE))
