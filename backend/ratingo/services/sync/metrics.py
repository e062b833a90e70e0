"""
Trending metrics: trending score, watcher deltas and the shared monthly maps.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ratingo.models import MediaItem, WatcherSnapshot
from ratingo.services.sync.context import MonthlyMaps, SyncContext
from ratingo.utils.timezone import month_starts

logger = logging.getLogger(__name__)

MAX_WATCHERS_FLOOR = 10000


def calculate_trending_score(rating: Optional[float], watchers: Optional[float], max_watchers: float) -> int:
    """0-100: half from the 0-10 rating, half from watchers relative to the batch maximum."""
    clamped = min(max(rating or 0.0, 0.0), 10.0)
    watcher_part = (watchers or 0) / max_watchers * 50 if max_watchers > 0 else 0.0
    # half up
    return int(clamped * 5 + watcher_part + 0.5)


def compute_max_watchers(watchers: Iterable[Optional[int]], floor: int = MAX_WATCHERS_FLOOR) -> int:
    return max([w or 0 for w in watchers] + [floor])


@dataclass
class DeltaResult:
    trending_score: int
    delta_3m: int
    watchers_delta: int


def _sum_months(monthly: MonthlyMaps, tmdb_id: int, months: range) -> int:
    return sum(monthly.get(m, tmdb_id) or 0 for m in months)


def recent_snapshot_watchers(session: Session, media_type: str, tmdb_id: int, limit: int = 6) -> List[int]:
    """Watcher counts of the latest snapshots, newest first."""
    stmt = (
        select(WatcherSnapshot.watchers)
        .join(MediaItem, MediaItem.id == WatcherSnapshot.media_item_id)
        .where(MediaItem.tmdb_id == tmdb_id, MediaItem.media_type == media_type)
        .order_by(WatcherSnapshot.created_at.desc(), WatcherSnapshot.id.desc())
        .limit(limit)
    )
    return [int(w or 0) for w in session.scalars(stmt)]


def previous_watchers(session: Session, media_type: str, tmdb_id: int) -> Optional[float]:
    return session.scalar(
        select(MediaItem.rating_trakt).where(MediaItem.tmdb_id == tmdb_id, MediaItem.media_type == media_type)
    )


def compute_deltas(
    session: Session,
    ctx: SyncContext,
    tmdb_id: int,
    watchers: int,
    tmdb_rating: Optional[float],
) -> DeltaResult:
    trending_score = calculate_trending_score(tmdb_rating or 0.0, watchers, ctx.max_watchers)

    prev = previous_watchers(session, ctx.media_type, tmdb_id)
    delta_prev = int(watchers - prev) if isinstance(prev, (int, float)) else None

    m0 = ctx.monthly.get(0, tmdb_id)
    m1 = ctx.monthly.get(1, tmdb_id)
    delta_monthly = m0 - m1 if m0 is not None and m1 is not None else None

    delta_3m = _sum_months(ctx.monthly, tmdb_id, range(0, 3)) - _sum_months(ctx.monthly, tmdb_id, range(3, 6))
    if delta_3m == 0:
        # zero is ambiguous (flat vs. no monthly data); fall back to stored snapshots
        history = recent_snapshot_watchers(session, ctx.media_type, tmdb_id)
        if len(history) >= 4:
            delta_3m = sum(history[:3]) - sum(history[3:6])

    if delta_monthly is not None:
        watchers_delta = delta_monthly
    elif delta_prev is not None:
        watchers_delta = delta_prev
    else:
        watchers_delta = 0

    return DeltaResult(trending_score=trending_score, delta_3m=delta_3m, watchers_delta=watchers_delta)


async def build_monthly_maps(ctx: SyncContext, now: Optional[datetime] = None, limit: int = 200) -> MonthlyMaps:
    """Watched-per-month maps for the last six months; any failure yields empty maps."""
    try:
        responses = await asyncio.gather(*[
            ctx.trakt.get_watched(ctx.media_type, "monthly", start.isoformat(), limit)
            for start in month_starts(now, 6)
        ])
        months = [{i.tmdb_id: int(i.watchers) for i in items if i.tmdb_id and i.watchers is not None} for items in responses]
        return MonthlyMaps(months=months)
    except Exception as e:
        logger.warning(f"Monthly watcher maps unavailable for {ctx.media_type}: {e}")
        return MonthlyMaps()
