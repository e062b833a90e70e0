"""
Row-level upserts for one media item.

All functions run inside the caller's transaction and only flush; the
reconciliation engine owns commit/rollback.
"""
import logging
import math
import re
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ratingo.models import (
    CastEntry,
    ContentRatingEntry,
    MediaItem,
    RatingBucket,
    RatingRecord,
    Video,
    WatcherSnapshot,
    WatchProviderEntry,
    WatchProviderRegistry,
)
from ratingo.schemas import CastMember, Video as VideoPayload, WatchProvider
from ratingo.utils.timezone import utc_now

logger = logging.getLogger(__name__)

SNAPSHOT_WINDOW = timedelta(hours=24)

# Enrichment columns that a failed lookup reports as None; an update keeps the stored value instead
KEEP_IF_MISSING = frozenset({
    "title_uk",
    "overview_uk",
    "poster_uk",
    "content_rating",
    "imdb_id",
    "rating_imdb",
    "imdb_votes",
    "rating_metacritic",
    "rating_rotten_tomatoes",
})


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "provider"


def find_media_item(session: Session, media_type: str, tmdb_id: int) -> Optional[MediaItem]:
    return session.scalar(
        select(MediaItem).where(MediaItem.tmdb_id == tmdb_id, MediaItem.media_type == media_type)
    )


def upsert_media_item(session: Session, media_type: str, tmdb_id: int, fields: Dict[str, object]) -> Tuple[MediaItem, bool]:
    """Insert or update by (tmdb_id, media_type). Returns (row, was_update)."""
    item = find_media_item(session, media_type, tmdb_id)
    if item is None:
        item = MediaItem(tmdb_id=tmdb_id, media_type=media_type, **fields)
        session.add(item)
        session.flush()
        return item, False
    for name, value in fields.items():
        if value is None and name in KEEP_IF_MISSING:
            continue
        setattr(item, name, value)
    item.updated_at = utc_now()
    session.flush()
    return item, True


def upsert_rating_record(session: Session, item_id: int, source: str, avg: Optional[float], votes: Optional[int]) -> bool:
    """Upsert the (item, source) rating; nothing is written when both values are missing."""
    if avg is None and votes is None:
        return False
    row = session.scalar(
        select(RatingRecord).where(RatingRecord.media_item_id == item_id, RatingRecord.source == source)
    )
    if row is None:
        session.add(RatingRecord(media_item_id=item_id, source=source, avg=avg, votes=votes))
    else:
        row.avg = avg
        row.votes = votes
        row.updated_at = utc_now()
    session.flush()
    return True


def _bucket_count(value) -> int:
    try:
        count = float(value)
    except (TypeError, ValueError):
        return 0
    return int(count) if math.isfinite(count) else 0


def upsert_rating_buckets(session: Session, item_id: int, source: str, distribution: Dict[str, object]) -> int:
    """Upsert buckets 1..10 present in `distribution`; absent buckets keep their stored counts."""
    incoming: Dict[int, int] = {}
    for key, value in (distribution or {}).items():
        try:
            bucket = int(key)
        except (TypeError, ValueError):
            continue
        if 1 <= bucket <= 10:
            incoming[bucket] = _bucket_count(value)
    if not incoming:
        return 0

    existing = {
        row.bucket: row
        for row in session.scalars(
            select(RatingBucket).where(RatingBucket.media_item_id == item_id, RatingBucket.source == source)
        )
    }
    for bucket, count in incoming.items():
        row = existing.get(bucket)
        if row is None:
            session.add(RatingBucket(media_item_id=item_id, source=source, bucket=bucket, count=count))
        else:
            row.count = count
            row.updated_at = utc_now()
    session.flush()
    return len(incoming)


def upsert_videos(session: Session, item_id: int, videos: Iterable[VideoPayload]) -> int:
    existing = {
        f"{row.site}|{row.key}": row
        for row in session.scalars(select(Video).where(Video.media_item_id == item_id))
    }
    written = 0
    for v in videos:
        if not v.site or not v.key:
            continue
        key = f"{v.site}|{v.key}"
        row = existing.get(key)
        if row is None:
            row = Video(media_item_id=item_id, site=v.site, key=v.key)
            session.add(row)
            existing[key] = row
        row.name = v.name
        row.type = v.type
        row.locale = v.iso_639_1
        row.official = v.official
        row.published_at = v.published_at
        written += 1
    session.flush()
    return written


def upsert_provider_registry(session: Session, providers: Iterable[WatchProvider]) -> int:
    """Best-effort registry refresh; failures are logged and rolled back to a savepoint."""
    unique = {p.id: p for p in providers}
    if not unique:
        return 0
    try:
        with session.begin_nested():
            existing = {
                row.tmdb_id: row
                for row in session.scalars(
                    select(WatchProviderRegistry).where(WatchProviderRegistry.tmdb_id.in_(list(unique)))
                )
            }
            for provider_id, p in unique.items():
                name = p.name or f"Provider {provider_id}"
                row = existing.get(provider_id)
                if row is None:
                    session.add(WatchProviderRegistry(tmdb_id=provider_id, name=name, slug=slugify(name), logo_path=p.logo_path))
                else:
                    row.name = name
                    row.slug = slugify(name)
                    row.logo_path = p.logo_path or row.logo_path
        return len(unique)
    except Exception as e:
        logger.warning(f"Provider registry upsert failed: {e}")
        return 0


def upsert_watch_providers(session: Session, item_id: int, providers: Iterable[WatchProvider]) -> int:
    existing = {
        (row.region, row.provider_id, row.category): row
        for row in session.scalars(select(WatchProviderEntry).where(WatchProviderEntry.media_item_id == item_id))
    }
    written = 0
    for p in providers:
        key = (p.region, p.id, p.category)
        row = existing.get(key)
        if row is None:
            row = WatchProviderEntry(media_item_id=item_id, region=p.region, provider_id=p.id, category=p.category)
            session.add(row)
            existing[key] = row
        row.provider_name = p.name
        row.logo_path = p.logo_path
        row.rank = p.rank
        row.link = p.link
        row.updated_at = utc_now()
        written += 1
    session.flush()
    return written


def upsert_cast(session: Session, item_id: int, cast: List[CastMember]) -> int:
    existing = {
        (row.person_id, row.character): row
        for row in session.scalars(select(CastEntry).where(CastEntry.media_item_id == item_id))
    }
    written = 0
    for member in cast:
        key = (member.id, member.character or "")
        row = existing.get(key)
        if row is None:
            row = CastEntry(media_item_id=item_id, person_id=member.id, character=member.character or "")
            session.add(row)
            existing[key] = row
        row.name = member.name
        row.profile_path = member.profile_path
        row.cast_order = member.order
        written += 1
    session.flush()
    return written


def upsert_content_ratings(session: Session, item_id: int, ratings: Dict[str, Optional[str]]) -> int:
    """One row per region; regions without a rating are left as stored."""
    existing = {
        row.region: row
        for row in session.scalars(select(ContentRatingEntry).where(ContentRatingEntry.media_item_id == item_id))
    }
    written = 0
    for region, rating in ratings.items():
        if not rating:
            continue
        row = existing.get(region)
        if row is None:
            session.add(ContentRatingEntry(media_item_id=item_id, region=region, rating=rating))
        else:
            row.rating = rating
            row.updated_at = utc_now()
        written += 1
    session.flush()
    return written


def insert_watchers_snapshot(session: Session, item_id: int, tmdb_id: int, watchers: int, now: Optional[datetime] = None) -> str:
    """Append a snapshot unless one exists in the last 24h. Returns 'inserted' or 'unchanged'."""
    now = now or utc_now()
    recent = session.scalar(
        select(WatcherSnapshot.id)
        .where(WatcherSnapshot.media_item_id == item_id, WatcherSnapshot.created_at >= now - SNAPSHOT_WINDOW)
        .limit(1)
    )
    if recent is not None:
        return "unchanged"
    session.add(WatcherSnapshot(media_item_id=item_id, tmdb_id=tmdb_id, watchers=int(watchers or 0), created_at=now))
    session.flush()
    return "inserted"
