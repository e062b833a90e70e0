"""
Backfill passes for already-ingested rows.

Both passes only ever fill gaps: a value the provider no longer returns
never replaces one that is already stored.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from sqlalchemy import exists, or_, select, update

from ratingo.models import MEDIA_SHOW, MediaItem, Video, WatchProviderEntry
from ratingo.schemas import OmdbRatings
from ratingo.services.sync.context import SyncContext
from ratingo.services.sync.fetchers import ItemFetcher
from ratingo.services.sync.processing import build_media_fields, extract_season_episode, merge_providers, pick_preferred_videos
from ratingo.services.sync.upserts import (
    upsert_content_ratings,
    upsert_provider_registry,
    upsert_videos,
    upsert_watch_providers,
)
from ratingo.utils.timezone import utc_now

logger = logging.getLogger(__name__)

META_FIELDS = ("backdrop", "genres", "status", "tagline", "release_date", "content_rating", "number_of_seasons", "number_of_episodes")

SEASON_FIELDS = (
    "latest_season_number",
    "latest_season_episodes",
    "last_episode_season",
    "last_episode_number",
    "last_episode_air_date",
    "next_episode_season",
    "next_episode_number",
    "next_episode_air_date",
)


def _mark_visited(ctx: SyncContext, item_id: int, column: str) -> None:
    with ctx.session_factory() as session, session.begin():
        session.execute(update(MediaItem).where(MediaItem.id == item_id).values({column: utc_now()}))


def _fill_missing(row: MediaItem, values: Dict[str, object], names) -> bool:
    changed = False
    for name in names:
        value = values.get(name)
        if value is None or getattr(row, name) is not None:
            continue
        setattr(row, name, value)
        changed = True
    return changed


async def run_omdb_backfill(ctx: SyncContext, limit: int = 100) -> int:
    """Fill IMDb / Metacritic / Rotten Tomatoes scores for rows that have an IMDb id.

    Returns the number of rows updated. A no-op when OMDb is not configured.
    Rows are visited least recently backfilled first, so titles OMDb never
    scores do not hold the batch.
    """
    if not ctx.omdb.enabled:
        return 0
    with ctx.session_factory() as session:
        rows = session.execute(
            select(MediaItem.id, MediaItem.imdb_id)
            .where(
                MediaItem.media_type == ctx.media_type,
                MediaItem.imdb_id.is_not(None),
                or_(MediaItem.rating_imdb.is_(None), MediaItem.imdb_votes.is_(None), MediaItem.rating_metacritic.is_(None)),
            )
            .order_by(MediaItem.omdb_backfilled_at.asc().nulls_first(), MediaItem.id)
            .limit(limit)
        ).all()

    fetcher = ItemFetcher(ctx)
    updated = 0
    for item_id, imdb_id in rows:
        ratings = await fetcher.omdb_ratings(imdb_id)
        values = {
            "rating_imdb": ratings.imdb_rating,
            "imdb_votes": ratings.imdb_votes,
            "rating_metacritic": ratings.critic_score,
            "rating_rotten_tomatoes": ratings.rotten_tomatoes,
        }
        if ratings.unparseable or all(v is None for v in values.values()):
            if ratings.unparseable:
                logger.debug(f"OMDb backfill: unparseable payload for {imdb_id}")
            _mark_visited(ctx, item_id, "omdb_backfilled_at")
            continue
        with ctx.session_factory() as session, session.begin():
            row = session.get(MediaItem, item_id)
            if row is None:
                continue
            for name, value in values.items():
                if value is not None:
                    setattr(row, name, value)
            row.omdb_backfilled_at = row.updated_at = utc_now()
        updated += 1
    if updated:
        logger.info(f"OMDb backfill updated {updated} {ctx.media_type} rows")
    return updated


def _meta_candidates_stmt(ctx: SyncContext, limit: int):
    no_videos = ~exists().where(Video.media_item_id == MediaItem.id)
    no_providers = ~exists().where(WatchProviderEntry.media_item_id == MediaItem.id)
    missing = [
        MediaItem.backdrop.is_(None),
        MediaItem.genres.is_(None),
        MediaItem.status.is_(None),
        MediaItem.release_date.is_(None),
        MediaItem.content_rating.is_(None),
        no_videos,
        no_providers,
    ]
    if ctx.media_type == MEDIA_SHOW:
        missing += [
            MediaItem.number_of_seasons.is_(None),
            MediaItem.latest_season_number.is_(None),
            MediaItem.last_episode_number.is_(None),
            MediaItem.next_episode_number.is_(None),
        ]
    return (
        select(MediaItem.id, MediaItem.tmdb_id)
        .where(MediaItem.media_type == ctx.media_type, or_(*missing))
        # oldest visit first; some gaps (an ended show's next episode) never close
        .order_by(MediaItem.meta_backfilled_at.asc().nulls_first(), MediaItem.id)
        .limit(limit)
    )


async def _fetch_meta(ctx: SyncContext, fetcher: ItemFetcher, tmdb_id: int) -> Optional[dict]:
    details = await fetcher.details(tmdb_id)
    if details is None:
        return None
    videos, providers, ratings = await asyncio.gather(
        fetcher.videos(tmdb_id),
        asyncio.gather(*[fetcher.watch_providers(tmdb_id, r) for r in ctx.regions]),
        asyncio.gather(*[fetcher.content_rating(tmdb_id, r) for r in ctx.regions]),
    )
    ratings_by_region = dict(zip(ctx.regions, ratings))
    primary_region = ctx.regions[0] if ctx.regions else None
    fields = build_media_fields(details, None, OmdbRatings(), None, ratings_by_region.get(primary_region))
    if ctx.media_type == MEDIA_SHOW:
        fields.update(extract_season_episode(details).as_fields())
    return {
        "fields": fields,
        "videos": pick_preferred_videos(videos),
        "providers": merge_providers(*providers),
        "content_ratings": ratings_by_region,
    }


async def run_meta_backfill(ctx: SyncContext, limit: int = 50) -> int:
    """Re-fetch metadata for rows with gaps and fill only the missing values.

    Returns the number of rows that changed. Per-row failures are logged and
    the pass moves on.
    """
    with ctx.session_factory() as session:
        rows = session.execute(_meta_candidates_stmt(ctx, limit)).all()

    fetcher = ItemFetcher(ctx)
    names: List[str] = list(META_FIELDS)
    if ctx.media_type == MEDIA_SHOW:
        names += SEASON_FIELDS

    updated = 0
    for item_id, tmdb_id in rows:
        try:
            meta = await _fetch_meta(ctx, fetcher, tmdb_id)
        except Exception as e:
            logger.warning(f"Metadata backfill fetch failed for {ctx.media_type} {tmdb_id}: {e}")
            meta = None
        if meta is None:
            _mark_visited(ctx, item_id, "meta_backfilled_at")
            continue

        with ctx.session_factory() as session, session.begin():
            row = session.get(MediaItem, item_id)
            if row is None:
                continue
            changed = _fill_missing(row, meta["fields"], names)
            has_videos = session.scalar(select(Video.id).where(Video.media_item_id == item_id).limit(1)) is not None
            if not has_videos and meta["videos"]:
                changed = upsert_videos(session, item_id, meta["videos"]) > 0 or changed
            has_providers = session.scalar(
                select(WatchProviderEntry.id).where(WatchProviderEntry.media_item_id == item_id).limit(1)
            ) is not None
            if not has_providers and meta["providers"]:
                upsert_provider_registry(session, meta["providers"])
                changed = upsert_watch_providers(session, item_id, meta["providers"]) > 0 or changed
            upsert_content_ratings(session, item_id, meta["content_ratings"])
            row.meta_backfilled_at = utc_now()
            if changed:
                row.updated_at = row.meta_backfilled_at
        if changed:
            updated += 1
    if updated:
        logger.info(f"Metadata backfill updated {updated} {ctx.media_type} rows")
    return updated
