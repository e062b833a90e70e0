"""
Per-item reconciliation engine.

`process_show` / `process_movie` take one trending item, gather everything the
item needs from TMDB / Trakt / OMDb, compute its metrics and write all of its
rows in a single transaction. Skips are reported as data, and any exception
becomes the result's `error` string so a batch can carry on.
"""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from ratingo.core.config import settings
from ratingo.models import MEDIA_MOVIE, MEDIA_SHOW, RATING_SOURCE_TRAKT
from ratingo.schemas import OmdbRatings, TrendingItem, WatchProvider
from ratingo.services.score_calculator import ScoreInput
from ratingo.services.sync.context import SyncContext
from ratingo.services.sync.fetchers import ItemFetcher
from ratingo.services.sync.metrics import compute_deltas
from ratingo.services.sync.processing import (
    build_media_fields,
    extract_season_episode,
    is_excluded_item,
    merge_providers,
    pick_preferred_videos,
    primary_rating,
    title_has_keyword,
)
from ratingo.services.sync.related import (
    RelatedCandidates,
    ensure_related_stubs,
    get_related_tmdb_ids,
    link_related,
    prepare_related_stubs,
)
from ratingo.services.sync.upserts import (
    insert_watchers_snapshot,
    upsert_cast,
    upsert_content_ratings,
    upsert_media_item,
    upsert_provider_registry,
    upsert_rating_buckets,
    upsert_rating_record,
    upsert_videos,
    upsert_watch_providers,
)
from ratingo.utils.timezone import parse_date, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ItemResult:
    tmdb_id: Optional[int] = None
    updated: int = 0
    added: int = 0
    skipped: bool = False
    ratings_updated: int = 0
    buckets_upserted: int = 0
    snapshots_inserted: int = 0
    snapshots_unchanged: int = 0
    snapshots_processed: int = 0
    related_shows_inserted: int = 0
    related_links_added: int = 0
    related_source_counts: Dict[str, int] = field(default_factory=lambda: {"trakt": 0, "tmdb": 0})
    related_candidates_total: int = 0
    related_shows_with_candidates: int = 0
    elapsed_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


async def _availability(fetcher: ItemFetcher, tmdb_id: int, regions: List[str]) -> Tuple[Dict[str, List[WatchProvider]], Dict[str, Optional[str]]]:
    providers, ratings = await asyncio.gather(
        asyncio.gather(*[fetcher.watch_providers(tmdb_id, r) for r in regions]),
        asyncio.gather(*[fetcher.content_rating(tmdb_id, r) for r in regions]),
    )
    return dict(zip(regions, providers)), dict(zip(regions, ratings))


async def _external_ratings(fetcher: ItemFetcher, tmdb_id: int, known_imdb_id: Optional[str]) -> Tuple[Optional[str], OmdbRatings]:
    imdb_id = await fetcher.imdb_id(tmdb_id, known_imdb_id)
    return imdb_id, await fetcher.omdb_ratings(imdb_id)


async def _process_item(item: TrendingItem, ctx: SyncContext) -> ItemResult:
    is_show = ctx.media_type == MEDIA_SHOW
    media = item.media
    tmdb_id = media.ids.tmdb
    res = ItemResult(tmdb_id=tmdb_id)

    if not tmdb_id:
        res.skipped = True
        return res
    if is_show and title_has_keyword(media.title, ctx.excluded_keywords):
        res.skipped = True
        return res

    fetcher = ItemFetcher(ctx)
    details, translation = await asyncio.gather(fetcher.details(tmdb_id), fetcher.translation(tmdb_id))
    if details is None:
        res.skipped = True
        return res
    if is_show and is_excluded_item(details, translation, ctx.excluded_keywords, ctx.excluded_genre_id):
        logger.debug(f"Skipping excluded show {tmdb_id} ({details.display_title})")
        res.skipped = True
        return res

    videos, cast, (providers_by_region, ratings_by_region), (imdb_id, omdb), trakt_ratings = await asyncio.gather(
        fetcher.videos(tmdb_id),
        fetcher.cast(tmdb_id),
        _availability(fetcher, tmdb_id, ctx.regions),
        _external_ratings(fetcher, tmdb_id, media.ids.imdb or details.imdb_id),
        fetcher.trakt_ratings(media.lookup_key),
    )
    videos = pick_preferred_videos(videos)
    cast = cast[:settings.cast_limit]

    with ctx.session_factory() as session:
        deltas = compute_deltas(session, ctx, tmdb_id, item.watchers, details.vote_average)

    related = RelatedCandidates()
    stubs: List[Dict[str, object]] = []
    if is_show:
        related = await get_related_tmdb_ids(ctx, fetcher, tmdb_id, media.lookup_key, details.genre_ids, settings.related_limit)
        res.related_candidates_total += len(related.ids)
        if related.ids:
            res.related_shows_with_candidates += 1
            stubs = await prepare_related_stubs(ctx, fetcher, related.ids)

    providers = merge_providers(*[providers_by_region.get(r, []) for r in ctx.regions])
    score = ctx.score_calculator.calculate(ScoreInput(
        tmdb_popularity=details.popularity or 0.0,
        trakt_watchers=item.watchers,
        imdb_rating=omdb.imdb_rating,
        trakt_rating=trakt_ratings.rating,
        metacritic_rating=omdb.critic_score,
        rotten_tomatoes_rating=omdb.rotten_tomatoes,
        imdb_votes=omdb.imdb_votes,
        trakt_votes=trakt_ratings.votes,
        release_date=parse_date(details.release),
    ))

    primary_region = ctx.regions[0] if ctx.regions else None
    fields = build_media_fields(
        details,
        translation,
        omdb,
        imdb_id,
        ratings_by_region.get(primary_region),
        extract_season_episode(details) if is_show else None,
    )
    fields.update(
        trakt_id=media.ids.trakt,
        trakt_slug=media.ids.slug,
        primary_rating=primary_rating(details.vote_average, trakt_ratings.rating, omdb.imdb_rating),
        trending_score=deltas.trending_score,
        delta_3m=deltas.delta_3m,
        watchers_delta=deltas.watchers_delta,
        rating_trakt=item.watchers,
        ratingo_score=score.ratingo_score,
        trending_updated_at=utc_now(),
    )

    with ctx.session_factory() as session, session.begin():
        row, is_update = upsert_media_item(session, ctx.media_type, tmdb_id, fields)
        if is_update:
            res.updated += 1
        else:
            res.added += 1

        if upsert_rating_record(session, row.id, RATING_SOURCE_TRAKT, trakt_ratings.rating, trakt_ratings.votes):
            res.ratings_updated += 1
        res.buckets_upserted += upsert_rating_buckets(session, row.id, RATING_SOURCE_TRAKT, trakt_ratings.distribution)
        upsert_videos(session, row.id, videos)
        upsert_provider_registry(session, providers)
        upsert_watch_providers(session, row.id, providers)
        upsert_cast(session, row.id, cast)
        upsert_content_ratings(session, row.id, ratings_by_region)

        res.snapshots_processed += 1
        if insert_watchers_snapshot(session, row.id, tmdb_id, item.watchers) == "inserted":
            res.snapshots_inserted += 1
        else:
            res.snapshots_unchanged += 1

        if related.ids:
            res.related_shows_inserted += ensure_related_stubs(session, ctx.media_type, stubs)
            added_links = link_related(session, ctx.media_type, row.id, related.ids, related.source)
            res.related_links_added += added_links
            res.related_source_counts[related.source] += added_links
    return res


async def _run(item: TrendingItem, ctx: SyncContext, label: str) -> ItemResult:
    start = time.perf_counter()
    try:
        res = await _process_item(item, ctx)
    except Exception as e:
        logger.error(f"{label} sync failed for tmdb {item.tmdb_id}: {e}", exc_info=True)
        res = ItemResult(tmdb_id=item.tmdb_id, error=f"{label} sync error: {e}")
    res.elapsed_ms = int((time.perf_counter() - start) * 1000)
    return res


async def process_show(item: TrendingItem, ctx: SyncContext) -> ItemResult:
    return await _run(item, ctx, "Show")


async def process_movie(item: TrendingItem, ctx: SyncContext) -> ItemResult:
    return await _run(item, ctx, "Movie")


def processor_for(media_type: str):
    if media_type == MEDIA_SHOW:
        return process_show
    if media_type == MEDIA_MOVIE:
        return process_movie
    raise ValueError(f"Unknown media type: {media_type}")
