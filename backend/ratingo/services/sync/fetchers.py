"""
Cached, retried provider lookups used by the reconciliation engine.

Only item details are required; every other lookup degrades to None / [] on
failure so one flaky enrichment never fails the whole item.
"""
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from ratingo.schemas import CastMember, OmdbRatings, TMDBDetails, TraktRatings, Translation, Video, WatchProvider
from ratingo.services.rate_limit import cached_with_retry, with_retry
from ratingo.services.sync.context import SyncContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ItemFetcher:
    def __init__(self, ctx: SyncContext):
        self.ctx = ctx
        self.media_type = ctx.media_type

    async def _cached(self, cache, key, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await cached_with_retry(
            cache,
            (self.media_type, key),
            label,
            fn,
            self.ctx.on_retry_label,
            retries=self.ctx.retry_attempts,
            base_delay_ms=self.ctx.retry_base_delay_ms,
        )

    async def _retried(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            fn,
            retries=self.ctx.retry_attempts,
            base_delay_ms=self.ctx.retry_base_delay_ms,
            on_retry=self.ctx.on_retry_label(label),
        )

    async def details(self, tmdb_id: int) -> Optional[TMDBDetails]:
        return await self._cached(
            self.ctx.caches.details, tmdb_id, "tmdb.details",
            lambda: self.ctx.tmdb.get_details(self.media_type, tmdb_id),
        )

    async def translation(self, tmdb_id: int) -> Optional[Translation]:
        try:
            return await self._cached(
                self.ctx.caches.translation, tmdb_id, "tmdb.translation",
                lambda: self.ctx.tmdb.get_translation(self.media_type, tmdb_id, self.ctx.locale),
            )
        except Exception as e:
            logger.warning(f"Translation unavailable for {self.media_type} {tmdb_id}: {e}")
            return None

    async def watch_providers(self, tmdb_id: int, region: str) -> List[WatchProvider]:
        try:
            return await self._cached(
                self.ctx.caches.providers, f"{tmdb_id}|{region}", f"tmdb.providers.{region}",
                lambda: self.ctx.tmdb.get_watch_providers(self.media_type, tmdb_id, region),
            )
        except Exception as e:
            logger.warning(f"Watch providers unavailable for {self.media_type} {tmdb_id} region {region}: {e}")
            return []

    async def content_rating(self, tmdb_id: int, region: str) -> Optional[str]:
        try:
            return await self._cached(
                self.ctx.caches.content_rating, f"{tmdb_id}|{region}", f"tmdb.content.{region}",
                lambda: self.ctx.tmdb.get_content_rating(self.media_type, tmdb_id, region),
            )
        except Exception as e:
            logger.warning(f"Content rating unavailable for {self.media_type} {tmdb_id} region {region}: {e}")
            return None

    async def imdb_id(self, tmdb_id: int, known: Optional[str] = None) -> Optional[str]:
        if known:
            return known
        try:
            ids = await self._cached(
                self.ctx.caches.external_ids, tmdb_id, "tmdb.externalIds",
                lambda: self.ctx.tmdb.get_external_ids(self.media_type, tmdb_id),
            )
        except Exception as e:
            logger.warning(f"External ids unavailable for {self.media_type} {tmdb_id}: {e}")
            return None
        return ids.imdb_id if ids else None

    async def videos(self, tmdb_id: int) -> List[Video]:
        try:
            return await self._retried("tmdb.videos", lambda: self.ctx.tmdb.get_videos(self.media_type, tmdb_id))
        except Exception as e:
            logger.warning(f"Videos unavailable for {self.media_type} {tmdb_id}: {e}")
            return []

    async def cast(self, tmdb_id: int) -> List[CastMember]:
        try:
            return await self._retried("tmdb.credits", lambda: self.ctx.tmdb.get_credits(self.media_type, tmdb_id))
        except Exception as e:
            logger.warning(f"Credits unavailable for {self.media_type} {tmdb_id}: {e}")
            return []

    async def trakt_ratings(self, lookup_key: Optional[str]) -> TraktRatings:
        if not lookup_key:
            return TraktRatings()
        try:
            return await self._retried("trakt.ratings", lambda: self.ctx.trakt.get_ratings(self.media_type, lookup_key))
        except Exception as e:
            logger.warning(f"Trakt ratings unavailable for {self.media_type} {lookup_key}: {e}")
            return TraktRatings()

    async def omdb_ratings(self, imdb_id: Optional[str]) -> OmdbRatings:
        """OMDb scores; skipped when OMDb is not configured or no IMDb id is known."""
        if not imdb_id or not self.ctx.omdb.enabled:
            return OmdbRatings()
        try:
            return await self._retried(
                "omdb.agg", lambda: self.ctx.omdb.get_aggregated_ratings(imdb_id, self.media_type)
            )
        except Exception as e:
            logger.warning(f"OMDb ratings unavailable for {imdb_id}: {e}")
            return OmdbRatings()
