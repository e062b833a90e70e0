"""
trakt_client.py

Async Trakt API client (public endpoints, API-key auth) with Redis response
caching and a single Retry-After wait on HTTP 429.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from ratingo.core.config import settings
from ratingo.core.redis_client import ResponseCache
from ratingo.models import MEDIA_MOVIE, MEDIA_SHOW
from ratingo.schemas import CalendarEntry, TraktMedia, TraktRatings, TrendingItem, WatchedItem
from ratingo.services.rate_limit import UpstreamError, retry_after_seconds

logger = logging.getLogger(__name__)


class TraktAPIError(UpstreamError):
    """Base exception for Trakt API errors."""


class TraktNetworkError(TraktAPIError):
    """Raised when network or connection to Trakt fails."""


class TraktUnavailableError(TraktAPIError):
    """Raised when Trakt API is offline or unavailable."""


def trakt_kind(media_type: str) -> str:
    if media_type == MEDIA_SHOW:
        return "shows"
    if media_type == MEDIA_MOVIE:
        return "movies"
    raise ValueError(f"Unknown media type: {media_type}")


class TraktClient:
    def __init__(
        self,
        client_id: Optional[str] = None,
        cache: Optional[ResponseCache] = None,
        http: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client_id = client_id if client_id is not None else settings.trakt_client_id
        self.cache = cache
        self._http = http
        self.base_url = (base_url or settings.trakt_api_url).rstrip("/")
        self._sleep = sleep

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "trakt-api-key": self.client_id,
        }

    async def _send(self, url: str, params: Optional[dict]) -> httpx.Response:
        try:
            if self._http is not None:
                return await self._http.get(url, headers=self._headers(), params=params)
            async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
                return await client.get(url, headers=self._headers(), params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Network timeout connecting to Trakt API: {e}")
            raise TraktNetworkError("Network timeout connecting to Trakt API", service="trakt")
        except httpx.RequestError as e:
            logger.error(f"Network error connecting to Trakt API: {e}")
            raise TraktNetworkError(f"Network error connecting to Trakt API: {e}", service="trakt")

    async def _request(self, endpoint: str, params: Optional[dict] = None, ttl: Optional[int] = None) -> Any:
        """GET `endpoint`; responses are cached for `ttl` seconds when given."""
        cache_key = None
        if ttl and self.cache is not None and settings.response_cache_enabled:
            cache_key = self.cache.key("trakt", endpoint, params)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        url = f"{self.base_url}{endpoint}"
        resp = await self._send(url, params)
        if resp.status_code == 429:
            wait = retry_after_seconds(resp.headers.get("Retry-After"), settings.trakt_retry_after_default)
            logger.warning(f"Trakt rate limit hit on {endpoint}, retrying once in {wait}s")
            await self._sleep(wait)
            resp = await self._send(url, params)

        status = resp.status_code
        if status in (502, 503, 504):
            logger.error(f"Trakt API is currently unavailable (status {status}).")
            raise TraktUnavailableError(f"Trakt API unavailable: {status}", status=status, service="trakt")
        if status >= 400:
            raise TraktAPIError(f"Trakt API error: {status} {resp.reason_phrase}", status=status, service="trakt")

        if status == 204 or not resp.content:
            result: Any = {}
        else:
            result = resp.json()
        if cache_key is not None:
            await self.cache.set(cache_key, result, ttl)
        return result

    async def get_trending(self, media_type: str, limit: int = 100) -> List[TrendingItem]:
        data = await self._request(
            f"/{trakt_kind(media_type)}/trending",
            params={"limit": limit},
            ttl=settings.cache_ttl_trending,
        )
        return [TrendingItem.model_validate(row) for row in data or []]

    async def get_watched(self, media_type: str, period: str = "monthly", start_date: Optional[str] = None, limit: int = 200) -> List[WatchedItem]:
        """Most watched items for `period`; `start_date` is YYYY-MM-DD."""
        endpoint = f"/{trakt_kind(media_type)}/watched/{period}"
        if start_date:
            endpoint = f"{endpoint}/{start_date}"
        data = await self._request(endpoint, params={"limit": limit}, ttl=settings.cache_ttl_trending)
        out = []
        for row in data or []:
            # watched lists report watcher_count instead of watchers
            if "watchers" not in row:
                row = dict(row, watchers=row.get("watcher_count"))
            out.append(WatchedItem.model_validate(row))
        return out

    async def get_ratings(self, media_type: str, id_or_slug: str) -> TraktRatings:
        data = await self._request(
            f"/{trakt_kind(media_type)}/{id_or_slug}/ratings",
            ttl=settings.cache_ttl_ratings,
        )
        return TraktRatings.model_validate(data or {})

    async def get_related(self, media_type: str, id_or_slug: str, limit: int = 12) -> List[TraktMedia]:
        data = await self._request(
            f"/{trakt_kind(media_type)}/{id_or_slug}/related",
            params={"limit": limit},
            ttl=settings.cache_ttl_ratings,
        )
        return [TraktMedia.model_validate(row) for row in data or []]

    async def get_calendar_shows(self, start_date: str, days: int) -> List[CalendarEntry]:
        # Calendar payloads are large; never cached
        data = await self._request(f"/calendars/all/shows/{start_date}/{days}")
        return [CalendarEntry.model_validate(row) for row in data or []]
