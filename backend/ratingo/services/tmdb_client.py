"""
TMDB client for Ratingo.
- Async httpx client with query-string API key auth.
- Responses cached in Redis (metadata rarely changes).
- Errors surface as TMDBAPIError carrying the HTTP status; callers own retries.
"""
import logging
from typing import Any, List, Optional

import httpx

from ratingo.core.config import settings
from ratingo.core.redis_client import ResponseCache
from ratingo.models import MEDIA_MOVIE, MEDIA_SHOW
from ratingo.schemas import CastMember, ExternalIds, Recommendation, TMDBDetails, Translation, Video, WatchProvider
from ratingo.services.rate_limit import UpstreamError

logger = logging.getLogger(__name__)

PROVIDER_CATEGORIES = ("flatrate", "free", "ads", "rent", "buy")
DEFAULT_CONTENT_REGION = "US"


class TMDBAPIError(UpstreamError):
    """TMDB answered with an error status or was unreachable."""


def tmdb_kind(media_type: str) -> str:
    if media_type == MEDIA_SHOW:
        return "tv"
    if media_type == MEDIA_MOVIE:
        return "movie"
    raise ValueError(f"Unknown media type: {media_type}")


class TMDBClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[ResponseCache] = None,
        http: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.tmdb_api_key
        self.cache = cache
        self._http = http
        self.base_url = (base_url or settings.tmdb_api_url).rstrip("/")

    async def _request(self, endpoint: str, params: Optional[dict] = None, ttl: Optional[int] = None) -> Any:
        ttl = settings.cache_ttl_metadata if ttl is None else ttl
        cache_key = None
        if ttl and self.cache is not None and settings.response_cache_enabled:
            cache_key = self.cache.key("tmdb", endpoint, params)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        url = f"{self.base_url}{endpoint}"
        query = dict(params or {})
        query["api_key"] = self.api_key
        try:
            if self._http is not None:
                resp = await self._http.get(url, params=query)
            else:
                async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
                    resp = await client.get(url, params=query)
        except httpx.RequestError as e:
            raise TMDBAPIError(f"TMDB network error: {e}", service="tmdb")

        if resp.status_code >= 400:
            raise TMDBAPIError(f"TMDB API error: {resp.status_code} {resp.reason_phrase}", status=resp.status_code, service="tmdb")
        result = resp.json()
        if cache_key is not None:
            await self.cache.set(cache_key, result, ttl)
        return result

    async def get_details(self, media_type: str, tmdb_id: int) -> Optional[TMDBDetails]:
        data = await self._request(f"/{tmdb_kind(media_type)}/{tmdb_id}")
        if not isinstance(data, dict) or "id" not in data:
            return None
        return TMDBDetails.model_validate(data)

    async def get_translation(self, media_type: str, tmdb_id: int, locale: Optional[str] = None) -> Translation:
        """Localized title, overview and poster."""
        data = await self._request(f"/{tmdb_kind(media_type)}/{tmdb_id}", params={"language": locale or settings.sync_locale})
        data = data or {}
        return Translation(
            title=data.get("name") or data.get("title") or None,
            overview=data.get("overview") or None,
            poster=data.get("poster_path") or None,
        )

    async def get_videos(self, media_type: str, tmdb_id: int) -> List[Video]:
        data = await self._request(f"/{tmdb_kind(media_type)}/{tmdb_id}/videos")
        return [Video.model_validate(v) for v in (data or {}).get("results") or []]

    async def get_credits(self, media_type: str, tmdb_id: int) -> List[CastMember]:
        """Cast list; shows use aggregate_credits (character taken from the first role)."""
        if media_type == MEDIA_SHOW:
            data = await self._request(f"/tv/{tmdb_id}/aggregate_credits")
        else:
            data = await self._request(f"/movie/{tmdb_id}/credits")
        out = []
        for member in (data or {}).get("cast") or []:
            if member.get("id") is None:
                continue
            character = member.get("character")
            roles = member.get("roles") or []
            if not character and roles:
                character = roles[0].get("character")
            out.append(CastMember(
                id=member["id"],
                name=member.get("name"),
                character=character or "",
                profile_path=member.get("profile_path"),
                order=member.get("order"),
            ))
        return out

    async def get_watch_providers(self, media_type: str, tmdb_id: int, region: str) -> List[WatchProvider]:
        """Providers for one region across flatrate|free|ads|rent|buy."""
        data = await self._request(f"/{tmdb_kind(media_type)}/{tmdb_id}/watch/providers")
        region_data = ((data or {}).get("results") or {}).get(region)
        if not region_data:
            return []
        link = region_data.get("link") or None
        out: List[WatchProvider] = []
        for category in PROVIDER_CATEGORIES:
            for idx, p in enumerate(region_data.get(category) or []):
                if p.get("provider_id") is None:
                    continue
                priority = p.get("display_priority")
                out.append(WatchProvider(
                    id=p["provider_id"],
                    name=p.get("provider_name"),
                    logo_path=p.get("logo_path") or None,
                    region=region,
                    category=category,
                    rank=priority if isinstance(priority, int) else idx,
                    link=link,
                ))
        return out

    async def get_content_rating(self, media_type: str, tmdb_id: int, region: str) -> Optional[str]:
        """Age rating for `region`, falling back to the default region, then the first available."""
        if media_type == MEDIA_SHOW:
            data = await self._request(f"/tv/{tmdb_id}/content_ratings")
            ratings = {
                r.get("iso_3166_1"): r.get("rating")
                for r in (data or {}).get("results") or []
                if r.get("rating")
            }
        else:
            data = await self._request(f"/movie/{tmdb_id}/release_dates")
            ratings = {}
            for entry in (data or {}).get("results") or []:
                cert = next((d.get("certification") for d in entry.get("release_dates") or [] if d.get("certification")), None)
                if cert:
                    ratings[entry.get("iso_3166_1")] = cert
        if region in ratings:
            return ratings[region]
        if DEFAULT_CONTENT_REGION in ratings:
            return ratings[DEFAULT_CONTENT_REGION]
        return next(iter(ratings.values()), None)

    async def get_external_ids(self, media_type: str, tmdb_id: int) -> ExternalIds:
        data = await self._request(f"/{tmdb_kind(media_type)}/{tmdb_id}/external_ids")
        return ExternalIds.model_validate(data or {})

    async def get_recommendations(self, media_type: str, tmdb_id: int) -> List[Recommendation]:
        data = await self._request(f"/{tmdb_kind(media_type)}/{tmdb_id}/recommendations")
        return [Recommendation.model_validate(r) for r in (data or {}).get("results") or [] if r.get("id") is not None]
