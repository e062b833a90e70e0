"""
omdb_client.py

OMDb client: aggregated IMDb / Rotten Tomatoes / Metacritic ratings by IMDb id.
"""
import logging
import re
from typing import Any, Optional

import httpx

from ratingo.core.config import settings
from ratingo.core.redis_client import ResponseCache
from ratingo.models import MEDIA_SHOW
from ratingo.schemas import OmdbRatings
from ratingo.services.rate_limit import UpstreamError

logger = logging.getLogger(__name__)

_PERCENT_RE = re.compile(r"(\d+)%")
_NUMBER_RE = re.compile(r"(\d+)")


class OMDbAPIError(UpstreamError):
    """OMDb answered with an error status or was unreachable."""


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or value == "N/A":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "N/A":
        return None
    try:
        return int(str(value).replace(",", ""))
    except ValueError:
        return None


def parse_aggregated_ratings(data: Any) -> OmdbRatings:
    """Turn a raw OMDb payload into OmdbRatings; unusable payloads are flagged unparseable."""
    if not isinstance(data, dict) or str(data.get("Response", "True")).lower() == "false":
        return OmdbRatings(unparseable=True)

    rotten_tomatoes = None
    metacritic = None
    for r in data.get("Ratings") or []:
        if not isinstance(r, dict) or not isinstance(r.get("Value"), str):
            continue
        if r.get("Source") == "Rotten Tomatoes":
            m = _PERCENT_RE.search(r["Value"])
            if m:
                rotten_tomatoes = int(m.group(1))
        elif r.get("Source") == "Metacritic":
            m = _NUMBER_RE.search(r["Value"])
            if m:
                metacritic = int(m.group(1))

    return OmdbRatings(
        imdb_rating=_float_or_none(data.get("imdbRating")),
        imdb_votes=_int_or_none(data.get("imdbVotes")),
        rotten_tomatoes=rotten_tomatoes,
        metacritic=metacritic,
        metascore=_int_or_none(data.get("Metascore")),
    )


class OMDbClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[ResponseCache] = None,
        http: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.omdb_api_key
        self.cache = cache
        self._http = http
        self.base_url = base_url or settings.omdb_api_url

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _request(self, params: dict) -> Any:
        if not self.api_key:
            raise OMDbAPIError("OMDb API key is required", service="omdb")
        cache_key = None
        if self.cache is not None and settings.response_cache_enabled:
            cache_key = self.cache.key("omdb", "/", params)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        query = dict(params, apikey=self.api_key)
        try:
            if self._http is not None:
                resp = await self._http.get(self.base_url, params=query)
            else:
                async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
                    resp = await client.get(self.base_url, params=query)
        except httpx.RequestError as e:
            raise OMDbAPIError(f"OMDb network error: {e}", service="omdb")
        if resp.status_code >= 400:
            raise OMDbAPIError(f"OMDb API error: {resp.status_code}", status=resp.status_code, service="omdb")
        try:
            result = resp.json()
        except ValueError:
            logger.warning(f"OMDb returned a non-JSON body for {params}")
            return None
        if cache_key is not None:
            await self.cache.set(cache_key, result, settings.cache_ttl_omdb)
        return result

    async def get_aggregated_ratings(self, imdb_id: str, media_type: str = MEDIA_SHOW) -> OmdbRatings:
        data = await self._request({"i": imdb_id, "type": "series" if media_type == MEDIA_SHOW else "movie"})
        ratings = parse_aggregated_ratings(data)
        if ratings.unparseable:
            logger.debug(f"OMDb payload for {imdb_id} was unparseable")
        return ratings
