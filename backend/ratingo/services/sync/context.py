"""
Per-run sync context.

Everything a pipeline function needs (clients, per-run caches, the shared
normalization baseline, retry counters, DB session factory) travels in one
explicit object created fresh for each batch run.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ratingo.core.config import settings
from ratingo.core.redis_client import ResponseCache
from ratingo.services.omdb_client import OMDbClient
from ratingo.services.rate_limit import OnRetry
from ratingo.services.score_calculator import ScoreCalculator
from ratingo.services.tmdb_client import TMDBClient
from ratingo.services.trakt_client import TraktClient
from ratingo.utils.lru_cache import LRUCache

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class SyncCaches:
    details: LRUCache
    translation: LRUCache
    providers: LRUCache
    content_rating: LRUCache
    external_ids: LRUCache

    @classmethod
    def create(cls, ttl_seconds: Optional[float] = None) -> "SyncCaches":
        ttl = ttl_seconds if ttl_seconds is not None else settings.run_cache_ttl_seconds
        return cls(
            details=LRUCache(settings.details_cache_size, ttl),
            translation=LRUCache(settings.translation_cache_size, ttl),
            providers=LRUCache(settings.providers_cache_size, ttl),
            content_rating=LRUCache(settings.content_rating_cache_size, ttl),
            external_ids=LRUCache(settings.external_ids_cache_size, ttl),
        )


@dataclass
class MonthlyMaps:
    """Watchers per TMDB id for the current month (m0) and the five before it."""
    months: List[Dict[int, int]] = field(default_factory=lambda: [{} for _ in range(6)])

    def get(self, month: int, tmdb_id: int) -> Optional[int]:
        if month >= len(self.months):
            return None
        return self.months[month].get(tmdb_id)

    @property
    def is_empty(self) -> bool:
        return not any(self.months)


@dataclass
class SyncContext:
    media_type: str
    trakt: TraktClient
    tmdb: TMDBClient
    omdb: OMDbClient
    session_factory: SessionFactory
    caches: SyncCaches
    score_calculator: ScoreCalculator
    monthly: MonthlyMaps = field(default_factory=MonthlyMaps)
    max_watchers: int = 10000
    regions: List[str] = field(default_factory=lambda: list(settings.sync_regions))
    locale: str = settings.sync_locale
    excluded_keywords: List[str] = field(default_factory=lambda: [k.lower() for k in settings.excluded_keywords])
    excluded_genre_id: int = settings.excluded_genre_id
    retry_attempts: int = settings.retry_attempts
    retry_base_delay_ms: int = settings.retry_base_delay_ms
    retries: Counter = field(default_factory=Counter)

    def on_retry_label(self, label: str) -> OnRetry:
        """Retry callback that counts attempts under `label`."""
        def _on_retry(attempt: int, exc: BaseException) -> None:
            self.retries[label] += 1
            logger.debug(f"{label} retry {attempt}: {exc}")
        return _on_retry


def create_sync_context(
    media_type: str,
    session_factory: Optional[SessionFactory] = None,
    trakt: Optional[TraktClient] = None,
    tmdb: Optional[TMDBClient] = None,
    omdb: Optional[OMDbClient] = None,
    score_calculator: Optional[ScoreCalculator] = None,
) -> SyncContext:
    """Build a fresh context with default clients sharing one Redis response cache."""
    if session_factory is None:
        from ratingo.core.database import SessionLocal
        session_factory = SessionLocal
    response_cache = ResponseCache()
    return SyncContext(
        media_type=media_type,
        trakt=trakt or TraktClient(cache=response_cache),
        tmdb=tmdb or TMDBClient(cache=response_cache),
        omdb=omdb or OMDbClient(cache=response_cache),
        session_factory=session_factory,
        caches=SyncCaches.create(),
        score_calculator=score_calculator or ScoreCalculator(),
    )
