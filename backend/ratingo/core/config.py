import os
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_user: str = os.getenv("POSTGRES_USER", "ratingo")
    db_password: str = os.getenv("POSTGRES_PASSWORD", "ratingo")
    db_name: str = os.getenv("POSTGRES_DB", "ratingo")
    database_url: str = f"postgresql+psycopg2://{os.getenv('POSTGRES_USER', 'ratingo')}:{os.getenv('POSTGRES_PASSWORD', 'ratingo')}@db:5432/{os.getenv('POSTGRES_DB', 'ratingo')}"
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Provider credentials
    trakt_client_id: str = ""
    tmdb_api_key: str = ""
    omdb_api_key: Optional[str] = None

    trakt_api_url: str = "https://api.trakt.tv"
    tmdb_api_url: str = "https://api.themoviedb.org/3"
    omdb_api_url: str = "https://www.omdbapi.com/"
    http_timeout_seconds: float = 10.0
    trakt_retry_after_default: int = 10

    # Transport-level response cache (redis), seconds
    response_cache_enabled: bool = True
    cache_ttl_trending: int = 300
    cache_ttl_ratings: int = 1800
    cache_ttl_metadata: int = 86400
    cache_ttl_omdb: int = 86400

    # Trending sync
    sync_regions: List[str] = ["UA", "US"]
    sync_locale: str = "uk-UA"
    sync_concurrency: int = 6
    trending_limit: int = 100
    monthly_limit: int = 200
    related_limit: int = 12
    cast_limit: int = 12
    excluded_keywords: List[str] = ["anime", "аніме"]
    excluded_genre_id: int = 16
    min_max_watchers: int = 10000
    retry_attempts: int = 3
    retry_base_delay_ms: int = 300
    # Zero disables the per-batch deadline
    sync_deadline_seconds: float = 0
    sync_metrics_enabled: bool = True

    # Per-run in-memory caches (entries)
    details_cache_size: int = 600
    translation_cache_size: int = 600
    providers_cache_size: int = 800
    content_rating_cache_size: int = 800
    external_ids_cache_size: int = 800
    run_cache_ttl_seconds: Optional[float] = 3600

    # Backfill and calendar
    omdb_backfill_limit: int = 100
    meta_backfill_limit: int = 50
    calendar_days: int = 14
    queue_batch_size: int = 10

    # Ratingo Score
    score_weights: Dict[str, float] = {
        "tmdb_popularity": 0.20,
        "trakt_watchers": 0.20,
        "avg_rating": 0.25,
        "vote_confidence": 0.15,
        "freshness": 0.20,
    }
    score_rating_weights: Dict[str, float] = {
        "imdb": 0.40,
        "trakt": 0.25,
        "metacritic": 0.20,
        "rotten_tomatoes": 0.15,
    }
    score_tmdb_popularity_max: float = 500.0
    score_trakt_watchers_max: float = 10000.0
    score_vote_confidence_k: float = 5000.0
    score_freshness_decay_days: float = 180.0
    score_freshness_min_floor: float = 0.2
    score_low_vote_threshold: int = 100
    score_low_vote_penalty: float = 0.7


settings = Settings()
