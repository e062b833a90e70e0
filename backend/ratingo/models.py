"""
models.py

SQLAlchemy models for the trending ingestion pipeline: media items (shows and
movies), their ratings, histograms, watcher snapshots, related links, watch
providers, cast, videos, content ratings, episode airings and the sync queue.
"""
from sqlalchemy import Column, Integer, BigInteger, String, Boolean, ForeignKey, DateTime, Date, Float, Text, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base
from ratingo.utils.timezone import utc_now

Base = declarative_base()

MEDIA_SHOW = "show"
MEDIA_MOVIE = "movie"

RATING_SOURCE_TRAKT = "trakt"


class MediaItem(Base):
    """One show or movie, keyed by its TMDB id within a media type.

    Rows are created on first successful ingestion (or as related-item stubs)
    and are only ever updated afterwards.
    """
    __tablename__ = "media_items"

    id = Column(Integer, primary_key=True)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)  # 'show' or 'movie'
    trakt_id = Column(Integer, nullable=True)
    trakt_slug = Column(String, nullable=True)
    imdb_id = Column(String, nullable=True, index=True)

    title = Column(String, nullable=False)
    title_uk = Column(String, nullable=True)
    overview = Column(Text, nullable=True)
    overview_uk = Column(Text, nullable=True)
    tagline = Column(String(500), nullable=True)
    poster = Column(String, nullable=True)
    poster_uk = Column(String, nullable=True)
    backdrop = Column(String, nullable=True)
    genres = Column(Text, nullable=True)  # JSON array of TMDB genre ids
    status = Column(String, nullable=True)
    release_date = Column(String(20), nullable=True)  # first_air_date / release_date (YYYY-MM-DD)
    runtime = Column(Integer, nullable=True)
    content_rating = Column(String(20), nullable=True)
    primary_rating = Column(Float, nullable=True)

    # Provider ratings
    rating_tmdb = Column(Float, nullable=True)
    rating_tmdb_count = Column(Integer, nullable=True)
    popularity_tmdb = Column(Float, nullable=True)
    rating_imdb = Column(Float, nullable=True)
    imdb_votes = Column(Integer, nullable=True)
    rating_metacritic = Column(Integer, nullable=True)
    rating_rotten_tomatoes = Column(Integer, nullable=True)
    # Last observed Trakt watcher count; the month-over-month delta falls back to it
    rating_trakt = Column(Float, nullable=True)

    # Computed metrics
    trending_score = Column(Integer, nullable=True, index=True)
    delta_3m = Column(Integer, nullable=True)
    watchers_delta = Column(Integer, nullable=True)
    ratingo_score = Column(Float, nullable=True, index=True)
    trending_updated_at = Column(DateTime(timezone=True), nullable=True)
    meta_backfilled_at = Column(DateTime(timezone=True), nullable=True)  # last metadata backfill visit
    omdb_backfilled_at = Column(DateTime(timezone=True), nullable=True)

    # Shows only
    number_of_seasons = Column(Integer, nullable=True)
    number_of_episodes = Column(Integer, nullable=True)
    latest_season_number = Column(Integer, nullable=True)
    latest_season_episodes = Column(Integer, nullable=True)
    last_episode_season = Column(Integer, nullable=True)
    last_episode_number = Column(Integer, nullable=True)
    last_episode_air_date = Column(String(20), nullable=True)
    next_episode_season = Column(Integer, nullable=True)
    next_episode_number = Column(Integer, nullable=True)
    next_episode_air_date = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("tmdb_id", "media_type", name="uq_media_items_tmdb_media"),
        Index("ix_media_items_media_trending", "media_type", "trending_score"),
    )


class RatingRecord(Base):
    __tablename__ = "media_ratings"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    source = Column(String(20), nullable=False)  # 'trakt'
    avg = Column(Float, nullable=True)
    votes = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("media_item_id", "source", name="uq_media_ratings_item_source"),
    )


class RatingBucket(Base):
    """Histogram bucket (1..10) of a rating source."""
    __tablename__ = "media_rating_buckets"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    source = Column(String(20), nullable=False)
    bucket = Column(Integer, nullable=False)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("media_item_id", "source", "bucket", name="uq_media_rating_buckets"),
    )


class WatcherSnapshot(Base):
    """Append-only watcher time series, at most one row per item per 24 hours."""
    __tablename__ = "media_watchers_snapshots"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    tmdb_id = Column(Integer, nullable=False)
    watchers = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_media_watchers_snapshots_item_created", "media_item_id", "created_at"),
    )


class RelatedLink(Base):
    __tablename__ = "media_related"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    related_media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    source = Column(String(10), nullable=False)  # 'trakt' | 'tmdb'
    rank = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("media_item_id", "related_media_item_id", name="uq_media_related_pair"),
    )


class WatchProviderRegistry(Base):
    """Canonical list of streaming/rental providers seen across all items."""
    __tablename__ = "watch_providers"
    id = Column(Integer, primary_key=True)
    tmdb_id = Column(Integer, nullable=False, unique=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, index=True)
    logo_path = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class WatchProviderEntry(Base):
    __tablename__ = "media_watch_providers"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    region = Column(String(5), nullable=False)
    provider_id = Column(Integer, nullable=False)
    provider_name = Column(String, nullable=True)
    logo_path = Column(String, nullable=True)
    category = Column(String(10), nullable=False)  # flatrate|free|ads|rent|buy
    rank = Column(Integer, nullable=True)
    link = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("media_item_id", "region", "provider_id", "category", name="uq_media_watch_providers"),
    )


class ContentRatingEntry(Base):
    __tablename__ = "media_content_ratings"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    region = Column(String(5), nullable=False)
    rating = Column(String(20), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("media_item_id", "region", name="uq_media_content_ratings"),
    )


class CastEntry(Base):
    __tablename__ = "media_cast"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    person_id = Column(Integer, nullable=False)
    name = Column(String, nullable=True)
    character = Column(String, nullable=False, default="")
    profile_path = Column(String, nullable=True)
    cast_order = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("media_item_id", "person_id", "character", name="uq_media_cast"),
    )


class Video(Base):
    __tablename__ = "media_videos"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False)
    site = Column(String(30), nullable=False)
    key = Column(String, nullable=False)
    name = Column(String, nullable=True)
    type = Column(String(30), nullable=True)
    locale = Column(String(10), nullable=True)
    official = Column(Boolean, nullable=True)
    published_at = Column(String(40), nullable=True)

    __table_args__ = (
        UniqueConstraint("media_item_id", "site", "key", name="uq_media_videos"),
    )


class Airing(Base):
    """One upcoming episode from the Trakt calendar."""
    __tablename__ = "show_airings"
    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=True)
    tmdb_id = Column(Integer, nullable=False, index=True)
    trakt_id = Column(Integer, nullable=True)
    title = Column(String, nullable=True)
    episode_title = Column(String, nullable=True)
    season = Column(Integer, nullable=True)
    episode = Column(Integer, nullable=True)
    air_date = Column(Date, nullable=True, index=True)
    network = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class SyncJob(Base):
    """One queued sync run (alternative to the direct batch run)."""
    __tablename__ = "sync_jobs"
    id = Column(Integer, primary_key=True)
    type = Column(String(30), nullable=False)  # 'trending_shows' | 'trending_movies'
    status = Column(String(20), nullable=False, default="pending")  # pending|running|done|error
    stats = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class SyncTask(Base):
    __tablename__ = "sync_tasks"
    id = Column(Integer, primary_key=True)
    job_id = Column(Integer, ForeignKey("sync_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    tmdb_id = Column(Integer, nullable=False)
    payload = Column(Text, nullable=False)  # JSON trending item plus run constants
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending|processing|done|error
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
