"""
Pytest Fixtures

In-memory SQLite database and AsyncMock provider clients shared by the
pipeline tests.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ratingo.core.config import settings
from ratingo.core.database import init_db
from ratingo.models import MEDIA_SHOW
from ratingo.schemas import (
    CastMember,
    ExternalIds,
    OmdbRatings,
    TMDBDetails,
    TraktRatings,
    TrendingItem,
    Translation,
    Video,
    WatchProvider,
)
from ratingo.services.score_calculator import ScoreCalculator
from ratingo.services.sync.context import SyncCaches, SyncContext


@pytest.fixture(autouse=True)
def _quiet_settings(monkeypatch):
    """No redis metrics, no response cache and no batch deadline in unit tests."""
    monkeypatch.setattr(settings, "sync_metrics_enabled", False)
    monkeypatch.setattr(settings, "response_cache_enabled", False)
    monkeypatch.setattr(settings, "sync_deadline_seconds", 0)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy drive BEGIN/SAVEPOINT instead of pysqlite
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


def make_details(tmdb_id: int, **overrides) -> TMDBDetails:
    data = {
        "id": tmdb_id,
        "name": f"Show {tmdb_id}",
        "overview": "An overview",
        "tagline": "A tagline",
        "poster_path": f"/poster{tmdb_id}.jpg",
        "backdrop_path": f"/backdrop{tmdb_id}.jpg",
        "vote_average": 8.0,
        "vote_count": 1200,
        "popularity": 120.0,
        "genres": [{"id": 18, "name": "Drama"}],
        "status": "Returning Series",
        "first_air_date": "2024-01-10",
        "episode_run_time": [50],
        "number_of_seasons": 2,
        "number_of_episodes": 16,
        "seasons": [
            {"season_number": 0, "episode_count": 3},
            {"season_number": 1, "episode_count": 8},
            {"season_number": 2, "episode_count": 8},
        ],
        "last_episode_to_air": {"season_number": 2, "episode_number": 4, "air_date": "2025-03-01"},
        "next_episode_to_air": {"season_number": 2, "episode_number": 5, "air_date": "2099-03-08"},
    }
    data.update(overrides)
    return TMDBDetails.model_validate(data)


def make_trending_item(tmdb_id, watchers: int = 1000, kind: str = "show", slug: str = None) -> TrendingItem:
    ids = {"trakt": (tmdb_id or 0) + 10000, "slug": slug or f"show-{tmdb_id}", "tmdb": tmdb_id}
    return TrendingItem.model_validate({"watchers": watchers, kind: {"title": f"Show {tmdb_id}", "ids": ids}})


@pytest.fixture
def trakt_client():
    trakt = MagicMock()
    trakt.get_trending = AsyncMock(return_value=[])
    trakt.get_watched = AsyncMock(return_value=[])
    trakt.get_ratings = AsyncMock(return_value=TraktRatings(rating=7.5, votes=250, distribution={"8": 120, "9": 40}))
    trakt.get_related = AsyncMock(return_value=[])
    trakt.get_calendar_shows = AsyncMock(return_value=[])
    return trakt


@pytest.fixture
def tmdb_client():
    tmdb = MagicMock()
    tmdb.get_details = AsyncMock(side_effect=lambda media_type, tmdb_id: make_details(tmdb_id))
    tmdb.get_translation = AsyncMock(return_value=Translation(title="Назва", overview="Опис", poster="/uk.jpg"))
    tmdb.get_videos = AsyncMock(return_value=[
        Video(site="YouTube", key="abc", name="Official Trailer", type="Trailer"),
        Video(site="YouTube", key="bts", name="Behind the scenes", type="Behind the Scenes"),
    ])
    tmdb.get_credits = AsyncMock(return_value=[CastMember(id=1, name="Actor One", character="Hero", order=0)])
    tmdb.get_watch_providers = AsyncMock(
        side_effect=lambda media_type, tmdb_id, region: [
            WatchProvider(id=8, name="Netflix", region=region, category="flatrate", rank=1),
        ]
    )
    tmdb.get_content_rating = AsyncMock(return_value="16+")
    tmdb.get_external_ids = AsyncMock(return_value=ExternalIds(imdb_id="tt0000001"))
    tmdb.get_recommendations = AsyncMock(return_value=[])
    return tmdb


@pytest.fixture
def omdb_client():
    omdb = MagicMock()
    omdb.enabled = True
    omdb.get_aggregated_ratings = AsyncMock(
        return_value=OmdbRatings(imdb_rating=8.1, imdb_votes=5000, rotten_tomatoes=91, metacritic=74)
    )
    return omdb


@pytest.fixture
def make_ctx(session_factory, trakt_client, tmdb_client, omdb_client):
    """Factory for a fresh SyncContext wired to the fake clients and the SQLite database."""
    def _make(media_type: str = MEDIA_SHOW, **overrides) -> SyncContext:
        options = dict(
            media_type=media_type,
            trakt=trakt_client,
            tmdb=tmdb_client,
            omdb=omdb_client,
            session_factory=session_factory,
            caches=SyncCaches.create(ttl_seconds=60),
            score_calculator=ScoreCalculator(),
            regions=["UA", "US"],
            retry_attempts=1,
            retry_base_delay_ms=1,
        )
        options.update(overrides)
        return SyncContext(**options)
    return _make
