"""
schemas.py

Pydantic models for the provider payloads the sync pipeline consumes
(Trakt, TMDB, OMDb). Unknown fields are ignored; every field the pipeline
does not strictly need is optional.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional


class ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# --- Trakt ---

class TraktIds(ProviderModel):
    trakt: Optional[int] = None
    slug: Optional[str] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None
    tvdb: Optional[int] = None


class TraktMedia(ProviderModel):
    title: Optional[str] = None
    year: Optional[int] = None
    network: Optional[str] = None
    ids: TraktIds = Field(default_factory=TraktIds)

    @property
    def lookup_key(self) -> Optional[str]:
        """Slug when known, else the numeric Trakt id, for ratings/related endpoints."""
        if self.ids.slug:
            return self.ids.slug
        if self.ids.trakt is not None:
            return str(self.ids.trakt)
        return None


class TrendingItem(ProviderModel):
    """One entry of /shows/trending or /movies/trending."""
    watchers: int = 0
    show: Optional[TraktMedia] = None
    movie: Optional[TraktMedia] = None

    @property
    def media(self) -> TraktMedia:
        return self.show or self.movie or TraktMedia()

    @property
    def tmdb_id(self) -> Optional[int]:
        return self.media.ids.tmdb


class WatchedItem(TrendingItem):
    """One entry of /{shows,movies}/watched/{period}; `watchers` is None when the month reports no count."""
    watchers: Optional[int] = None


class TraktRatings(ProviderModel):
    rating: Optional[float] = None
    votes: Optional[int] = None
    distribution: Dict[str, Optional[float]] = Field(default_factory=dict)


class CalendarEntry(ProviderModel):
    first_aired: Optional[str] = None
    episode: Dict = Field(default_factory=dict)
    show: TraktMedia = Field(default_factory=TraktMedia)


# --- TMDB ---

class Genre(ProviderModel):
    id: int
    name: Optional[str] = None


class EpisodeRef(ProviderModel):
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    air_date: Optional[str] = None


class SeasonRef(ProviderModel):
    season_number: Optional[int] = None
    episode_count: Optional[int] = None


class TMDBDetails(ProviderModel):
    id: int
    name: Optional[str] = None
    title: Optional[str] = None
    overview: Optional[str] = None
    tagline: Optional[str] = None
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    vote_average: Optional[float] = None
    vote_count: Optional[int] = None
    popularity: Optional[float] = None
    genres: List[Genre] = Field(default_factory=list)
    status: Optional[str] = None
    first_air_date: Optional[str] = None
    release_date: Optional[str] = None
    runtime: Optional[int] = None
    episode_run_time: List[int] = Field(default_factory=list)
    imdb_id: Optional[str] = None
    number_of_seasons: Optional[int] = None
    number_of_episodes: Optional[int] = None
    seasons: List[SeasonRef] = Field(default_factory=list)
    last_episode_to_air: Optional[EpisodeRef] = None
    next_episode_to_air: Optional[EpisodeRef] = None

    @property
    def display_title(self) -> str:
        return self.name or self.title or "Unknown"

    @property
    def genre_ids(self) -> List[int]:
        return [g.id for g in self.genres]

    @property
    def release(self) -> Optional[str]:
        return self.first_air_date or self.release_date or None

    @property
    def runtime_minutes(self) -> Optional[int]:
        if self.runtime:
            return self.runtime
        return self.episode_run_time[0] if self.episode_run_time else None


class Translation(ProviderModel):
    title: Optional[str] = None
    overview: Optional[str] = None
    poster: Optional[str] = None


class Video(ProviderModel):
    site: Optional[str] = None
    key: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    iso_639_1: Optional[str] = None
    official: Optional[bool] = None
    published_at: Optional[str] = None


class CastMember(ProviderModel):
    id: int
    name: Optional[str] = None
    character: Optional[str] = None
    profile_path: Optional[str] = None
    order: Optional[int] = None


class WatchProvider(ProviderModel):
    id: int
    name: Optional[str] = None
    logo_path: Optional[str] = None
    region: str
    category: str
    rank: Optional[int] = None
    link: Optional[str] = None


class ExternalIds(ProviderModel):
    imdb_id: Optional[str] = None
    tvdb_id: Optional[int] = None


class Recommendation(ProviderModel):
    id: int
    genre_ids: List[int] = Field(default_factory=list)


# --- OMDb ---

class OmdbRatings(ProviderModel):
    """Aggregated ratings from OMDb.

    `unparseable` is set when the payload was not a usable OMDb answer; all
    numeric fields are then None.
    """
    imdb_rating: Optional[float] = None
    imdb_votes: Optional[int] = None
    rotten_tomatoes: Optional[int] = None
    metacritic: Optional[int] = None
    metascore: Optional[int] = None
    unparseable: bool = False

    @property
    def critic_score(self) -> Optional[int]:
        return self.metacritic if self.metacritic is not None else self.metascore
