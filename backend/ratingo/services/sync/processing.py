"""
Pure helpers for turning provider payloads into media rows.
"""
import json
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ratingo.schemas import OmdbRatings, TMDBDetails, Translation, Video, WatchProvider

PREFERRED_VIDEO_TYPES = ("Trailer", "Teaser", "Clip", "Featurette", "Promo")


@dataclass
class SeasonInfo:
    latest_season_number: Optional[int] = None
    latest_season_episodes: Optional[int] = None
    last_episode_season: Optional[int] = None
    last_episode_number: Optional[int] = None
    last_episode_air_date: Optional[str] = None
    next_episode_season: Optional[int] = None
    next_episode_number: Optional[int] = None
    next_episode_air_date: Optional[str] = None

    def as_fields(self) -> Dict[str, Optional[object]]:
        return dict(self.__dict__)


def extract_season_episode(details: TMDBDetails) -> SeasonInfo:
    """Latest real season (season 0 holds specials) and the last/next aired episodes."""
    info = SeasonInfo()
    seasons = sorted(
        (s for s in details.seasons if s.season_number is not None),
        key=lambda s: s.season_number,
        reverse=True,
    )
    if seasons:
        latest = next((s for s in seasons if s.season_number != 0), seasons[0])
        info.latest_season_number = latest.season_number
        info.latest_season_episodes = latest.episode_count
    if details.last_episode_to_air:
        info.last_episode_season = details.last_episode_to_air.season_number
        info.last_episode_number = details.last_episode_to_air.episode_number
        info.last_episode_air_date = details.last_episode_to_air.air_date
    if details.next_episode_to_air:
        info.next_episode_season = details.next_episode_to_air.season_number
        info.next_episode_number = details.next_episode_to_air.episode_number
        info.next_episode_air_date = details.next_episode_to_air.air_date
    return info


def merge_providers(*provider_lists: Iterable[WatchProvider]) -> List[WatchProvider]:
    """Concatenate provider lists keeping the first entry per `region:id`."""
    seen = set()
    merged = []
    for providers in provider_lists:
        for p in providers or []:
            key = f"{p.region}:{p.id}"
            if key in seen:
                continue
            seen.add(key)
            merged.append(p)
    return merged


def title_has_keyword(title: Optional[str], keywords: Iterable[str]) -> bool:
    lowered = (title or "").lower()
    return any(k in lowered for k in keywords)


def is_excluded_item(details: TMDBDetails, translation: Optional[Translation], keywords: Iterable[str], genre_id: int) -> bool:
    """Excluded-category content (anime): genre match or a keyword in the localized title."""
    if genre_id in details.genre_ids:
        return True
    return title_has_keyword(translation.title if translation else None, keywords)


def pick_preferred_videos(videos: List[Video]) -> List[Video]:
    """Preferred types on YouTube, else preferred types on any site, else YouTube, else everything."""
    youtube = [v for v in videos if v.site == "YouTube"]
    youtube_preferred = [v for v in youtube if (v.type or "") in PREFERRED_VIDEO_TYPES]
    if youtube_preferred:
        return youtube_preferred
    preferred = [v for v in videos if (v.type or "") in PREFERRED_VIDEO_TYPES]
    if preferred:
        return preferred
    return youtube or list(videos)


def primary_rating(tmdb_rating: Optional[float], trakt_rating: Optional[float], imdb_rating: Optional[float]) -> Optional[float]:
    for value in (tmdb_rating, trakt_rating, imdb_rating):
        if value is not None:
            return value
    return None


def build_media_fields(
    details: TMDBDetails,
    translation: Optional[Translation],
    omdb: OmdbRatings,
    imdb_id: Optional[str],
    content_rating: Optional[str],
    season_info: Optional[SeasonInfo] = None,
) -> Dict[str, object]:
    """Descriptive columns shared by full syncs, related stubs and backfills."""
    fields: Dict[str, object] = {
        "title": details.display_title,
        "title_uk": translation.title if translation else None,
        "overview": details.overview or None,
        "overview_uk": translation.overview if translation else None,
        "tagline": details.tagline or None,
        "poster": details.poster_path or None,
        "poster_uk": translation.poster if translation else None,
        "backdrop": details.backdrop_path or None,
        "genres": json.dumps(details.genre_ids),
        "status": details.status or None,
        "release_date": details.release,
        "runtime": details.runtime_minutes,
        "content_rating": content_rating,
        "rating_tmdb": details.vote_average,
        "rating_tmdb_count": details.vote_count,
        "popularity_tmdb": details.popularity,
        "imdb_id": imdb_id,
        "rating_imdb": omdb.imdb_rating,
        "imdb_votes": omdb.imdb_votes,
        "rating_metacritic": omdb.critic_score,
        "rating_rotten_tomatoes": omdb.rotten_tomatoes,
        "number_of_seasons": details.number_of_seasons,
        "number_of_episodes": details.number_of_episodes,
    }
    if season_info is not None:
        fields.update(season_info.as_fields())
    return fields
