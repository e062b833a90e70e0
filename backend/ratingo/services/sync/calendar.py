"""
Episode calendar maintenance: upcoming airings for trending shows and the
pruning of airings that are already in the past.
"""
import logging
from datetime import date
from typing import Dict, Iterable, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ratingo.core.config import settings
from ratingo.models import MEDIA_SHOW, Airing, MediaItem
from ratingo.schemas import CalendarEntry
from ratingo.services.rate_limit import with_retry
from ratingo.services.sync.context import SessionFactory, SyncContext
from ratingo.utils.timezone import parse_date, utc_now

logger = logging.getLogger(__name__)


def trending_show_ids(session: Session) -> Set[int]:
    """TMDB ids of shows that carry a trending score."""
    rows = session.scalars(
        select(MediaItem.tmdb_id).where(MediaItem.media_type == MEDIA_SHOW, MediaItem.trending_score.is_not(None))
    )
    return set(rows)


def find_airing(session: Session, tmdb_id: int, season: Optional[int], episode: Optional[int]) -> Optional[Airing]:
    """Match on (tmdb_id, season, episode); a missing season/episode matches NULL."""
    stmt = select(Airing).where(Airing.tmdb_id == tmdb_id)
    stmt = stmt.where(Airing.season.is_(None) if season is None else Airing.season == season)
    stmt = stmt.where(Airing.episode.is_(None) if episode is None else Airing.episode == episode)
    return session.scalars(stmt.limit(1)).first()


def _airing_values(entry: CalendarEntry, media_item_id: Optional[int]) -> Dict[str, object]:
    episode = entry.episode or {}
    return {
        "media_item_id": media_item_id,
        "trakt_id": entry.show.ids.trakt,
        "title": entry.show.title,
        "episode_title": episode.get("title"),
        "air_date": parse_date(entry.first_aired),
        "network": entry.show.network,
    }


def upsert_airing(session: Session, entry: CalendarEntry) -> str:
    """Insert or refresh one airing. Returns 'inserted' or 'updated'."""
    tmdb_id = entry.show.ids.tmdb
    season = entry.episode.get("season")
    number = entry.episode.get("number")
    media_item_id = session.scalar(
        select(MediaItem.id).where(MediaItem.tmdb_id == tmdb_id, MediaItem.media_type == MEDIA_SHOW)
    )
    values = _airing_values(entry, media_item_id)
    airing = find_airing(session, tmdb_id, season, number)
    if airing is None:
        session.add(Airing(tmdb_id=tmdb_id, season=season, episode=number, **values))
        session.flush()
        return "inserted"
    for name, value in values.items():
        setattr(airing, name, value)
    airing.updated_at = utc_now()
    session.flush()
    return "updated"


async def sync_calendar(ctx: SyncContext, tmdb_ids: Optional[Iterable[int]] = None, days: Optional[int] = None) -> Dict[str, int]:
    """Pull the Trakt show calendar from today and upsert airings of tracked shows.

    Only shows in `tmdb_ids` are kept (default: every show with a trending
    score). A failing entry is logged and skipped.
    """
    days = days or settings.calendar_days
    if tmdb_ids is None:
        with ctx.session_factory() as session:
            wanted = trending_show_ids(session)
    else:
        wanted = set(tmdb_ids)

    start_date = utc_now().date().isoformat()
    entries = await with_retry(
        lambda: ctx.trakt.get_calendar_shows(start_date, days),
        retries=ctx.retry_attempts,
        base_delay_ms=ctx.retry_base_delay_ms,
        on_retry=ctx.on_retry_label("trakt.calendar"),
    )

    stats = {"processed": 0, "inserted": 0, "updated": 0}
    for entry in entries:
        tmdb_id = entry.show.ids.tmdb
        if not tmdb_id or tmdb_id not in wanted:
            continue
        try:
            with ctx.session_factory() as session, session.begin():
                outcome = upsert_airing(session, entry)
        except Exception as e:
            logger.warning(f"Calendar entry for tmdb {tmdb_id} failed: {e}")
            continue
        stats["processed"] += 1
        stats[outcome] += 1
    logger.info(f"Calendar sync: {stats}")
    return stats


def prune_stale_airings(session_factory: SessionFactory, today: Optional[date] = None) -> int:
    """Delete airings dated before `today`. Returns the number of rows removed."""
    today = today or utc_now().date()
    with session_factory() as session, session.begin():
        result = session.execute(delete(Airing).where(Airing.air_date < today))
        deleted = result.rowcount or 0
    if deleted:
        logger.info(f"Pruned {deleted} stale airings")
    return deleted
