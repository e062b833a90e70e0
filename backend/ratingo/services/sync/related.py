"""
Related items: candidate discovery (Trakt first, TMDB recommendations as
fallback), stub rows for unknown targets and ranked links.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ratingo.models import MediaItem, RelatedLink
from ratingo.schemas import OmdbRatings
from ratingo.services.sync.context import SyncContext
from ratingo.services.sync.fetchers import ItemFetcher
from ratingo.services.sync.processing import build_media_fields

logger = logging.getLogger(__name__)

# Animation, documentary, reality, talk, news, soap
BANNED_RELATED_GENRES = frozenset({16, 99, 10764, 10767, 10763, 10766})
MAX_STUBS = 12


@dataclass
class RelatedCandidates:
    ids: List[int] = field(default_factory=list)
    source: str = "trakt"


def genres_compatible(base_genres: Iterable[int], candidate_genres: Iterable[int]) -> bool:
    """No banned genre, and at least one shared genre unless the base item has none."""
    candidate = set(candidate_genres or [])
    if candidate & BANNED_RELATED_GENRES:
        return False
    base = set(base_genres or [])
    if not base:
        return True
    return bool(base & candidate)


async def _trakt_candidates(ctx: SyncContext, fetcher: ItemFetcher, lookup_key: str, tmdb_id: int, base_genres: List[int], limit: int) -> List[int]:
    try:
        related = await ctx.trakt.get_related(ctx.media_type, lookup_key, limit)
    except Exception as e:
        logger.warning(f"Trakt related unavailable for {lookup_key}: {e}")
        return []
    ids = []
    for media in related:
        rel_id = media.ids.tmdb
        if rel_id and rel_id != tmdb_id and rel_id not in ids:
            ids.append(rel_id)
    if not ids:
        return []
    details = await asyncio.gather(*[fetcher.details(i) for i in ids], return_exceptions=True)
    out = []
    for rel_id, d in zip(ids, details):
        if isinstance(d, BaseException) or d is None:
            continue
        if genres_compatible(base_genres, d.genre_ids):
            out.append(rel_id)
    return out


async def _tmdb_candidates(ctx: SyncContext, tmdb_id: int, base_genres: List[int], limit: int) -> List[int]:
    try:
        recs = await ctx.tmdb.get_recommendations(ctx.media_type, tmdb_id)
    except Exception as e:
        logger.warning(f"TMDB recommendations unavailable for {tmdb_id}: {e}")
        return []
    out = []
    for rec in recs:
        if rec.id != tmdb_id and rec.id not in out and genres_compatible(base_genres, rec.genre_ids):
            out.append(rec.id)
    return out[:limit]


async def get_related_tmdb_ids(
    ctx: SyncContext,
    fetcher: ItemFetcher,
    tmdb_id: int,
    lookup_key: Optional[str],
    base_genres: List[int],
    limit: int = 12,
) -> RelatedCandidates:
    if lookup_key:
        ids = await _trakt_candidates(ctx, fetcher, lookup_key, tmdb_id, base_genres, limit)
        if ids:
            return RelatedCandidates(ids=ids, source="trakt")
    ids = await _tmdb_candidates(ctx, tmdb_id, base_genres, limit)
    if ids:
        return RelatedCandidates(ids=ids, source="tmdb")
    return RelatedCandidates()


def existing_tmdb_ids(session: Session, media_type: str, tmdb_ids: List[int]) -> Dict[int, int]:
    """tmdb_id -> media_items.id for rows that already exist."""
    if not tmdb_ids:
        return {}
    rows = session.execute(
        select(MediaItem.tmdb_id, MediaItem.id).where(
            MediaItem.media_type == media_type, MediaItem.tmdb_id.in_(tmdb_ids)
        )
    )
    return {tmdb_id: item_id for tmdb_id, item_id in rows}


async def prepare_related_stubs(ctx: SyncContext, fetcher: ItemFetcher, tmdb_ids: List[int]) -> List[Dict[str, object]]:
    """Minimal rows for related ids not in the database yet (at most 12)."""
    with ctx.session_factory() as session:
        known = existing_tmdb_ids(session, ctx.media_type, tmdb_ids)
    missing = [i for i in tmdb_ids if i not in known][:MAX_STUBS]

    async def build(rel_id: int) -> Optional[Dict[str, object]]:
        try:
            details, translation = await asyncio.gather(fetcher.details(rel_id), fetcher.translation(rel_id))
        except Exception as e:
            logger.warning(f"Related stub {rel_id} skipped: {e}")
            return None
        if details is None:
            return None
        fields = build_media_fields(details, translation, OmdbRatings(), None, None)
        fields["tmdb_id"] = rel_id
        return fields

    stubs = await asyncio.gather(*[build(i) for i in missing])
    return [s for s in stubs if s is not None]


def ensure_related_stubs(session: Session, media_type: str, stubs: List[Dict[str, object]]) -> int:
    """Insert stub rows that are still missing. Returns the number inserted."""
    if not stubs:
        return 0
    known = existing_tmdb_ids(session, media_type, [s["tmdb_id"] for s in stubs])
    inserted = 0
    for stub in stubs:
        if stub["tmdb_id"] in known:
            continue
        session.add(MediaItem(media_type=media_type, **stub))
        inserted += 1
    session.flush()
    return inserted


def link_related(session: Session, media_type: str, item_id: int, tmdb_ids: List[int], source: str) -> int:
    """Add links to related rows in candidate order (rank = position + 1); existing links are kept."""
    targets = existing_tmdb_ids(session, media_type, tmdb_ids)
    linked = set(
        session.scalars(select(RelatedLink.related_media_item_id).where(RelatedLink.media_item_id == item_id))
    )
    added = 0
    for index, rel_tmdb_id in enumerate(tmdb_ids):
        target = targets.get(rel_tmdb_id)
        if target is None or target == item_id or target in linked:
            continue
        session.add(RelatedLink(media_item_id=item_id, related_media_item_id=target, source=source, rank=index + 1))
        linked.add(target)
        added += 1
    session.flush()
    return added
