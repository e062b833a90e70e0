"""
Tests for calendar airings and pruning.
"""
from datetime import date

import pytest
from sqlalchemy import func, select

from ratingo.models import MEDIA_SHOW, Airing, MediaItem
from ratingo.schemas import CalendarEntry
from ratingo.services.sync import calendar
from ratingo.services.sync.calendar import find_airing, prune_stale_airings, sync_calendar


def entry(tmdb_id, season=1, number=1, first_aired="2099-05-01T02:00:00.000Z", title="Pilot"):
    episode = {"title": title}
    if season is not None:
        episode["season"] = season
    if number is not None:
        episode["number"] = number
    return CalendarEntry.model_validate({
        "first_aired": first_aired,
        "episode": episode,
        "show": {"title": f"Show {tmdb_id}", "network": "HBO", "ids": {"trakt": tmdb_id + 10000, "tmdb": tmdb_id}},
    })


def _airings(session_factory):
    with session_factory() as session:
        return session.scalars(select(Airing).order_by(Airing.id)).all()


def _add_show(session_factory, tmdb_id, trending_score=None):
    with session_factory() as session, session.begin():
        item = MediaItem(tmdb_id=tmdb_id, media_type=MEDIA_SHOW, title=f"Show {tmdb_id}", trending_score=trending_score)
        session.add(item)
        session.flush()
        return item.id


@pytest.mark.asyncio
async def test_insert_then_update_same_episode(make_ctx, session_factory, trakt_client):
    item_id = _add_show(session_factory, 1, trending_score=40)
    trakt_client.get_calendar_shows.return_value = [entry(1)]
    first = await sync_calendar(make_ctx(), {1}, days=7)

    trakt_client.get_calendar_shows.return_value = [entry(1, title="Pilot (Extended)")]
    second = await sync_calendar(make_ctx(), {1}, days=7)

    assert first == {"processed": 1, "inserted": 1, "updated": 0}
    assert second == {"processed": 1, "inserted": 0, "updated": 1}
    rows = _airings(session_factory)
    assert len(rows) == 1
    airing = rows[0]
    assert airing.media_item_id == item_id
    assert airing.episode_title == "Pilot (Extended)"
    assert airing.air_date == date(2099, 5, 1)
    assert airing.network == "HBO"
    assert trakt_client.get_calendar_shows.await_args.args[1] == 7


@pytest.mark.asyncio
async def test_missing_season_matches_null(make_ctx, session_factory, trakt_client):
    trakt_client.get_calendar_shows.return_value = [entry(3, season=None, number=None)]
    await sync_calendar(make_ctx(), {3})
    result = await sync_calendar(make_ctx(), {3})

    assert result["updated"] == 1
    assert len(_airings(session_factory)) == 1
    with session_factory() as session:
        assert find_airing(session, 3, None, None) is not None
        assert find_airing(session, 3, 1, None) is None


@pytest.mark.asyncio
async def test_default_filter_is_shows_with_trending_score(make_ctx, session_factory, trakt_client):
    _add_show(session_factory, 1, trending_score=50)
    _add_show(session_factory, 2)
    trakt_client.get_calendar_shows.return_value = [entry(1), entry(2), entry(3)]

    result = await sync_calendar(make_ctx())

    assert result["inserted"] == 1
    assert [a.tmdb_id for a in _airings(session_factory)] == [1]


@pytest.mark.asyncio
async def test_explicit_ids_filter(make_ctx, session_factory, trakt_client):
    trakt_client.get_calendar_shows.return_value = [entry(1), entry(2, number=2), entry(2, number=3)]
    result = await sync_calendar(make_ctx(), [2])
    assert result == {"processed": 2, "inserted": 2, "updated": 0}
    # airing without a known show row keeps a null link
    assert all(a.media_item_id is None for a in _airings(session_factory))


@pytest.mark.asyncio
async def test_failing_entry_is_skipped(make_ctx, session_factory, trakt_client, monkeypatch):
    real_upsert = calendar.upsert_airing

    def flaky(session, e):
        if e.show.ids.tmdb == 1:
            raise RuntimeError("bad row")
        return real_upsert(session, e)

    monkeypatch.setattr(calendar, "upsert_airing", flaky)
    trakt_client.get_calendar_shows.return_value = [entry(1), entry(2)]

    result = await sync_calendar(make_ctx(), {1, 2})
    assert result == {"processed": 1, "inserted": 1, "updated": 0}
    assert [a.tmdb_id for a in _airings(session_factory)] == [2]


def test_prune_removes_past_airings_only(session_factory):
    with session_factory() as session, session.begin():
        session.add_all([
            Airing(tmdb_id=1, season=1, episode=1, air_date=date(2025, 1, 1)),
            Airing(tmdb_id=1, season=1, episode=2, air_date=date(2025, 1, 8)),
            Airing(tmdb_id=1, season=1, episode=3, air_date=date(2025, 1, 15)),
            Airing(tmdb_id=2, season=None, episode=None, air_date=None),
        ])

    assert prune_stale_airings(session_factory, today=date(2025, 1, 8)) == 1
    with session_factory() as session:
        assert session.scalar(select(func.count()).select_from(Airing)) == 3
    assert prune_stale_airings(session_factory, today=date(2025, 1, 8)) == 0
