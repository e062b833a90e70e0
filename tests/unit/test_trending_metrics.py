"""
Tests for the trending score, max-watchers baseline and watcher deltas.
"""
import unittest
from datetime import timedelta

import pytest

from ratingo.models import MEDIA_SHOW, MediaItem, WatcherSnapshot
from ratingo.schemas import WatchedItem
from ratingo.services.sync.context import MonthlyMaps
from ratingo.services.sync.metrics import (
    build_monthly_maps,
    calculate_trending_score,
    compute_deltas,
    compute_max_watchers,
)
from ratingo.utils.timezone import utc_now
from conftest import make_trending_item


class TestTrendingScore(unittest.TestCase):
    def test_rating_and_watchers_combined(self):
        # 8.5 * 5 + (2500 / 10000) * 50 = 42.5 + 12.5
        self.assertEqual(calculate_trending_score(8.5, 2500, 10000), 55)

    def test_half_rounds_up(self):
        # 8.5 * 5 = 42.5
        self.assertEqual(calculate_trending_score(8.5, 0, 10000), 43)

    def test_rating_is_clamped(self):
        self.assertEqual(calculate_trending_score(11, 300, 1000), calculate_trending_score(10, 300, 1000))
        self.assertEqual(calculate_trending_score(-5, 300, 1000), calculate_trending_score(0, 300, 1000))

    def test_bounded_and_monotonic(self):
        previous = -1
        for rating in [0, 2.5, 5, 7.5, 10]:
            score = calculate_trending_score(rating, 1000, 1000)
            self.assertGreaterEqual(score, previous)
            self.assertTrue(0 <= score <= 100)
            previous = score
        previous = -1
        for watchers in [0, 10, 100, 500, 1000]:
            score = calculate_trending_score(6, watchers, 1000)
            self.assertGreaterEqual(score, previous)
            self.assertTrue(0 <= score <= 100)
            previous = score

    def test_missing_values_count_as_zero(self):
        self.assertEqual(calculate_trending_score(None, None, 10000), 0)

    def test_max_watchers_has_floor(self):
        self.assertEqual(compute_max_watchers([10, 200, None]), 10000)
        self.assertEqual(compute_max_watchers([25000, 3000]), 25000)


def _monthly(*values):
    return MonthlyMaps(months=[{1: v} if v is not None else {} for v in values])


def test_deltas_from_monthly_maps(make_ctx, session_factory):
    ctx = make_ctx(monthly=_monthly(500, 300, 200, 100, 100, 50), max_watchers=10000)
    with session_factory() as session:
        deltas = compute_deltas(session, ctx, 1, 2500, 8.5)
    assert deltas.trending_score == 55
    assert deltas.delta_3m == (500 + 300 + 200) - (100 + 100 + 50)
    assert deltas.watchers_delta == 200


def test_monthly_delta_wins_over_stored_watchers(make_ctx, session_factory):
    with session_factory() as session, session.begin():
        session.add(MediaItem(tmdb_id=1, media_type=MEDIA_SHOW, title="Show", rating_trakt=10))
    ctx = make_ctx(monthly=_monthly(40, 30))
    with session_factory() as session:
        deltas = compute_deltas(session, ctx, 1, 1000, 7.0)
    assert deltas.watchers_delta == 10


def test_delta_falls_back_to_previous_watchers(make_ctx, session_factory):
    with session_factory() as session, session.begin():
        session.add(MediaItem(tmdb_id=1, media_type=MEDIA_SHOW, title="Show", rating_trakt=800))
    ctx = make_ctx()
    with session_factory() as session:
        deltas = compute_deltas(session, ctx, 1, 1000, 7.0)
    assert deltas.watchers_delta == 200
    assert deltas.delta_3m == 0


def test_delta_3m_falls_back_to_snapshots(make_ctx, session_factory):
    now = utc_now()
    with session_factory() as session, session.begin():
        item = MediaItem(tmdb_id=1, media_type=MEDIA_SHOW, title="Show")
        session.add(item)
        session.flush()
        # newest first: 60, 50, 40 | 30, 20, 10
        for days_ago, watchers in enumerate([60, 50, 40, 30, 20, 10]):
            session.add(WatcherSnapshot(
                media_item_id=item.id, tmdb_id=1, watchers=watchers,
                created_at=now - timedelta(days=days_ago),
            ))
    ctx = make_ctx()
    with session_factory() as session:
        deltas = compute_deltas(session, ctx, 1, 100, 7.0)
    assert deltas.delta_3m == (60 + 50 + 40) - (30 + 20 + 10)
    assert deltas.watchers_delta == 0


def test_unknown_item_without_history_has_zero_deltas(make_ctx, session_factory):
    with session_factory() as session:
        deltas = compute_deltas(session, make_ctx(), 42, 100, None)
    assert deltas.delta_3m == 0
    assert deltas.watchers_delta == 0


@pytest.mark.asyncio
async def test_monthly_maps_cover_six_months(make_ctx, trakt_client):
    trakt_client.get_watched.return_value = [make_trending_item(1, watchers=70), make_trending_item(None, watchers=5)]
    maps = await build_monthly_maps(make_ctx(), limit=200)
    assert trakt_client.get_watched.await_count == 6
    assert maps.get(0, 1) == 70
    assert maps.get(5, 1) == 70
    assert not maps.is_empty


@pytest.mark.asyncio
async def test_monthly_maps_degrade_to_empty(make_ctx, trakt_client):
    trakt_client.get_watched.side_effect = RuntimeError("trakt down")
    maps = await build_monthly_maps(make_ctx())
    assert maps.is_empty
    assert maps.get(0, 1) is None


@pytest.mark.asyncio
async def test_monthly_maps_skip_entries_without_count(make_ctx, session_factory, trakt_client):
    trakt_client.get_watched.return_value = [
        WatchedItem.model_validate({"show": {"ids": {"tmdb": 1}}}),
        WatchedItem.model_validate({"watchers": 0, "show": {"ids": {"tmdb": 2}}}),
    ]
    ctx = make_ctx()
    ctx.monthly = await build_monthly_maps(ctx)
    assert ctx.monthly.get(0, 1) is None
    assert ctx.monthly.get(0, 2) == 0

    # no monthly count for the item, so the stored watchers decide the delta
    with session_factory() as session, session.begin():
        session.add(MediaItem(tmdb_id=1, media_type=MEDIA_SHOW, title="Show", rating_trakt=800))
    with session_factory() as session:
        deltas = compute_deltas(session, ctx, 1, 1000, 7.0)
    assert deltas.watchers_delta == 200
