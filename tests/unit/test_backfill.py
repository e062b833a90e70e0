"""
Tests for the OMDb and metadata backfill passes.
"""
import json

import pytest
from sqlalchemy import func, select

from ratingo.models import MEDIA_MOVIE, MEDIA_SHOW, MediaItem, Video, WatchProviderEntry
from ratingo.schemas import OmdbRatings
from ratingo.services.sync.backfill import run_meta_backfill, run_omdb_backfill


def _add(session_factory, **fields):
    values = dict(tmdb_id=1, media_type=MEDIA_SHOW, title="Stored")
    values.update(fields)
    with session_factory() as session, session.begin():
        row = MediaItem(**values)
        session.add(row)
        session.flush()
        return row.id


def _get(session_factory, item_id):
    with session_factory() as session:
        return session.get(MediaItem, item_id)


@pytest.mark.asyncio
async def test_omdb_backfill_fills_missing_scores(make_ctx, session_factory, omdb_client):
    item_id = _add(session_factory, imdb_id="tt1", rating_imdb=None, imdb_votes=None, rating_metacritic=None)
    _add(session_factory, tmdb_id=2, imdb_id=None)

    updated = await run_omdb_backfill(make_ctx(), limit=100)

    assert updated == 1
    omdb_client.get_aggregated_ratings.assert_awaited_once_with("tt1", MEDIA_SHOW)
    row = _get(session_factory, item_id)
    assert (row.rating_imdb, row.imdb_votes, row.rating_metacritic) == (8.1, 5000, 74)


@pytest.mark.asyncio
async def test_omdb_backfill_never_overwrites_with_missing_values(make_ctx, session_factory, omdb_client):
    item_id = _add(session_factory, imdb_id="tt1", rating_imdb=7.0, imdb_votes=None, rating_metacritic=55)
    omdb_client.get_aggregated_ratings.return_value = OmdbRatings(imdb_votes=900)

    assert await run_omdb_backfill(make_ctx()) == 1
    row = _get(session_factory, item_id)
    assert (row.rating_imdb, row.imdb_votes, row.rating_metacritic) == (7.0, 900, 55)


@pytest.mark.asyncio
async def test_omdb_backfill_skips_unparseable_and_failures(make_ctx, session_factory, omdb_client):
    _add(session_factory, imdb_id="tt1")
    omdb_client.get_aggregated_ratings.return_value = OmdbRatings(unparseable=True)
    assert await run_omdb_backfill(make_ctx()) == 0

    omdb_client.get_aggregated_ratings.side_effect = RuntimeError("quota")
    assert await run_omdb_backfill(make_ctx()) == 0


@pytest.mark.asyncio
async def test_omdb_backfill_disabled_without_key(make_ctx, session_factory, omdb_client):
    _add(session_factory, imdb_id="tt1")
    omdb_client.enabled = False
    assert await run_omdb_backfill(make_ctx()) == 0
    omdb_client.get_aggregated_ratings.assert_not_awaited()


@pytest.mark.asyncio
async def test_omdb_backfill_is_per_media_type(make_ctx, session_factory, omdb_client):
    _add(session_factory, media_type=MEDIA_MOVIE, imdb_id="tt9")
    assert await run_omdb_backfill(make_ctx(MEDIA_SHOW)) == 0
    assert await run_omdb_backfill(make_ctx(MEDIA_MOVIE)) == 1
    omdb_client.get_aggregated_ratings.assert_awaited_once_with("tt9", MEDIA_MOVIE)


@pytest.mark.asyncio
async def test_meta_backfill_fills_only_gaps(make_ctx, session_factory):
    item_id = _add(session_factory, tmdb_id=1, status="Ended", backdrop=None, genres=None)

    updated = await run_meta_backfill(make_ctx(), limit=50)

    assert updated == 1
    row = _get(session_factory, item_id)
    assert row.status == "Ended"
    assert row.title == "Stored"
    assert row.backdrop == "/backdrop1.jpg"
    assert json.loads(row.genres) == [18]
    assert row.latest_season_number == 2
    assert row.next_episode_number == 5
    assert row.content_rating == "16+"
    with session_factory() as session:
        assert session.scalar(select(func.count()).select_from(Video)) == 1
        assert session.scalar(select(func.count()).select_from(WatchProviderEntry)) == 2


@pytest.mark.asyncio
async def test_meta_backfill_continues_after_row_failure(make_ctx, session_factory, tmdb_client):
    from conftest import make_details

    def details(media_type, tmdb_id):
        if tmdb_id == 1:
            raise RuntimeError("gone")
        return make_details(tmdb_id)

    tmdb_client.get_details.side_effect = details
    _add(session_factory, tmdb_id=1)
    second = _add(session_factory, tmdb_id=2)

    assert await run_meta_backfill(make_ctx()) == 1
    assert _get(session_factory, second).backdrop == "/backdrop2.jpg"


@pytest.mark.asyncio
async def test_meta_backfill_ignores_complete_rows(make_ctx, session_factory, tmdb_client):
    await run_meta_backfill(make_ctx())
    tmdb_client.get_details.assert_not_awaited()


@pytest.mark.asyncio
async def test_meta_backfill_rotates_past_permanent_gaps(make_ctx, session_factory, tmdb_client):
    from conftest import make_details

    # ended shows: next episode stays missing after every pass
    tmdb_client.get_details.side_effect = lambda media_type, tmdb_id: make_details(
        tmdb_id, status="Ended", next_episode_to_air=None
    )
    for tmdb_id in (1, 2, 3):
        _add(session_factory, tmdb_id=tmdb_id)
    late = _add(session_factory, tmdb_id=999)

    await run_meta_backfill(make_ctx(), limit=2)
    assert _get(session_factory, late).backdrop is None

    await run_meta_backfill(make_ctx(), limit=2)
    row = _get(session_factory, late)
    assert row.backdrop == "/backdrop999.jpg"
    assert row.meta_backfilled_at is not None
    assert row.next_episode_number is None


@pytest.mark.asyncio
async def test_failed_meta_fetch_still_counts_as_visit(make_ctx, session_factory, tmdb_client):
    tmdb_client.get_details.side_effect = RuntimeError("gone")
    item_id = _add(session_factory, tmdb_id=1)
    assert await run_meta_backfill(make_ctx()) == 0
    assert _get(session_factory, item_id).meta_backfilled_at is not None


@pytest.mark.asyncio
async def test_omdb_backfill_rotates_past_unscored_titles(make_ctx, session_factory, omdb_client):
    def ratings(imdb_id, media_type):
        # OMDb never has scores for the first two titles
        return OmdbRatings() if imdb_id in ("tt1", "tt2") else OmdbRatings(imdb_rating=6.5)

    omdb_client.get_aggregated_ratings.side_effect = ratings
    _add(session_factory, tmdb_id=1, imdb_id="tt1")
    _add(session_factory, tmdb_id=2, imdb_id="tt2")
    late = _add(session_factory, tmdb_id=3, imdb_id="tt3")

    assert await run_omdb_backfill(make_ctx(), limit=2) == 0
    assert await run_omdb_backfill(make_ctx(), limit=2) == 1
    assert _get(session_factory, late).rating_imdb == 6.5
