import unittest
from datetime import date, datetime, timezone

from ratingo.services.score_calculator import NEUTRAL_RATING, ScoreCalculator, ScoreInput

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _input(**overrides):
    data = dict(
        tmdb_popularity=150.0,
        trakt_watchers=2500,
        imdb_rating=7.8,
        trakt_rating=7.4,
        metacritic_rating=70,
        rotten_tomatoes_rating=85,
        imdb_votes=20000,
        trakt_votes=1500,
        release_date=date(2025, 3, 1),
    )
    data.update(overrides)
    return ScoreInput(**data)


class TestScoreCalculator(unittest.TestCase):
    def setUp(self):
        self.calc = ScoreCalculator()

    def test_weighted_average_renormalizes_over_present_sources(self):
        avg = self.calc.average_rating(imdb=8.0, trakt=7.0)
        self.assertAlmostEqual(avg, (8.0 * 0.4 + 7.0 * 0.25) / (0.4 + 0.25), places=6)
        self.assertAlmostEqual(avg, 7.615, places=3)

    def test_percentage_sources_are_scaled_to_ten(self):
        self.assertAlmostEqual(self.calc.average_rating(metacritic=80), 8.0)
        self.assertAlmostEqual(self.calc.average_rating(rotten_tomatoes=65), 6.5)

    def test_no_ratings_is_neutral(self):
        self.assertEqual(self.calc.average_rating(), NEUTRAL_RATING)
        out = self.calc.calculate(ScoreInput(), now=NOW)
        self.assertTrue(0 <= out.ratingo_score <= 100)

    def test_low_votes_are_penalized(self):
        enough = self.calc.calculate(_input(imdb_votes=100, trakt_votes=0), now=NOW)
        too_few = self.calc.calculate(_input(imdb_votes=99, trakt_votes=0), now=NOW)
        self.assertLess(too_few.ratingo_score, enough.ratingo_score)

    def test_freshness_decays_to_floor(self):
        today = self.calc.freshness(NOW.date(), now=NOW)
        classic = self.calc.freshness(date(1990, 1, 1), now=NOW)
        self.assertGreater(today, classic)
        self.assertAlmostEqual(classic, 0.2)
        self.assertGreater(classic, 0)
        self.assertAlmostEqual(today, 1.0)

    def test_unknown_release_counts_as_old(self):
        self.assertAlmostEqual(self.calc.freshness(None, now=NOW), 0.2)

    def test_future_release_is_fully_fresh(self):
        self.assertAlmostEqual(self.calc.freshness(date(2026, 1, 1), now=NOW), 1.0)

    def test_scores_are_bounded(self):
        extreme = self.calc.calculate(
            _input(tmdb_popularity=10_000, trakt_watchers=10_000_000, imdb_rating=10, trakt_rating=10,
                   metacritic_rating=100, rotten_tomatoes_rating=100, imdb_votes=10**7),
            now=NOW,
        )
        self.assertLessEqual(extreme.ratingo_score, 100)
        for sub in (extreme.quality_score, extreme.popularity_score, extreme.freshness_score):
            self.assertTrue(0 <= sub <= 1)

    def test_more_watchers_never_lowers_score(self):
        low = self.calc.calculate(_input(trakt_watchers=100), now=NOW)
        high = self.calc.calculate(_input(trakt_watchers=9000), now=NOW)
        self.assertGreater(high.ratingo_score, low.ratingo_score)
        self.assertGreater(high.popularity_score, low.popularity_score)

    def test_score_has_two_decimals(self):
        out = self.calc.calculate(_input(), now=NOW)
        self.assertEqual(out.ratingo_score, round(out.ratingo_score, 2))


if __name__ == "__main__":
    unittest.main()
