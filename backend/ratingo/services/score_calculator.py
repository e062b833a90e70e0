"""
score_calculator.py

Ratingo Score: a display-oriented composite of popularity, quality and
freshness.

- Popularity: TMDB popularity (linear, capped) + Trakt watchers (log scale)
- Quality: weighted average of IMDb / Trakt / Metacritic / Rotten Tomatoes,
  re-normalized over the sources present, plus vote confidence
- Freshness: exponential decay since release with a floor, so classics never
  drop to zero

Items with very few votes are penalized to keep "new junk" with a handful of
extreme ratings from ranking high.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Optional

from ratingo.core.config import settings
from ratingo.utils.timezone import days_since

NEUTRAL_RATING = 5.0


@dataclass
class ScoreConfig:
    weights: Dict[str, float]
    rating_weights: Dict[str, float]
    tmdb_popularity_max: float = 500.0
    trakt_watchers_max: float = 10000.0
    vote_confidence_k: float = 5000.0
    freshness_decay_days: float = 180.0
    freshness_min_floor: float = 0.2
    low_vote_threshold: int = 100
    low_vote_penalty: float = 0.7

    @classmethod
    def from_settings(cls) -> "ScoreConfig":
        return cls(
            weights=dict(settings.score_weights),
            rating_weights=dict(settings.score_rating_weights),
            tmdb_popularity_max=settings.score_tmdb_popularity_max,
            trakt_watchers_max=settings.score_trakt_watchers_max,
            vote_confidence_k=settings.score_vote_confidence_k,
            freshness_decay_days=settings.score_freshness_decay_days,
            freshness_min_floor=settings.score_freshness_min_floor,
            low_vote_threshold=settings.score_low_vote_threshold,
            low_vote_penalty=settings.score_low_vote_penalty,
        )


@dataclass
class ScoreInput:
    tmdb_popularity: float = 0.0
    trakt_watchers: float = 0.0
    # 0-10 scale
    imdb_rating: Optional[float] = None
    trakt_rating: Optional[float] = None
    # 0-100 scale
    metacritic_rating: Optional[float] = None
    rotten_tomatoes_rating: Optional[float] = None
    imdb_votes: Optional[int] = None
    trakt_votes: Optional[int] = None
    release_date: Optional[date] = None


@dataclass
class ScoreOutput:
    ratingo_score: float  # 0-100
    quality_score: float  # 0-1
    popularity_score: float  # 0-1
    freshness_score: float  # 0-1


def clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


class ScoreCalculator:
    def __init__(self, config: Optional[ScoreConfig] = None):
        self.config = config or ScoreConfig.from_settings()

    def average_rating(
        self,
        imdb: Optional[float] = None,
        trakt: Optional[float] = None,
        metacritic: Optional[float] = None,
        rotten_tomatoes: Optional[float] = None,
    ) -> float:
        """Weighted average on a 0-10 scale over the sources that are present."""
        w = self.config.rating_weights
        sources = [
            (imdb, w["imdb"]),
            (trakt, w["trakt"]),
            (metacritic / 10 if metacritic is not None else None, w["metacritic"]),
            (rotten_tomatoes / 10 if rotten_tomatoes is not None else None, w["rotten_tomatoes"]),
        ]
        active = [(v, wt) for v, wt in sources if v is not None and math.isfinite(v)]
        if not active:
            return NEUTRAL_RATING
        total_weight = sum(wt for _, wt in active)
        return sum(v * wt for v, wt in active) / total_weight

    def freshness(self, release_date: Optional[date], now: Optional[datetime] = None) -> float:
        floor = self.config.freshness_min_floor
        days = days_since(release_date, now)
        if days is None:
            # unknown release date counts as old
            return floor
        decay = math.exp(-days / self.config.freshness_decay_days)
        return clamp(max(decay, floor), 0.0, 1.0)

    def calculate(self, data: ScoreInput, now: Optional[datetime] = None) -> ScoreOutput:
        cfg = self.config
        w = cfg.weights

        popularity_norm = clamp((data.tmdb_popularity or 0.0) / cfg.tmdb_popularity_max, 0.0, 1.0)
        watchers_norm = clamp(
            math.log1p(max(data.trakt_watchers or 0.0, 0.0)) / math.log1p(cfg.trakt_watchers_max),
            0.0,
            1.0,
        )
        avg_rating = self.average_rating(
            data.imdb_rating,
            data.trakt_rating,
            data.metacritic_rating,
            data.rotten_tomatoes_rating,
        )
        avg_rating_norm = clamp(avg_rating / 10.0, 0.0, 1.0)
        total_votes = (data.imdb_votes or 0) + (data.trakt_votes or 0)
        confidence_norm = clamp(1.0 - math.exp(-total_votes / cfg.vote_confidence_k), 0.0, 1.0)
        freshness_norm = self.freshness(data.release_date, now)

        popularity = popularity_norm * w["tmdb_popularity"] + watchers_norm * w["trakt_watchers"]
        quality = avg_rating_norm * w["avg_rating"] + confidence_norm * w["vote_confidence"]
        fresh = freshness_norm * w["freshness"]

        composite = popularity + quality + fresh
        if total_votes < cfg.low_vote_threshold:
            composite *= cfg.low_vote_penalty

        return ScoreOutput(
            ratingo_score=round(clamp(composite, 0.0, 1.0) * 100, 2),
            quality_score=clamp(quality / (w["avg_rating"] + w["vote_confidence"]), 0.0, 1.0),
            popularity_score=clamp(popularity / (w["tmdb_popularity"] + w["trakt_watchers"]), 0.0, 1.0),
            freshness_score=clamp(freshness_norm, 0.0, 1.0),
        )
