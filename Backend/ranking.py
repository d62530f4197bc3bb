"""
Ranking formulas.

Pure functions, no I/O. Two entry points:

  session_score(record)      — per-session contribution, stored on each ScoreRecord
                               and used by the per-game leaderboards
  composite_score(aggregate) — whole-player value used by the global leaderboard

The weights live in named, immutable constant sets so the formula can be
replaced as a unit. Historic composite values are only comparable after a
full recomputation run following any weight change.
"""

import math
from dataclasses import dataclass

LEVEL_POINTS = 1000


@dataclass(frozen=True)
class SessionWeights:
    score: float = 0.6
    level: float = 50
    accuracy: float = 2
    duration_numerator: float = 3600
    duration_factor: float = 0.5


@dataclass(frozen=True)
class CompositeWeights:
    total_score: float = 0.5
    level: float = 150
    games_played: float = 3
    average_score: float = 0.3
    streak: float = 10


CURRENT_SESSION_WEIGHTS = SessionWeights()
CURRENT_COMPOSITE_WEIGHTS = CompositeWeights()

# Earlier leaderboard revision; kept for comparison and rollback.
LEGACY_COMPOSITE_WEIGHTS = CompositeWeights(
    total_score=0.7, level=100, games_played=2, average_score=0, streak=0,
)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (5.5 -> 6, 6.5 -> 7)."""
    return int(math.floor(value + 0.5))


def accuracy_pct(correct_answers: int, total_questions: int) -> int:
    if total_questions > 0:
        return round_half_up(correct_answers / total_questions * 100)
    return 0


def level_for_total(total_score: float) -> int:
    return int(math.floor(total_score / LEVEL_POINTS)) + 1


def running_average(old_average: float, old_count: int, new_value: float) -> float:
    """
    Fold one value into an average of ``old_count`` values.

    Equivalent to (oldAvg * (n - 1) + newValue) / n with n the post-increment
    count. Every incremental average in the service goes through here.
    """
    new_count = old_count + 1
    return (old_average * old_count + new_value) / new_count


def duration_bonus(duration_seconds: float, weights: SessionWeights = CURRENT_SESSION_WEIGHTS) -> float:
    if duration_seconds > 0:
        return (weights.duration_numerator / duration_seconds) * weights.duration_factor
    return 0.0


@dataclass(frozen=True)
class RankingFormula:
    """A complete, swappable set of ranking weights."""

    session: SessionWeights = CURRENT_SESSION_WEIGHTS
    composite: CompositeWeights = CURRENT_COMPOSITE_WEIGHTS

    def session_score(self, record) -> int:
        """
        Ranking contribution of a single session.

        ``record`` needs ``score``, ``level``, ``accuracy_pct`` and
        ``duration_seconds`` attributes (a ScoreRecord row or anything shaped
        like one).
        """
        w = self.session
        return round_half_up(
            record.score * w.score
            + record.level * w.level
            + record.accuracy_pct * w.accuracy
            + duration_bonus(record.duration_seconds, w)
        )

    def composite_score(self, aggregate) -> int:
        """
        Whole-player ranking value from ``total_score``, ``level``,
        ``games_played``, ``average_score`` and ``streak``.
        """
        w = self.composite
        return round_half_up(
            aggregate.total_score * w.total_score
            + aggregate.level * w.level
            + aggregate.games_played * w.games_played
            + aggregate.average_score * w.average_score
            + (aggregate.streak or 0) * w.streak
        )


DEFAULT_FORMULA = RankingFormula()


def session_score(record) -> int:
    return DEFAULT_FORMULA.session_score(record)


def composite_score(aggregate) -> int:
    return DEFAULT_FORMULA.composite_score(aggregate)
