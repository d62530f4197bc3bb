"""
ScoreRecord store: ingestion validation, record construction and the
read-side queries over individual sessions.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from numbers import Real
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from errors import ValidationError
from game_types import GameType, is_time_scored, parse_game_type
from models import ScoreRecord, utcnow
from ranking import DEFAULT_FORMULA, RankingFormula, accuracy_pct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Submission:
    """A validated, normalized game submission."""

    player_id: int
    game_type: GameType
    score: float
    level: int
    duration_seconds: float
    correct_answers: int = 0
    total_questions: int = 0

    @property
    def accuracy_pct(self) -> int:
        return accuracy_pct(self.correct_answers, self.total_questions)


@dataclass(frozen=True)
class GameAnalytics:
    game_type: GameType
    total_games: int
    average_score: float
    max_score: float
    min_score: float
    average_duration: float
    average_accuracy: float
    unique_players: int


@dataclass(frozen=True)
class DailyPerformance:
    date: str
    games_played: int
    average_score: float
    average_duration: float
    average_accuracy: float
    unique_players: int


@dataclass(frozen=True)
class LevelBucket:
    level: int
    count: int
    average_score: float
    average_duration: float
    average_accuracy: float


@dataclass(frozen=True)
class DailyActivity:
    date: str
    games_played: int
    average_score: float


@dataclass(frozen=True)
class PlayerGamePerformance:
    game_type: GameType
    games_played: int
    average_score: float
    best_score: float
    average_duration: float


def _number(field, value, player_id, game_type) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError(field, value, "must be a number", player_id, game_type)
    if not math.isfinite(value):
        raise ValidationError(field, value, "must be finite", player_id, game_type)
    return float(value)


def _integer(field, value, player_id, game_type) -> int:
    number = _number(field, value, player_id, game_type)
    if not number.is_integer():
        raise ValidationError(field, value, "must be a whole number", player_id, game_type)
    return int(number)


def validate_submission(
    player_id: int,
    game_type,
    score,
    level,
    duration_seconds,
    correct_answers=0,
    total_questions=0,
) -> Submission:
    """
    Check a raw submission and return its normalized form.

    Raises UnknownGameTypeError for a game outside the catalogue and
    ValidationError for negative score, level < 1, duration <= 0, negative
    counts or correct_answers > total_questions.
    """
    game = parse_game_type(game_type)
    tag = game.value

    score = _number("score", score, player_id, tag)
    if score < 0:
        raise ValidationError("score", score, "must be non-negative", player_id, tag)

    level = _integer("level", level, player_id, tag)
    if level < 1:
        raise ValidationError("level", level, "must be at least 1", player_id, tag)

    duration_seconds = _number("duration_seconds", duration_seconds, player_id, tag)
    if duration_seconds <= 0:
        raise ValidationError("duration_seconds", duration_seconds, "must be positive", player_id, tag)

    correct_answers = _integer("correct_answers", correct_answers or 0, player_id, tag)
    total_questions = _integer("total_questions", total_questions or 0, player_id, tag)
    if correct_answers < 0:
        raise ValidationError("correct_answers", correct_answers, "must be non-negative", player_id, tag)
    if total_questions < 0:
        raise ValidationError("total_questions", total_questions, "must be non-negative", player_id, tag)
    if correct_answers > total_questions:
        raise ValidationError(
            "correct_answers", correct_answers,
            f"cannot exceed total_questions ({total_questions})", player_id, tag,
        )

    return Submission(
        player_id=player_id,
        game_type=game,
        score=score,
        level=level,
        duration_seconds=duration_seconds,
        correct_answers=correct_answers,
        total_questions=total_questions,
    )


def build_record(
    submission: Submission,
    formula: RankingFormula = DEFAULT_FORMULA,
    created_at: Optional[datetime] = None,
) -> ScoreRecord:
    """Create the ScoreRecord row with accuracy and session score attached."""
    record = ScoreRecord(
        player_id=submission.player_id,
        game_type=submission.game_type.value,
        score=submission.score,
        level=submission.level,
        duration_seconds=submission.duration_seconds,
        correct_answers=submission.correct_answers,
        total_questions=submission.total_questions,
        accuracy_pct=submission.accuracy_pct,
        created_at=created_at or utcnow(),
    )
    record.session_ranking_score = formula.session_score(record)
    return record


def get_player_history(session: Session, player_id: int, game_type: GameType, limit: int = 20):
    """Most recent records of one player for one game type, newest first."""
    return session.scalars(
        select(ScoreRecord)
        .where(ScoreRecord.player_id == player_id, ScoreRecord.game_type == game_type.value)
        .order_by(ScoreRecord.created_at.desc(), ScoreRecord.id.desc())
        .limit(limit)
    ).all()


COMPARISON_METRICS = ("score", "accuracy_pct", "duration_seconds")


def lower_is_better(game_type: GameType, metric: str = "score") -> bool:
    if metric == "score":
        return is_time_scored(game_type)
    return metric == "duration_seconds"


def get_player_best(session: Session, player_id: int, game_type: GameType, metric: str = "score") -> Optional[ScoreRecord]:
    """Best record of a player for a game on ``metric`` (lowest for times and durations)."""
    column = getattr(ScoreRecord, metric)
    order = column.asc() if lower_is_better(game_type, metric) else column.desc()
    return session.scalars(
        select(ScoreRecord)
        .where(ScoreRecord.player_id == player_id, ScoreRecord.game_type == game_type.value)
        .order_by(order, ScoreRecord.created_at.asc(), ScoreRecord.id.asc())
        .limit(1)
    ).first()


def count_records(session: Session, game_type: GameType) -> int:
    return session.scalar(
        select(func.count(ScoreRecord.id)).where(ScoreRecord.game_type == game_type.value)
    ) or 0


def count_better_records(session: Session, game_type: GameType, value: float, metric: str = "score") -> int:
    """Records of the game type strictly better than ``value`` on ``metric``."""
    column = getattr(ScoreRecord, metric)
    better = column < value if lower_is_better(game_type, metric) else column > value
    return session.scalar(
        select(func.count(ScoreRecord.id)).where(ScoreRecord.game_type == game_type.value, better)
    ) or 0


def get_game_analytics(session: Session, game_type: GameType) -> GameAnalytics:
    row = session.execute(
        select(
            func.count(ScoreRecord.id),
            func.avg(ScoreRecord.score),
            func.max(ScoreRecord.score),
            func.min(ScoreRecord.score),
            func.avg(ScoreRecord.duration_seconds),
            func.avg(ScoreRecord.accuracy_pct),
            func.count(func.distinct(ScoreRecord.player_id)),
        ).where(ScoreRecord.game_type == game_type.value)
    ).one()

    total, avg_score, max_score, min_score, avg_duration, avg_accuracy, unique_players = row
    return GameAnalytics(
        game_type=game_type,
        total_games=total or 0,
        average_score=round(float(avg_score or 0), 2),
        max_score=float(max_score or 0),
        min_score=float(min_score or 0),
        average_duration=round(float(avg_duration or 0), 2),
        average_accuracy=round(float(avg_accuracy or 0), 2),
        unique_players=unique_players or 0,
    )


def _avg(value) -> float:
    return round(float(value or 0), 2)


def get_performance_over_time(session: Session, game_type: GameType, days: int = 30) -> List[DailyPerformance]:
    """Per-day figures for one game over the last ``days`` days, oldest day first."""
    since = utcnow() - timedelta(days=days)
    day = func.date(ScoreRecord.created_at)
    rows = session.execute(
        select(
            day,
            func.count(ScoreRecord.id),
            func.avg(ScoreRecord.score),
            func.avg(ScoreRecord.duration_seconds),
            func.avg(ScoreRecord.accuracy_pct),
            func.count(func.distinct(ScoreRecord.player_id)),
        )
        .where(ScoreRecord.game_type == game_type.value, ScoreRecord.created_at >= since)
        .group_by(day)
        .order_by(day)
    ).all()
    return [
        DailyPerformance(
            date=str(date),
            games_played=count,
            average_score=_avg(avg_score),
            average_duration=_avg(avg_duration),
            average_accuracy=_avg(avg_accuracy),
            unique_players=players,
        )
        for date, count, avg_score, avg_duration, avg_accuracy, players in rows
    ]


def get_level_distribution(session: Session, game_type: GameType) -> List[LevelBucket]:
    rows = session.execute(
        select(
            ScoreRecord.level,
            func.count(ScoreRecord.id),
            func.avg(ScoreRecord.score),
            func.avg(ScoreRecord.duration_seconds),
            func.avg(ScoreRecord.accuracy_pct),
        )
        .where(ScoreRecord.game_type == game_type.value)
        .group_by(ScoreRecord.level)
        .order_by(ScoreRecord.level)
    ).all()
    return [
        LevelBucket(
            level=level,
            count=count,
            average_score=_avg(avg_score),
            average_duration=_avg(avg_duration),
            average_accuracy=_avg(avg_accuracy),
        )
        for level, count, avg_score, avg_duration, avg_accuracy in rows
    ]


def get_player_activity(session: Session, player_id: int, days: int = 30) -> List[DailyActivity]:
    """The player's most recent ``days`` active days across all games, oldest first."""
    day = func.date(ScoreRecord.created_at)
    rows = session.execute(
        select(
            day,
            func.count(ScoreRecord.id),
            func.avg(ScoreRecord.score),
        )
        .where(ScoreRecord.player_id == player_id)
        .group_by(day)
        .order_by(day.desc())
        .limit(days)
    ).all()
    return [
        DailyActivity(date=str(date), games_played=count, average_score=_avg(avg_score))
        for date, count, avg_score in reversed(rows)
    ]


def get_player_performance_by_game(session: Session, player_id: int) -> List[PlayerGamePerformance]:
    """Per game type totals for one player; best is the minimum for time-scored games."""
    rows = session.execute(
        select(
            ScoreRecord.game_type,
            func.count(ScoreRecord.id),
            func.avg(ScoreRecord.score),
            func.max(ScoreRecord.score),
            func.min(ScoreRecord.score),
            func.avg(ScoreRecord.duration_seconds),
        )
        .where(ScoreRecord.player_id == player_id)
        .group_by(ScoreRecord.game_type)
        .order_by(ScoreRecord.game_type)
    ).all()

    performance = []
    for raw_type, count, avg_score, max_score, min_score, avg_duration in rows:
        try:
            game_type = GameType(raw_type)
        except ValueError:
            logger.warning("Ignoring records of retired game type %r for player %s", raw_type, player_id)
            continue
        performance.append(
            PlayerGamePerformance(
                game_type=game_type,
                games_played=count,
                average_score=_avg(avg_score),
                best_score=float(min_score if is_time_scored(game_type) else max_score),
                average_duration=_avg(avg_duration),
            )
        )
    return performance


def recompute_session_scores(session: Session, player_id: int, formula: RankingFormula = DEFAULT_FORMULA) -> int:
    """Rewrite stale session_ranking_score values for one player; returns how many changed."""
    changed = 0
    for record in session.scalars(select(ScoreRecord).where(ScoreRecord.player_id == player_id)):
        stale = False
        expected_accuracy = accuracy_pct(record.correct_answers, record.total_questions)
        if record.accuracy_pct != expected_accuracy:
            record.accuracy_pct = expected_accuracy
            stale = True
        expected = formula.session_score(record)
        if record.session_ranking_score != expected:
            record.session_ranking_score = expected
            stale = True
        if stale:
            changed += 1
    return changed
