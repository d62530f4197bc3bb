"""
RankingEngine: the operations exposed to the request tier.

    submit_result          validate, persist a ScoreRecord, update the aggregate
    get_global_leaderboard cross-game ordering of active players
    get_game_leaderboard   per-game best-of ordering
    get_player_stats       aggregate snapshot + per-game stats + rank
    run_recomputation      idempotent rebuild of derived aggregate fields

plus the player lifecycle hooks and the per-game analytics reads.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from aggregates import (
    GameStatsSnapshot,
    PlayerUpdater,
    apply_submission,
    create_player,
    load_game_stats,
    new_game_stats,
    refresh_derived,
    snapshot_game_stats,
)
from config import Config
from database import translate_storage_errors
from errors import PlayerNotFoundError, ValidationError
from game_types import GameType, parse_game_type
from leaderboard import (
    GameLeaderboard,
    GameLeaderboardEntry,
    LeaderboardEntry,
    LeaderboardMode,
    check_page,
    count_ranked_players,
    global_leaderboard,
    global_rank,
)
from models import Player, PlayerAggregate, PlayerGameStats, ScoreRecord, utcnow
from ranking import DEFAULT_FORMULA, RankingFormula, round_half_up
from recompute import RecomputationJob, RecomputationResult
import store

logger = logging.getLogger(__name__)

MAX_ANALYTICS_DAYS = 365


@dataclass(frozen=True)
class SubmissionResult:
    record_id: int
    player_id: int
    game_type: GameType
    accuracy_pct: int
    session_score: int
    new_total_score: float
    new_level: int
    new_composite_score: int


@dataclass(frozen=True)
class PlayerStats:
    player_id: int
    display_name: str
    is_active: bool
    total_score: float
    games_played: int
    average_score: float
    level: int
    streak: int
    composite_score: int
    rank: Optional[int]
    game_stats: Dict[GameType, GameStatsSnapshot]


@dataclass(frozen=True)
class PerformanceComparison:
    player_id: int
    game_type: GameType
    metric: str
    best_record: ScoreRecord
    percentile: int
    average_score: float
    average_duration: float
    average_accuracy: float
    score_vs_avg: float
    duration_vs_avg: float
    accuracy_vs_avg: float


@dataclass(frozen=True)
class PlayerAnalytics:
    player_id: int
    total_results: int
    activity: List[store.DailyActivity]
    by_game: List[store.PlayerGamePerformance]


class RankingEngine:
    """Facade wiring the store, the aggregate protocol and the query engine."""

    def __init__(
        self,
        session_factory,
        formula: RankingFormula = DEFAULT_FORMULA,
        game_leaderboard_mode: LeaderboardMode = None,
        timeout_seconds: float = None,
        max_attempts: int = None,
        max_page_size: int = None,
    ):
        self.session_factory = session_factory
        self.formula = formula
        self.max_page_size = max_page_size or Config.MAX_PAGE_SIZE
        self.updater = PlayerUpdater(
            session_factory,
            timeout_seconds=Config.STORE_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds,
            max_attempts=max_attempts or Config.UPDATE_MAX_ATTEMPTS,
        )
        self.game_leaderboard = GameLeaderboard(game_leaderboard_mode or Config.GAME_LEADERBOARD_MODE)
        self.recomputation = RecomputationJob(session_factory, self.updater, formula)

    # ── Player lifecycle ─────────────────────────────────────────

    def register_player(self, username: str, is_active: bool = True) -> int:
        """Create a player with zeroed aggregate and stats; returns the new id."""
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("username", username, "must be a non-empty string")
        with self.session_factory() as session:
            with translate_storage_errors("register_player"):
                try:
                    player = create_player(session, username.strip(), is_active=is_active)
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    raise ValidationError("username", username, "is already taken") from None
            logger.info("Registered player %d (%s)", player.id, player.username)
            return player.id

    def set_player_active(self, player_id: int, is_active: bool):
        with self.session_factory() as session, translate_storage_errors("set_player_active", player_id):
            player = session.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)
            player.is_active = is_active
            session.commit()
        logger.info("Player %d marked %s", player_id, "active" if is_active else "inactive")

    def set_streak(self, player_id: int, streak: int) -> int:
        """Store the externally computed streak and return the new composite score."""
        if isinstance(streak, bool) or not isinstance(streak, int) or streak < 0:
            raise ValidationError("streak", streak, "must be a non-negative integer", player_id=player_id)

        def mutate(session, aggregate):
            aggregate.streak = streak
            refresh_derived(aggregate, self.formula)
            aggregate.updated_at = utcnow()
            return aggregate.composite_score

        return self.updater.run(player_id, mutate, operation="set_streak")

    # ── Submission ───────────────────────────────────────────────

    def submit_result(
        self,
        player_id: int,
        game_type,
        score,
        level,
        duration_seconds,
        correct_answers=0,
        total_questions=0,
    ) -> SubmissionResult:
        """
        Accept one game session.

        The record insert and the aggregate update commit together; a
        conflicting concurrent update for the same player replays both.
        """
        submission = store.validate_submission(
            player_id, game_type, score, level, duration_seconds, correct_answers, total_questions
        )

        def mutate(session, aggregate):
            played_at = utcnow()
            record = store.build_record(submission, self.formula, created_at=played_at)
            session.add(record)

            stats = session.scalars(
                select(PlayerGameStats).where(
                    PlayerGameStats.player_id == player_id,
                    PlayerGameStats.game_type == submission.game_type.value,
                )
            ).first()
            if stats is None:
                stats = new_game_stats(player_id, submission.game_type)
                session.add(stats)

            apply_submission(aggregate, stats, submission.score, played_at, self.formula)
            session.flush()
            return SubmissionResult(
                record_id=record.id,
                player_id=player_id,
                game_type=submission.game_type,
                accuracy_pct=record.accuracy_pct,
                session_score=record.session_ranking_score,
                new_total_score=aggregate.total_score,
                new_level=aggregate.level,
                new_composite_score=aggregate.composite_score,
            )

        result = self.updater.run(player_id, mutate, operation="submit_result")
        logger.info(
            "Result %s submitted for player %d (score=%s, session=%d, total=%s, composite=%d)",
            submission.game_type.value, player_id, submission.score,
            result.session_score, result.new_total_score, result.new_composite_score,
        )
        return result

    # ── Leaderboards ─────────────────────────────────────────────

    def get_global_leaderboard(self, limit: int = None, offset: int = 0) -> List[LeaderboardEntry]:
        limit = Config.DEFAULT_PAGE_SIZE if limit is None else limit
        check_page(limit, offset, self.max_page_size)
        with self.session_factory() as session, translate_storage_errors("global_leaderboard"):
            return global_leaderboard(session, limit, offset)

    def count_global_players(self) -> int:
        with self.session_factory() as session, translate_storage_errors("global_leaderboard"):
            return count_ranked_players(session)

    def get_game_leaderboard(self, game_type, limit: int = None, offset: int = 0) -> List[GameLeaderboardEntry]:
        game = parse_game_type(game_type)
        limit = Config.DEFAULT_PAGE_SIZE if limit is None else limit
        check_page(limit, offset, self.max_page_size)
        with self.session_factory() as session, translate_storage_errors("game_leaderboard"):
            return self.game_leaderboard.query(session, game, limit, offset)

    def count_game_players(self, game_type) -> int:
        game = parse_game_type(game_type)
        with self.session_factory() as session, translate_storage_errors("game_leaderboard"):
            return self.game_leaderboard.count(session, game)

    # ── Player reads ─────────────────────────────────────────────

    def get_player_stats(self, player_id: int) -> PlayerStats:
        with self.session_factory() as session, translate_storage_errors("player_stats", player_id):
            row = session.execute(
                select(Player, PlayerAggregate)
                .join(PlayerAggregate, PlayerAggregate.player_id == Player.id)
                .where(Player.id == player_id)
            ).first()
            if row is None:
                raise PlayerNotFoundError(player_id)
            player, aggregate = row

            rank = global_rank(session, aggregate) if player.is_active else None
            return PlayerStats(
                player_id=player.id,
                display_name=player.username,
                is_active=player.is_active,
                total_score=aggregate.total_score,
                games_played=aggregate.games_played,
                average_score=aggregate.average_score,
                level=aggregate.level,
                streak=aggregate.streak,
                composite_score=aggregate.composite_score,
                rank=rank,
                game_stats=snapshot_game_stats(load_game_stats(session, player_id)),
            )

    def get_player_history(self, player_id: int, game_type, limit: int = 20) -> List[ScoreRecord]:
        game = parse_game_type(game_type)
        check_page(limit, 0, self.max_page_size)
        with self.session_factory() as session, translate_storage_errors("player_history", player_id):
            if session.get(Player, player_id) is None:
                raise PlayerNotFoundError(player_id)
            return store.get_player_history(session, player_id, game, limit)

    def get_game_analytics(self, game_type) -> store.GameAnalytics:
        game = parse_game_type(game_type)
        with self.session_factory() as session, translate_storage_errors("game_analytics"):
            return store.get_game_analytics(session, game)

    def get_performance_over_time(self, game_type, days: int = 30) -> List[store.DailyPerformance]:
        game = parse_game_type(game_type)
        self._check_days(days)
        with self.session_factory() as session, translate_storage_errors("performance_over_time"):
            return store.get_performance_over_time(session, game, days)

    def get_level_distribution(self, game_type) -> List[store.LevelBucket]:
        game = parse_game_type(game_type)
        with self.session_factory() as session, translate_storage_errors("level_distribution"):
            return store.get_level_distribution(session, game)

    def get_player_analytics(self, player_id: int, days: int = 30) -> PlayerAnalytics:
        """Daily activity and per-game totals for one player."""
        self._check_days(days)
        with self.session_factory() as session, translate_storage_errors("player_analytics", player_id):
            if session.get(Player, player_id) is None:
                raise PlayerNotFoundError(player_id)
            return PlayerAnalytics(
                player_id=player_id,
                total_results=session.scalar(
                    select(func.count(ScoreRecord.id)).where(ScoreRecord.player_id == player_id)
                ),
                activity=store.get_player_activity(session, player_id, days),
                by_game=store.get_player_performance_by_game(session, player_id),
            )

    @staticmethod
    def _check_days(days):
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_ANALYTICS_DAYS:
            raise ValidationError("days", days, f"must be an integer between 1 and {MAX_ANALYTICS_DAYS}")

    def compare_performance(self, player_id: int, game_type, metric: str = "score") -> Optional[PerformanceComparison]:
        """
        Compare the player's best record for a game against everyone's.

        ``metric`` is one of score, accuracy_pct or duration_seconds; lower is
        better for durations and for the score of time-scored games. Returns
        None when the player has no records for that game.
        """
        game = parse_game_type(game_type)
        if metric not in store.COMPARISON_METRICS:
            raise ValidationError(
                "metric", metric, f"must be one of {', '.join(store.COMPARISON_METRICS)}",
                player_id=player_id, game_type=game.value,
            )
        with self.session_factory() as session, translate_storage_errors("compare_performance", player_id):
            if session.get(Player, player_id) is None:
                raise PlayerNotFoundError(player_id)
            best = store.get_player_best(session, player_id, game, metric)
            if best is None:
                return None

            total = store.count_records(session, game)
            better = store.count_better_records(session, game, getattr(best, metric), metric)
            analytics = store.get_game_analytics(session, game)

        percentile = round_half_up((total - better) / total * 100) if total > 0 else 0
        return PerformanceComparison(
            player_id=player_id,
            game_type=game,
            metric=metric,
            best_record=best,
            percentile=percentile,
            average_score=analytics.average_score,
            average_duration=analytics.average_duration,
            average_accuracy=analytics.average_accuracy,
            score_vs_avg=best.score - analytics.average_score,
            duration_vs_avg=best.duration_seconds - analytics.average_duration,
            accuracy_vs_avg=best.accuracy_pct - analytics.average_accuracy,
        )

    # ── Batch ────────────────────────────────────────────────────

    def run_recomputation(self, stop_event=None, start_after: int = None, include_sessions: bool = False) -> RecomputationResult:
        return self.recomputation.run(stop_event=stop_event, start_after=start_after, include_sessions=include_sessions)
