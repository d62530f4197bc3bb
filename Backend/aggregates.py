"""
Player aggregate update protocol.

Every mutation of a PlayerAggregate (a submission, a streak change, a
recomputation) runs through PlayerUpdater.run(), which executes the
read-modify-write inside one transaction guarded by the aggregate's version
column. A concurrent writer for the same player makes the UPDATE match zero
rows, SQLAlchemy raises StaleDataError, and the whole transaction is rolled
back and replayed. Different players never touch the same row.
"""

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from database import is_contention_error
from errors import PlayerNotFoundError, StorageTimeoutError
from game_types import GameType, is_time_scored
from models import Player, PlayerAggregate, PlayerGameStats
from ranking import DEFAULT_FORMULA, RankingFormula, level_for_total, running_average

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateFigures:
    """The inputs of the composite formula, derived from the two counters."""

    total_score: float
    games_played: int
    average_score: float
    level: int
    streak: int


@dataclass(frozen=True)
class GameStatsSnapshot:
    game_type: GameType
    best_value: float
    games_played: int
    average_value: float
    last_played_at: Optional[datetime]
    is_time_scored: bool

    @property
    def best_score(self) -> Optional[float]:
        return None if self.is_time_scored else self.best_value

    @property
    def best_time(self) -> Optional[float]:
        return self.best_value if self.is_time_scored else None


def derive_figures(total_score: float, games_played: int, streak: int) -> AggregateFigures:
    average = total_score / games_played if games_played > 0 else 0.0
    return AggregateFigures(
        total_score=total_score,
        games_played=games_played,
        average_score=average,
        level=level_for_total(total_score),
        streak=streak or 0,
    )


def refresh_derived(aggregate: PlayerAggregate, formula: RankingFormula = DEFAULT_FORMULA) -> bool:
    """
    Recompute average, level and composite from the stored counters.

    Only assigns attributes whose value actually changes, so an unchanged
    aggregate stays clean in the session. Returns True if anything changed.
    """
    figures = derive_figures(aggregate.total_score, aggregate.games_played, aggregate.streak)
    composite = formula.composite_score(figures)

    changed = False
    for name, value in (
        ("average_score", figures.average_score),
        ("level", figures.level),
        ("composite_score", composite),
    ):
        if getattr(aggregate, name) != value:
            setattr(aggregate, name, value)
            changed = True
    return changed


def new_aggregate(player_id: int) -> PlayerAggregate:
    aggregate = PlayerAggregate(
        player_id=player_id,
        total_score=0.0,
        games_played=0,
        average_score=0.0,
        level=1,
        streak=0,
        composite_score=0,
    )
    refresh_derived(aggregate)
    return aggregate


def new_game_stats(player_id: int, game_type: GameType) -> PlayerGameStats:
    return PlayerGameStats(
        player_id=player_id,
        game_type=game_type.value,
        best_value=0.0,
        games_played=0,
        average_value=0.0,
        last_played_at=None,
    )


def apply_to_game_stats(stats: PlayerGameStats, value: float, played_at: datetime):
    """Fold one session into a per-game stats row."""
    previous_count = stats.games_played or 0
    time_scored = is_time_scored(GameType(stats.game_type))

    if previous_count == 0:
        stats.best_value = value
    elif time_scored:
        stats.best_value = min(stats.best_value, value)
    else:
        stats.best_value = max(stats.best_value, value)

    stats.average_value = running_average(stats.average_value or 0.0, previous_count, value)
    stats.games_played = previous_count + 1
    stats.last_played_at = played_at


def apply_submission(
    aggregate: PlayerAggregate,
    stats: PlayerGameStats,
    score: float,
    played_at: datetime,
    formula: RankingFormula = DEFAULT_FORMULA,
):
    """Steps of the incremental protocol for one accepted session."""
    aggregate.games_played = (aggregate.games_played or 0) + 1
    aggregate.total_score = (aggregate.total_score or 0.0) + score
    apply_to_game_stats(stats, score, played_at)
    refresh_derived(aggregate, formula)
    aggregate.updated_at = played_at


def load_game_stats(session: Session, player_id: int) -> Dict[GameType, PlayerGameStats]:
    rows = session.scalars(select(PlayerGameStats).where(PlayerGameStats.player_id == player_id)).all()
    stats = {}
    for row in rows:
        try:
            stats[GameType(row.game_type)] = row
        except ValueError:
            logger.warning("Ignoring stats row for retired game type %r (player %s)", row.game_type, player_id)
    return stats


def backfill_game_stats(session: Session, player_id: int, existing: Dict[GameType, PlayerGameStats]) -> List[PlayerGameStats]:
    """Add zeroed rows for every game type the player has no stats for yet."""
    created = []
    for game_type in GameType:
        if game_type not in existing:
            row = new_game_stats(player_id, game_type)
            session.add(row)
            existing[game_type] = row
            created.append(row)
    return created


def snapshot_game_stats(stats: Dict[GameType, PlayerGameStats]) -> Dict[GameType, GameStatsSnapshot]:
    return {
        game_type: GameStatsSnapshot(
            game_type=game_type,
            best_value=row.best_value,
            games_played=row.games_played,
            average_value=row.average_value,
            last_played_at=row.last_played_at,
            is_time_scored=is_time_scored(game_type),
        )
        for game_type, row in sorted(stats.items(), key=lambda item: item[0].value)
    }


def is_stats_row_race(exc: IntegrityError) -> bool:
    """True when two writers inserted the same (player, game type) stats row."""
    message = str(exc.orig if exc.orig is not None else exc).lower()
    # PostgreSQL names the constraint, SQLite names the columns
    return "uq_player_game_stats" in message or "player_game_stats.player_id" in message


class PlayerUpdater:
    """Runs per-player read-modify-write transactions with optimistic retries."""

    def __init__(
        self,
        session_factory,
        timeout_seconds: float = 10.0,
        max_attempts: int = 50,
        base_delay: float = 0.005,
        max_delay: float = 0.25,
    ):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def run(self, player_id: int, mutate: Callable[[Session, PlayerAggregate], object], operation: str = "update"):
        """
        Load the player's aggregate, call ``mutate(session, aggregate)`` and
        commit. ``mutate`` may run several times and must not have effects
        outside the session. Returns whatever ``mutate`` returns.

        Raises PlayerNotFoundError when the player has no aggregate and
        StorageTimeoutError once the attempt cap or the deadline is reached.
        """
        deadline = time.monotonic() + self.timeout_seconds
        attempt = 0
        last_error = None

        while True:
            attempt += 1
            session = self.session_factory()
            try:
                aggregate = session.scalars(
                    select(PlayerAggregate).where(PlayerAggregate.player_id == player_id)
                ).first()
                if aggregate is None:
                    raise PlayerNotFoundError(player_id)

                result = mutate(session, aggregate)
                session.commit()
                if attempt > 1:
                    logger.debug("%s for player %s succeeded on attempt %d", operation, player_id, attempt)
                return result
            except StaleDataError as exc:
                session.rollback()
                last_error = exc
            except IntegrityError as exc:
                session.rollback()
                if not is_stats_row_race(exc):
                    raise
                last_error = exc
            except (OperationalError, PoolTimeoutError) as exc:
                session.rollback()
                if not is_contention_error(exc):
                    raise
                last_error = exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

            delay = min(self.max_delay, self.base_delay * (2 ** min(attempt - 1, 10)))
            delay *= random.uniform(0.5, 1.5)
            if attempt >= self.max_attempts or time.monotonic() + delay > deadline:
                logger.warning(
                    "%s for player %s gave up after %d attempts: %s", operation, player_id, attempt, last_error
                )
                raise StorageTimeoutError(operation, player_id=player_id, attempts=attempt, details=str(last_error))
            logger.debug("Conflict on %s for player %s (attempt %d), retrying in %.3fs", operation, player_id, attempt, delay)
            time.sleep(delay)


def create_player(session: Session, username: str, is_active: bool = True) -> Player:
    """Insert a player with a zeroed aggregate and one stats row per game type."""
    player = Player(username=username, is_active=is_active)
    session.add(player)
    session.flush()

    session.add(new_aggregate(player.id))
    backfill_game_stats(session, player.id, {})
    return player
