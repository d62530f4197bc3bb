"""
Leaderboard query engine.

Global ordering (a total order, so pages never overlap or skip):
    composite_score DESC, total_score DESC, level DESC, games_played DESC, player_id ASC

Per-game ordering, computed by grouping ScoreRecords per player:
    best value (see LeaderboardMode), games played for the type DESC, player_id ASC

Ranks are offset + position, i.e. relative to the full ordering.
Reads take no locks and may trail in-flight submissions slightly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from errors import ValidationError
from game_types import GameType, is_time_scored
from models import Player, PlayerAggregate, ScoreRecord


class LeaderboardMode(str, Enum):
    SESSION = "session"  # best persisted session ranking score, higher wins
    RAW = "raw"          # best raw score; lowest time wins for time-scored games


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    player_id: int
    display_name: str
    composite_score: int
    total_score: float
    level: int
    games_played: int


@dataclass(frozen=True)
class GameLeaderboardEntry:
    rank: int
    player_id: int
    display_name: str
    game_type: GameType
    mode: LeaderboardMode
    best_value: float
    game_games_played: int
    composite_score: int
    total_score: float
    level: int
    games_played: int


GLOBAL_ORDER = (
    PlayerAggregate.composite_score.desc(),
    PlayerAggregate.total_score.desc(),
    PlayerAggregate.level.desc(),
    PlayerAggregate.games_played.desc(),
    PlayerAggregate.player_id.asc(),
)


def check_page(limit: int, offset: int, max_limit: int):
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > max_limit:
        raise ValidationError("limit", limit, f"must be an integer between 1 and {max_limit}")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationError("offset", offset, "must be a non-negative integer")


def _active_aggregates():
    return (
        select(
            PlayerAggregate.player_id,
            Player.username,
            PlayerAggregate.composite_score,
            PlayerAggregate.total_score,
            PlayerAggregate.level,
            PlayerAggregate.games_played,
        )
        .join(Player, Player.id == PlayerAggregate.player_id)
        .where(Player.is_active.is_(True))
    )


def global_leaderboard(session: Session, limit: int, offset: int = 0) -> List[LeaderboardEntry]:
    rows = session.execute(
        _active_aggregates().order_by(*GLOBAL_ORDER).offset(offset).limit(limit)
    ).all()

    return [
        LeaderboardEntry(
            rank=offset + idx + 1,
            player_id=row.player_id,
            display_name=row.username,
            composite_score=row.composite_score,
            total_score=row.total_score,
            level=row.level,
            games_played=row.games_played,
        )
        for idx, row in enumerate(rows)
    ]


def count_ranked_players(session: Session) -> int:
    return session.scalar(
        select(func.count(PlayerAggregate.id))
        .join(Player, Player.id == PlayerAggregate.player_id)
        .where(Player.is_active.is_(True))
    ) or 0


def global_rank(session: Session, aggregate: PlayerAggregate) -> int:
    """1 + the number of active players strictly ahead of ``aggregate`` in the global order."""
    a = PlayerAggregate
    ahead = or_(
        a.composite_score > aggregate.composite_score,
        and_(a.composite_score == aggregate.composite_score, a.total_score > aggregate.total_score),
        and_(
            a.composite_score == aggregate.composite_score,
            a.total_score == aggregate.total_score,
            a.level > aggregate.level,
        ),
        and_(
            a.composite_score == aggregate.composite_score,
            a.total_score == aggregate.total_score,
            a.level == aggregate.level,
            a.games_played > aggregate.games_played,
        ),
        and_(
            a.composite_score == aggregate.composite_score,
            a.total_score == aggregate.total_score,
            a.level == aggregate.level,
            a.games_played == aggregate.games_played,
            a.player_id < aggregate.player_id,
        ),
    )
    count = session.scalar(
        select(func.count(a.id))
        .join(Player, Player.id == a.player_id)
        .where(Player.is_active.is_(True), ahead)
    )
    return (count or 0) + 1


class GameLeaderboard:
    """A per-game leaderboard bound to one presentation mode."""

    def __init__(self, mode: LeaderboardMode = LeaderboardMode.SESSION):
        self.mode = LeaderboardMode(mode)

    def _best_column(self, game_type: GameType):
        if self.mode is LeaderboardMode.SESSION:
            return func.max(ScoreRecord.session_ranking_score)
        if is_time_scored(game_type):
            return func.min(ScoreRecord.score)
        return func.max(ScoreRecord.score)

    def _lower_is_better(self, game_type: GameType) -> bool:
        return self.mode is LeaderboardMode.RAW and is_time_scored(game_type)

    def query(self, session: Session, game_type: GameType, limit: int, offset: int = 0) -> List[GameLeaderboardEntry]:
        best = (
            select(
                ScoreRecord.player_id.label("player_id"),
                self._best_column(game_type).label("best_value"),
                func.count(ScoreRecord.id).label("game_games_played"),
            )
            .where(ScoreRecord.game_type == game_type.value)
            .group_by(ScoreRecord.player_id)
            .subquery()
        )

        best_order = best.c.best_value.asc() if self._lower_is_better(game_type) else best.c.best_value.desc()

        rows = session.execute(
            select(
                best.c.player_id,
                best.c.best_value,
                best.c.game_games_played,
                Player.username,
                PlayerAggregate.composite_score,
                PlayerAggregate.total_score,
                PlayerAggregate.level,
                PlayerAggregate.games_played,
            )
            .join(Player, Player.id == best.c.player_id)
            .join(PlayerAggregate, PlayerAggregate.player_id == best.c.player_id)
            .where(Player.is_active.is_(True))
            .order_by(best_order, best.c.game_games_played.desc(), best.c.player_id.asc())
            .offset(offset)
            .limit(limit)
        ).all()

        return [
            GameLeaderboardEntry(
                rank=offset + idx + 1,
                player_id=row.player_id,
                display_name=row.username,
                game_type=game_type,
                mode=self.mode,
                best_value=float(row.best_value),
                game_games_played=row.game_games_played,
                composite_score=row.composite_score,
                total_score=row.total_score,
                level=row.level,
                games_played=row.games_played,
            )
            for idx, row in enumerate(rows)
        ]

    def count(self, session: Session, game_type: GameType) -> int:
        return session.scalar(
            select(func.count(func.distinct(ScoreRecord.player_id)))
            .join(Player, Player.id == ScoreRecord.player_id)
            .where(ScoreRecord.game_type == game_type.value, Player.is_active.is_(True))
        ) or 0

