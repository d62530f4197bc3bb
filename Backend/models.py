"""
SQLAlchemy ORM models for the mind-games ranking service.
Tables: players, score_records, player_aggregates, player_game_stats
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, func
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def utcnow():
    """Naive UTC timestamp, matching the timezone-less DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Player(Base):
    """Represents a registered player (identity is owned by account management)."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    join_date = Column(DateTime, server_default=func.now())

    # Relationships
    score_records = relationship("ScoreRecord", back_populates="player", cascade="all, delete-orphan")
    aggregate = relationship("PlayerAggregate", back_populates="player", uselist=False, cascade="all, delete-orphan")
    game_stats = relationship("PlayerGameStats", back_populates="player", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Player(id={self.id}, username='{self.username}')>"


class ScoreRecord(Base):
    """One game session outcome. Immutable once written."""

    __tablename__ = "score_records"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    game_type = Column(String(32), nullable=False)
    score = Column(Float, nullable=False)
    level = Column(Integer, nullable=False)
    duration_seconds = Column(Float, nullable=False)
    correct_answers = Column(Integer, nullable=False, default=0)
    total_questions = Column(Integer, nullable=False, default=0)
    accuracy_pct = Column(Integer, nullable=False, default=0)
    session_ranking_score = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    player = relationship("Player", back_populates="score_records")

    def __repr__(self):
        return (
            f"<ScoreRecord(id={self.id}, player_id={self.player_id}, "
            f"game_type='{self.game_type}', score={self.score})>"
        )


class PlayerAggregate(Base):
    """Lifetime rollup of a player's performance; one row per player."""

    __tablename__ = "player_aggregates"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False, unique=True)
    total_score = Column(Float, nullable=False, default=0)
    games_played = Column(Integer, nullable=False, default=0)
    average_score = Column(Float, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    streak = Column(Integer, nullable=False, default=0)
    composite_score = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    # Optimistic concurrency: every UPDATE checks and bumps ``version``
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    player = relationship("Player", back_populates="aggregate")

    def __repr__(self):
        return (
            f"<PlayerAggregate(player_id={self.player_id}, total_score={self.total_score}, "
            f"composite_score={self.composite_score}, version={self.version})>"
        )


class PlayerGameStats(Base):
    """Per game type rollup. ``best_value``/``average_value`` hold times for time-scored games."""

    __tablename__ = "player_game_stats"
    __table_args__ = (UniqueConstraint("player_id", "game_type", name="uq_player_game_stats"),)

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    game_type = Column(String(32), nullable=False)
    best_value = Column(Float, nullable=False, default=0)
    games_played = Column(Integer, nullable=False, default=0)
    average_value = Column(Float, nullable=False, default=0)
    last_played_at = Column(DateTime, nullable=True)

    # Relationships
    player = relationship("Player", back_populates="game_stats")

    def __repr__(self):
        return (
            f"<PlayerGameStats(player_id={self.player_id}, game_type='{self.game_type}', "
            f"games_played={self.games_played})>"
        )
