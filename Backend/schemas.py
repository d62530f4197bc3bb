"""
Pydantic schemas for request validation and response serialization.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from datetime import datetime


# ── Request Schemas ──────────────────────────────────────────────

class PlayerCreate(BaseModel):
    """Request body for registering a player."""

    username: str = Field(..., min_length=1, max_length=255, description="Display name")


class ScoreSubmission(BaseModel):
    """Request body for submitting a game result."""

    player_id: int = Field(..., gt=0, description="Authenticated player ID")
    score: float = Field(..., ge=0, description="Raw score (elapsed time for time-scored games)")
    level: int = Field(..., ge=1, description="Level the session was played at")
    duration_seconds: float = Field(..., gt=0, description="Session length in seconds")
    correct_answers: int = Field(default=0, ge=0)
    total_questions: int = Field(default=0, ge=0)


class RecomputeRequest(BaseModel):
    """Request body for triggering a recomputation run."""

    start_after: Optional[int] = Field(default=None, ge=0, description="Resume after this player ID")
    include_sessions: bool = Field(default=False, description="Also rewrite persisted session scores")


# ── Response Schemas ─────────────────────────────────────────────

class PlayerCreated(BaseModel):
    player_id: int
    username: str


class SubmitResponse(BaseModel):
    """Response after successfully submitting a result."""

    message: str
    player_id: int
    game_type: str
    accuracy_pct: int
    session_score: int
    new_total_score: float
    new_level: int
    new_composite_score: int


class LeaderboardEntry(BaseModel):
    """A single entry in the global leaderboard."""

    model_config = ConfigDict(from_attributes=True)

    rank: int
    player_id: int
    display_name: str
    composite_score: int
    total_score: float
    level: int
    games_played: int


class GameLeaderboardEntry(LeaderboardEntry):
    """A single entry in a per-game leaderboard."""

    best_value: float
    game_games_played: int


class LeaderboardResponse(BaseModel):
    """Response containing one page of the global leaderboard."""

    leaderboard: list[LeaderboardEntry]
    total: int
    limit: int
    offset: int
    updated_at: datetime


class GameLeaderboardResponse(BaseModel):
    """Response containing one page of a per-game leaderboard."""

    game_type: str
    mode: str
    leaderboard: list[GameLeaderboardEntry]
    total: int
    limit: int
    offset: int
    updated_at: datetime


class GameStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    games_played: int
    is_time_scored: bool
    best_score: Optional[float] = None
    best_time: Optional[float] = None
    average_value: float
    last_played_at: Optional[datetime] = None


class PlayerStatsResponse(BaseModel):
    """Aggregate snapshot of one player plus their global rank."""

    player_id: int
    display_name: str
    is_active: bool
    total_score: float
    games_played: int
    average_score: float
    level: int
    streak: int
    composite_score: int
    rank: Optional[int] = None
    game_stats: Dict[str, GameStatsResponse]


class ScoreRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    game_type: str
    score: float
    level: int
    duration_seconds: float
    correct_answers: int
    total_questions: int
    accuracy_pct: int
    session_ranking_score: int
    created_at: datetime


class HistoryResponse(BaseModel):
    player_id: int
    game_type: str
    results: list[ScoreRecordResponse]


class GameAnalyticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    game_type: str
    total_games: int
    average_score: float
    max_score: float
    min_score: float
    average_duration: float
    average_accuracy: float
    unique_players: int


class DailyPerformanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    games_played: int
    average_score: float
    average_duration: float
    average_accuracy: float
    unique_players: int


class PerformanceOverTimeResponse(BaseModel):
    game_type: str
    days: int
    performance: List[DailyPerformanceResponse]


class LevelBucketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    count: int
    average_score: float
    average_duration: float
    average_accuracy: float


class LevelDistributionResponse(BaseModel):
    game_type: str
    levels: List[LevelBucketResponse]


class DailyActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    games_played: int
    average_score: float


class GamePerformanceResponse(BaseModel):
    game_type: str
    games_played: int
    average_score: float
    best_score: float
    average_duration: float


class PlayerAnalyticsResponse(BaseModel):
    """A player's daily activity and per-game totals."""

    player_id: int
    total_results: int
    activity: List[DailyActivityResponse]
    by_game: List[GamePerformanceResponse]


class ComparisonResponse(BaseModel):
    player_id: int
    game_type: str
    metric: str
    best_result: ScoreRecordResponse
    percentile: int
    average_score: float
    average_duration: float
    average_accuracy: float
    score_vs_avg: float
    duration_vs_avg: float
    accuracy_vs_avg: float


class RecomputeResponse(BaseModel):
    updated_count: int
    failed_count: int
    unchanged_count: int
    cancelled: bool
    last_player_id: Optional[int] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    context: Dict[str, object] = {}
