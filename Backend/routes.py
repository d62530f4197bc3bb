"""
Ranking API routes with caching and rate limiting.

Endpoints:
  POST /api/players                              — Register a player
  POST /api/games/{game_type}/submit             — Submit a game result
  GET  /api/leaderboard/global                   — Global leaderboard page
  GET  /api/leaderboard/games/{game_type}        — Per-game leaderboard page
  GET  /api/players/{id}/stats                   — Player aggregate + rank
  GET  /api/players/{id}/history/{game_type}     — Player's recent results
  GET  /api/players/{id}/compare/{game_type}     — Player's best vs. everyone
  GET  /api/games/{game_type}/analytics          — Per-game analytics
  GET  /api/games/{game_type}/performance        — Per-day figures for a game
  GET  /api/games/{game_type}/levels             — Results grouped by level
  GET  /api/players/{id}/analytics               — Player activity and per-game totals
  POST /api/admin/recompute                      — Recompute all aggregates
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request

import cache
from config import Config
from engine import RankingEngine
from errors import RankingError
from limiter import READ_LIMIT, SUBMIT_LIMIT, limiter
from schemas import (
    ComparisonResponse,
    DailyActivityResponse,
    DailyPerformanceResponse,
    GameAnalyticsResponse,
    GameLeaderboardEntry,
    GameLeaderboardResponse,
    GamePerformanceResponse,
    GameStatsResponse,
    HistoryResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    LevelBucketResponse,
    LevelDistributionResponse,
    PerformanceOverTimeResponse,
    PlayerAnalyticsResponse,
    PlayerCreate,
    PlayerCreated,
    PlayerStatsResponse,
    RecomputeRequest,
    RecomputeResponse,
    ScoreRecordResponse,
    ScoreSubmission,
    SubmitResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ── Dependency ───────────────────────────────────────────────────

def get_engine(request: Request) -> RankingEngine:
    """Return the engine created at application startup."""
    return request.app.state.ranking_engine


# ── 1. Register Player ───────────────────────────────────────────

@router.post("/players", response_model=PlayerCreated, status_code=201, tags=["Players"])
def register_player(payload: PlayerCreate, engine: RankingEngine = Depends(get_engine)):
    player_id = engine.register_player(payload.username)
    return PlayerCreated(player_id=player_id, username=payload.username.strip())


# ── 2. Submit Result ─────────────────────────────────────────────

@router.post("/games/{game_type}/submit", response_model=SubmitResponse, tags=["Games"])
@limiter.limit(SUBMIT_LIMIT)
def submit_result(
    request: Request,
    game_type: str,
    payload: ScoreSubmission,
    engine: RankingEngine = Depends(get_engine),
):
    """
    Submit a game result for a player.

    The record and the player's aggregate are written in one transaction;
    leaderboard and stats caches are dropped afterwards.
    """
    try:
        result = engine.submit_result(
            payload.player_id,
            game_type,
            payload.score,
            payload.level,
            payload.duration_seconds,
            payload.correct_answers,
            payload.total_questions,
        )
    except RankingError:
        raise
    except Exception as exc:
        logger.error("submit_result failed: %s", exc)
        raise HTTPException(status_code=500, detail="Internal server error")

    # Invalidate caches so next reads reflect the new data
    cache.cache_invalidate(prefixes=(cache.LEADERBOARD_PREFIX, cache.STATS_PREFIX))

    return SubmitResponse(
        message="Result submitted successfully",
        player_id=result.player_id,
        game_type=result.game_type.value,
        accuracy_pct=result.accuracy_pct,
        session_score=result.session_score,
        new_total_score=result.new_total_score,
        new_level=result.new_level,
        new_composite_score=result.new_composite_score,
    )


# ── 3. Global Leaderboard ────────────────────────────────────────

@router.get("/leaderboard/global", response_model=LeaderboardResponse, tags=["Leaderboard"])
@limiter.limit(READ_LIMIT)
def get_global_leaderboard(
    request: Request,
    limit: int = Query(default=Config.DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0),
    engine: RankingEngine = Depends(get_engine),
):
    """Return one page of active players ordered by composite ranking score."""

    # Try cache first
    cache_key = cache.global_key(limit, offset)
    cached = cache.cache_get(cache_key)
    if cached:
        return LeaderboardResponse(**cached)

    entries = engine.get_global_leaderboard(limit, offset)
    response = LeaderboardResponse(
        leaderboard=[LeaderboardEntry.model_validate(entry) for entry in entries],
        total=engine.count_global_players(),
        limit=limit,
        offset=offset,
        updated_at=datetime.now(timezone.utc),
    )

    cache.cache_set(cache_key, response.model_dump())
    return response


# ── 4. Per-Game Leaderboard ──────────────────────────────────────

@router.get("/leaderboard/games/{game_type}", response_model=GameLeaderboardResponse, tags=["Leaderboard"])
@limiter.limit(READ_LIMIT)
def get_game_leaderboard(
    request: Request,
    game_type: str,
    limit: int = Query(default=Config.DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0),
    engine: RankingEngine = Depends(get_engine),
):
    """Return one page of players ordered by their best result in one game."""

    cache_key = cache.game_key(game_type, limit, offset)
    cached = cache.cache_get(cache_key)
    if cached:
        return GameLeaderboardResponse(**cached)

    entries = engine.get_game_leaderboard(game_type, limit, offset)
    response = GameLeaderboardResponse(
        game_type=game_type,
        mode=engine.game_leaderboard.mode.value,
        leaderboard=[GameLeaderboardEntry.model_validate(entry) for entry in entries],
        total=engine.count_game_players(game_type),
        limit=limit,
        offset=offset,
        updated_at=datetime.now(timezone.utc),
    )

    cache.cache_set(cache_key, response.model_dump())
    return response


# ── 5. Player Stats ──────────────────────────────────────────────

@router.get("/players/{player_id}/stats", response_model=PlayerStatsResponse, tags=["Players"])
@limiter.limit(READ_LIMIT)
def get_player_stats(request: Request, player_id: int, engine: RankingEngine = Depends(get_engine)):
    """Fetch a player's aggregate, per-game stats and global rank."""

    cache_key = cache.stats_key(player_id)
    cached = cache.cache_get(cache_key)
    if cached:
        return PlayerStatsResponse(**cached)

    stats = engine.get_player_stats(player_id)
    response = PlayerStatsResponse(
        player_id=stats.player_id,
        display_name=stats.display_name,
        is_active=stats.is_active,
        total_score=stats.total_score,
        games_played=stats.games_played,
        average_score=stats.average_score,
        level=stats.level,
        streak=stats.streak,
        composite_score=stats.composite_score,
        rank=stats.rank,
        game_stats={
            game_type.value: GameStatsResponse.model_validate(snapshot)
            for game_type, snapshot in stats.game_stats.items()
        },
    )

    cache.cache_set(cache_key, response.model_dump())
    return response


# ── 6. Player History ────────────────────────────────────────────

@router.get("/players/{player_id}/history/{game_type}", response_model=HistoryResponse, tags=["Players"])
@limiter.limit(READ_LIMIT)
def get_player_history(
    request: Request,
    player_id: int,
    game_type: str,
    limit: int = Query(default=20),
    engine: RankingEngine = Depends(get_engine),
):
    records = engine.get_player_history(player_id, game_type, limit)
    return HistoryResponse(
        player_id=player_id,
        game_type=game_type,
        results=[ScoreRecordResponse.model_validate(record) for record in records],
    )


# ── 7. Compare Performance ───────────────────────────────────────

@router.get("/players/{player_id}/compare/{game_type}", response_model=ComparisonResponse, tags=["Players"])
@limiter.limit(READ_LIMIT)
def compare_performance(
    request: Request,
    player_id: int,
    game_type: str,
    metric: str = Query(default="score"),
    engine: RankingEngine = Depends(get_engine),
):
    comparison = engine.compare_performance(player_id, game_type, metric)
    if comparison is None:
        raise HTTPException(status_code=404, detail=f"No {game_type} results for player {player_id}")

    return ComparisonResponse(
        player_id=player_id,
        game_type=comparison.game_type.value,
        metric=comparison.metric,
        best_result=ScoreRecordResponse.model_validate(comparison.best_record),
        percentile=comparison.percentile,
        average_score=comparison.average_score,
        average_duration=comparison.average_duration,
        average_accuracy=comparison.average_accuracy,
        score_vs_avg=comparison.score_vs_avg,
        duration_vs_avg=comparison.duration_vs_avg,
        accuracy_vs_avg=comparison.accuracy_vs_avg,
    )


# ── 8. Game Analytics ────────────────────────────────────────────

@router.get("/games/{game_type}/analytics", response_model=GameAnalyticsResponse, tags=["Games"])
@limiter.limit(READ_LIMIT)
def get_game_analytics(request: Request, game_type: str, engine: RankingEngine = Depends(get_engine)):
    analytics = engine.get_game_analytics(game_type)
    return GameAnalyticsResponse(
        game_type=analytics.game_type.value,
        total_games=analytics.total_games,
        average_score=analytics.average_score,
        max_score=analytics.max_score,
        min_score=analytics.min_score,
        average_duration=analytics.average_duration,
        average_accuracy=analytics.average_accuracy,
        unique_players=analytics.unique_players,
    )


@router.get("/games/{game_type}/performance", response_model=PerformanceOverTimeResponse, tags=["Games"])
@limiter.limit(READ_LIMIT)
def get_performance_over_time(
    request: Request,
    game_type: str,
    days: int = Query(default=30),
    engine: RankingEngine = Depends(get_engine),
):
    days_performance = engine.get_performance_over_time(game_type, days)
    return PerformanceOverTimeResponse(
        game_type=game_type,
        days=days,
        performance=[DailyPerformanceResponse.model_validate(day) for day in days_performance],
    )


@router.get("/games/{game_type}/levels", response_model=LevelDistributionResponse, tags=["Games"])
@limiter.limit(READ_LIMIT)
def get_level_distribution(request: Request, game_type: str, engine: RankingEngine = Depends(get_engine)):
    buckets = engine.get_level_distribution(game_type)
    return LevelDistributionResponse(
        game_type=game_type,
        levels=[LevelBucketResponse.model_validate(bucket) for bucket in buckets],
    )


@router.get("/players/{player_id}/analytics", response_model=PlayerAnalyticsResponse, tags=["Players"])
@limiter.limit(READ_LIMIT)
def get_player_analytics(
    request: Request,
    player_id: int,
    days: int = Query(default=30),
    engine: RankingEngine = Depends(get_engine),
):
    """Personal dashboard figures: activity per day and totals per game type."""
    analytics = engine.get_player_analytics(player_id, days)
    return PlayerAnalyticsResponse(
        player_id=analytics.player_id,
        total_results=analytics.total_results,
        activity=[DailyActivityResponse.model_validate(day) for day in analytics.activity],
        by_game=[
            GamePerformanceResponse(
                game_type=game.game_type.value,
                games_played=game.games_played,
                average_score=game.average_score,
                best_score=game.best_score,
                average_duration=game.average_duration,
            )
            for game in analytics.by_game
        ],
    )


# ── 9. Recompute ─────────────────────────────────────────────────

@router.post("/admin/recompute", response_model=RecomputeResponse, tags=["Admin"])
def run_recomputation(payload: RecomputeRequest = None, engine: RankingEngine = Depends(get_engine)):
    """Run the recomputation job synchronously and report its counts."""
    payload = payload or RecomputeRequest()
    result = engine.run_recomputation(start_after=payload.start_after, include_sessions=payload.include_sessions)

    if result.updated_count:
        cache.cache_invalidate(prefixes=(cache.LEADERBOARD_PREFIX, cache.STATS_PREFIX))

    return RecomputeResponse(
        updated_count=result.updated_count,
        failed_count=result.failed_count,
        unchanged_count=result.unchanged_count,
        cancelled=result.cancelled,
        last_player_id=result.last_player_id,
    )
