"""
Mind Games Ranking — FastAPI Application Entry Point.

Provides the ranking and leaderboard service with:
  - Result submission with per-player optimistic concurrency
  - Global and per-game leaderboards with deterministic ordering
  - Cached leaderboard and stats queries
  - Idempotent recomputation of ranking aggregates
  - CORS support for the React frontend
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import Config, setup_logging
from database import check_connection, create_db_engine, init_db, make_session_factory
from engine import RankingEngine
from errors import (
    PlayerNotFoundError,
    RankingError,
    StorageTimeoutError,
    UnknownGameTypeError,
    ValidationError,
)
from limiter import limiter
from routes import router as ranking_router
from schemas import ErrorResponse

# ── Logging ──────────────────────────────────────────────────────

setup_logging()
logger = logging.getLogger(__name__)


# ── Error Handlers ───────────────────────────────────────────────

_STATUS_BY_ERROR = {
    ValidationError: 422,
    UnknownGameTypeError: 404,
    PlayerNotFoundError: 404,
    StorageTimeoutError: 503,
}


async def ranking_error_handler(request: Request, exc: RankingError):
    """Translate domain errors into JSON responses with diagnostic context."""
    status = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.warning("%s %s → %d: %s", request.method, request.url.path, status, exc)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(
            detail=exc.user_message,
            context={k: str(v) for k, v in exc.context.items()},
        ).model_dump(),
        headers=headers,
    )


# ── App Factory ──────────────────────────────────────────────────

def create_app(db_engine=None) -> FastAPI:
    """Build the application; ``db_engine`` defaults to one built from Config."""
    db_engine = db_engine or create_db_engine()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        """Startup / shutdown lifecycle handler."""
        # Startup
        if check_connection(db_engine):
            logger.info("✓ Database connected successfully")
        init_db(db_engine)
        application.state.ranking_engine = RankingEngine(make_session_factory(db_engine))

        yield  # ← app is running

        # Shutdown
        db_engine.dispose()
        logger.info("Database connections closed")

    application = FastAPI(
        title="Mind Games Ranking API",
        description="Composite ranking scores and leaderboards across mini-games",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS — allow the Vite dev server
    application.add_middleware(
        CORSMiddleware,
        allow_origins=Config.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_exception_handler(RankingError, ranking_error_handler)
    application.include_router(ranking_router)

    @application.get("/health", tags=["Health"])
    def health_check():
        """Simple liveness probe."""
        return {"status": "ok", "service": "mind-games-ranking"}

    return application


# ── New Relic (Monitoring) ───────────────────────────────────────
try:
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")
    logger.info("✓ New Relic agent initialized")
except Exception:
    logger.warning("⚠ New Relic agent skipped (ensure newrelic.ini exists and dependency installed)")

app = create_app()


if __name__ == "__main__":
    import uvicorn
    # Run the app with auto-reload enabled
    uvicorn.run("app:app", host="127.0.0.1", port=8000, reload=True)
