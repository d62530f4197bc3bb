"""
Engine and session wiring.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker

from config import Config
from errors import StorageTimeoutError
from models import Base

logger = logging.getLogger(__name__)

_CONTENTION_MARKERS = (
    "locked",
    "busy",
    "timeout",
    "deadlock",
    "could not serialize",
    "canceling statement",
)

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sr_player_game   ON score_records (player_id, game_type, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_sr_game_session  ON score_records (game_type, session_ranking_score DESC)",
    "CREATE INDEX IF NOT EXISTS idx_sr_game_score    ON score_records (game_type, score)",
    "CREATE INDEX IF NOT EXISTS idx_pa_ranking       ON player_aggregates "
    "(composite_score DESC, total_score DESC, level DESC, games_played DESC, player_id)",
    "CREATE INDEX IF NOT EXISTS idx_players_active   ON players (is_active)",
]


def create_db_engine(url: str = None, timeout_seconds: float = None):
    """
    Build an engine whose driver waits at most ``timeout_seconds`` on locks
    or statements.
    """
    url = url or Config.DATABASE_URL
    timeout_seconds = Config.STORE_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
        )

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout_seconds * 1000)}"

    return create_engine(
        url,
        pool_size=Config.DB_POOL_SIZE,
        max_overflow=Config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
        connect_args=connect_args,
    )


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def is_contention_error(exc: Exception) -> bool:
    """True for lock waits, busy databases and statement timeouts."""
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        return any(marker in message for marker in _CONTENTION_MARKERS)
    return False


@contextmanager
def translate_storage_errors(operation: str, player_id=None):
    """Surface lock and timeout failures as the retryable StorageTimeoutError."""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        if not is_contention_error(exc):
            raise
        raise StorageTimeoutError(operation, player_id=player_id, details=str(exc)) from exc


def check_connection(engine) -> bool:
    """Return True when a trivial query succeeds."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("✗ Database connection failed: %s", e)
        return False


def init_db(engine):
    """Create all tables and performance indexes (idempotent)."""
    Base.metadata.create_all(bind=engine)
    logger.info("✓ Database tables ensured")

    with engine.connect() as conn:
        for stmt in INDEXES:
            conn.execute(text(stmt))
        conn.commit()
    logger.info("✓ Database indexes ensured")
