"""
Service configuration loaded from the environment (and an optional .env file).
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Runtime settings for the ranking service."""

    # Database settings
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///leaderboard.db")
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 20))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))

    # Per-player update bounds
    STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", 10))
    UPDATE_MAX_ATTEMPTS = int(os.getenv("UPDATE_MAX_ATTEMPTS", 50))

    # Cache settings (an empty REDIS_URL disables caching)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", 5))

    # Rate limiting
    RATE_LIMIT_ENABLED = _as_bool(os.getenv("RATE_LIMIT_ENABLED", "true"))
    SUBMIT_RATE_LIMIT = os.getenv("SUBMIT_RATE_LIMIT", "30/minute")
    READ_RATE_LIMIT = os.getenv("READ_RATE_LIMIT", "60/minute")

    # Leaderboards
    GAME_LEADERBOARD_MODE = os.getenv("GAME_LEADERBOARD_MODE", "session")
    DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", 10))
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", 100))

    CORS_ORIGINS = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:5174,http://127.0.0.1:5174",
    )
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def get_cors_origins(cls):
        """Return the configured CORS origins as a list."""
        return [origin.strip() for origin in cls.CORS_ORIGINS.split(",") if origin.strip()]


def setup_logging(level: str = None):
    """Configure root logging once for the API process and the batch scripts."""
    logging.basicConfig(
        level=getattr(logging, level or Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s",
    )
