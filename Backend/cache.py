"""
Redis read-through cache for leaderboard and stats responses.

Every helper degrades to a no-op when Redis is disabled or unreachable;
the database stays the source of truth.
"""

import json
import logging

import redis

from config import Config

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis():
    """Lazy-initialize and return the Redis client, or None if unavailable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    if not Config.REDIS_URL:
        return None
    try:
        client = redis.Redis.from_url(Config.REDIS_URL, decode_responses=True, socket_timeout=1)
        client.ping()
        logger.info("✓ Redis connected — caching is enabled")
        _redis_client = client
        return _redis_client
    except redis.RedisError:
        logger.warning("⚠ Redis unavailable — running without cache")
        return None


def cache_get(key: str):
    """Read a JSON value from Redis; returns None on miss or if Redis is down."""
    r = get_redis()
    if r is None:
        return None
    try:
        data = r.get(key)
        return json.loads(data) if data else None
    except redis.RedisError as e:
        logger.debug("cache_get(%s) failed: %s", key, e)
        return None


def cache_set(key: str, value, ttl: int = None):
    """Write a JSON value to Redis with a TTL (seconds)."""
    r = get_redis()
    if r is None:
        return
    try:
        r.setex(key, ttl or Config.CACHE_TTL_SECONDS, json.dumps(value, default=str))
    except redis.RedisError as e:
        logger.debug("cache_set(%s) failed: %s", key, e)


def cache_invalidate(*keys: str, prefixes=()):
    """Delete exact keys and every key starting with one of ``prefixes``."""
    r = get_redis()
    if r is None:
        return
    try:
        doomed = list(keys)
        for prefix in prefixes:
            doomed.extend(r.scan_iter(match=f"{prefix}*"))
        if doomed:
            r.delete(*doomed)
    except redis.RedisError as e:
        logger.debug("cache_invalidate failed: %s", e)


def global_key(limit: int, offset: int) -> str:
    return f"leaderboard:global:{limit}:{offset}"


def game_key(game_type: str, limit: int, offset: int) -> str:
    return f"leaderboard:game:{game_type}:{limit}:{offset}"


def stats_key(player_id: int) -> str:
    return f"stats:{player_id}"


LEADERBOARD_PREFIX = "leaderboard:"
STATS_PREFIX = "stats:"
