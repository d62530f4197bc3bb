"""Pytest conftest: path setup, test configuration and database fixtures."""

import itertools
import os
import sys
from pathlib import Path

import pytest

# Caching and rate limiting are read from the environment at import time
os.environ["REDIS_URL"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"

# Add Backend/ to sys.path so `from engine import ...` works
BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Add tests/ to sys.path so `from helpers import ...` works
TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from database import create_db_engine, init_db, make_session_factory  # noqa: E402
from engine import RankingEngine  # noqa: E402


@pytest.fixture
def db_engine(tmp_path):
    """A file-backed SQLite database, so several threads can share it."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'ranking.db'}", timeout_seconds=30)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def ranking_engine(session_factory):
    return RankingEngine(session_factory, timeout_seconds=60, max_attempts=1000)


@pytest.fixture
def make_player(ranking_engine):
    """Register players with unique names; returns the new player id."""
    counter = itertools.count(1)

    def _make(username=None, **kwargs):
        return ranking_engine.register_player(username or f"player_{next(counter)}", **kwargs)

    return _make
