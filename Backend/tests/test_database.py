"""Lock and timeout handling at the storage boundary."""

import pytest
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from database import is_contention_error, translate_storage_errors
from engine import RankingEngine
from errors import PlayerNotFoundError, StorageTimeoutError


def operational_error(message):
    return OperationalError("UPDATE players SET is_active=?", {}, Exception(message))


class TestContentionDetection:

    @pytest.mark.parametrize("message", [
        "database is locked",
        "database table is busy",
        "canceling statement due to statement timeout",
        "deadlock detected",
        "could not serialize access due to concurrent update",
    ])
    def test_contention_messages(self, message):
        assert is_contention_error(operational_error(message))

    def test_pool_timeout(self):
        assert is_contention_error(PoolTimeoutError("QueuePool limit reached"))

    def test_other_failures(self):
        assert not is_contention_error(operational_error("no such table: players"))
        assert not is_contention_error(ValueError("database is locked"))


class TestTranslateStorageErrors:

    def test_lock_becomes_retryable_timeout(self):
        with pytest.raises(StorageTimeoutError) as excinfo:
            with translate_storage_errors("global_leaderboard", player_id=7):
                raise operational_error("database is locked")

        assert excinfo.value.retryable
        assert excinfo.value.context == {"operation": "global_leaderboard", "player_id": 7}
        assert isinstance(excinfo.value.__cause__, OperationalError)

    def test_other_operational_errors_propagate(self):
        error = operational_error("no such table: players")
        with pytest.raises(OperationalError) as excinfo:
            with translate_storage_errors("global_leaderboard"):
                raise error
        assert excinfo.value is error

    def test_domain_errors_pass_through(self):
        with pytest.raises(PlayerNotFoundError):
            with translate_storage_errors("player_stats", player_id=1):
                raise PlayerNotFoundError(1)


class TestLockedWrites:

    def test_set_player_active_lock_timeout(self, session_factory, make_player):
        player_id = make_player()

        def locked_session_factory():
            session = session_factory()

            def commit():
                raise operational_error("database is locked")

            session.commit = commit
            return session

        engine = RankingEngine(locked_session_factory)
        with pytest.raises(StorageTimeoutError) as excinfo:
            engine.set_player_active(player_id, False)

        assert excinfo.value.context["operation"] == "set_player_active"
        assert excinfo.value.context["player_id"] == player_id
