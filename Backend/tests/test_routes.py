"""HTTP adapter tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from app import create_app
from errors import StorageTimeoutError


@pytest.fixture
def client(db_engine):
    with TestClient(create_app(db_engine)) as test_client:
        yield test_client


def register(client, username):
    resp = client.post("/api/players", json={"username": username})
    assert resp.status_code == 201
    return resp.json()["player_id"]


def submit(client, player_id, game_type="numberMemory", **fields):
    body = {"player_id": player_id, "score": 100, "level": 1, "duration_seconds": 60}
    body.update(fields)
    return client.post(f"/api/games/{game_type}/submit", json=body)


class TestSubmit:

    def test_submit_returns_derived_values(self, client):
        player_id = register(client, "aziz")
        resp = submit(client, player_id, score=500, level=3, duration_seconds=120,
                      correct_answers=8, total_questions=10)
        assert resp.status_code == 200
        data = resp.json()
        assert data["session_score"] == 625
        assert data["accuracy_pct"] == 80
        assert data["new_total_score"] == 500
        assert data["new_level"] == 1
        assert data["new_composite_score"] == 553
        assert data["game_type"] == "numberMemory"

    def test_schema_validation(self, client):
        player_id = register(client, "malika")
        assert submit(client, player_id, score=-1).status_code == 422
        assert submit(client, player_id, duration_seconds=0).status_code == 422

    def test_engine_validation_reports_field(self, client):
        player_id = register(client, "bobur")
        resp = submit(client, player_id, correct_answers=9, total_questions=3)
        assert resp.status_code == 422
        assert resp.json()["context"]["field"] == "correct_answers"

    def test_unknown_game(self, client):
        player_id = register(client, "jasur")
        resp = submit(client, player_id, game_type="sudoku")
        assert resp.status_code == 404
        assert resp.json()["context"]["game_type"] == "sudoku"

    def test_unknown_player(self, client):
        assert submit(client, 12345).status_code == 404

    def test_duplicate_username(self, client):
        register(client, "zarina")
        assert client.post("/api/players", json={"username": "zarina"}).status_code == 422


class TestLeaderboards:

    def test_global_page(self, client):
        ids = [register(client, f"p{i}") for i in range(3)]
        for player_id, score in zip(ids, (200, 900, 500)):
            submit(client, player_id, score=score)

        resp = client.get("/api/leaderboard/global", params={"limit": 2, "offset": 1})
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 3
        assert [e["player_id"] for e in data["leaderboard"]] == [ids[2], ids[0]]
        assert [e["rank"] for e in data["leaderboard"]] == [2, 3]
        assert data["leaderboard"][0]["display_name"] == "p2"

    def test_global_bad_limit(self, client):
        assert client.get("/api/leaderboard/global", params={"limit": 0}).status_code == 422

    def test_game_page(self, client):
        a, b = register(client, "a"), register(client, "b")
        submit(client, a, game_type="flashAnzan", score=50)
        submit(client, b, game_type="flashAnzan", score=80)

        data = client.get("/api/leaderboard/games/flashAnzan").json()
        assert data["mode"] == "session"
        assert data["total"] == 2
        assert [e["player_id"] for e in data["leaderboard"]] == [b, a]
        assert data["leaderboard"][0]["game_games_played"] == 1

    def test_unknown_game_leaderboard(self, client):
        assert client.get("/api/leaderboard/games/nope").status_code == 404


class TestPlayerReads:

    def test_stats(self, client):
        player_id = register(client, "stats")
        submit(client, player_id, game_type="readingSpeed", score=12.5)
        data = client.get(f"/api/players/{player_id}/stats").json()
        assert data["games_played"] == 1
        assert data["rank"] == 1
        reading = data["game_stats"]["readingSpeed"]
        assert reading["is_time_scored"] is True
        assert reading["best_time"] == 12.5
        assert reading["best_score"] is None
        assert len(data["game_stats"]) == 13

    def test_stats_unknown_player(self, client):
        resp = client.get("/api/players/777/stats")
        assert resp.status_code == 404
        assert resp.json()["context"]["player_id"] == "777"

    def test_history_newest_first(self, client):
        player_id = register(client, "history")
        for score in (10, 20, 30):
            submit(client, player_id, game_type="tileMemory", score=score)
        data = client.get(f"/api/players/{player_id}/history/tileMemory", params={"limit": 2}).json()
        assert [r["score"] for r in data["results"]] == [30, 20]

    def test_compare(self, client):
        me, other = register(client, "me"), register(client, "other")
        for score in (40, 90):
            submit(client, me, game_type="mathSystems", score=score)
        submit(client, other, game_type="mathSystems", score=100)

        data = client.get(f"/api/players/{me}/compare/mathSystems").json()
        assert data["best_result"]["score"] == 90
        # one of three records beats 90
        assert data["percentile"] == 67
        assert data["score_vs_avg"] == pytest.approx(90 - 230 / 3, abs=0.01)

    def test_compare_on_duration(self, client):
        me, other = register(client, "quick"), register(client, "slow")
        submit(client, me, game_type="mathSystems", score=10, duration_seconds=20)
        submit(client, other, game_type="mathSystems", score=90, duration_seconds=40)

        data = client.get(f"/api/players/{me}/compare/mathSystems", params={"metric": "duration_seconds"}).json()
        assert data["metric"] == "duration_seconds"
        assert data["best_result"]["duration_seconds"] == 20
        assert data["percentile"] == 100

    def test_compare_unknown_metric(self, client):
        player_id = register(client, "metric")
        submit(client, player_id, game_type="mathSystems")
        resp = client.get(f"/api/players/{player_id}/compare/mathSystems", params={"metric": "level"})
        assert resp.status_code == 422
        assert resp.json()["context"]["field"] == "metric"

    def test_compare_without_results(self, client):
        player_id = register(client, "idle")
        assert client.get(f"/api/players/{player_id}/compare/mathSystems").status_code == 404

    def test_analytics(self, client):
        a, b = register(client, "x"), register(client, "y")
        submit(client, a, game_type="alphaNumMemory", score=10, duration_seconds=30)
        submit(client, b, game_type="alphaNumMemory", score=30, duration_seconds=90)
        data = client.get("/api/games/alphaNumMemory/analytics").json()
        assert data["total_games"] == 2
        assert data["unique_players"] == 2
        assert data["average_score"] == 20
        assert data["max_score"] == 30
        assert data["min_score"] == 10
        assert data["average_duration"] == 60


    def test_performance_over_time(self, client):
        player_id = register(client, "daily")
        submit(client, player_id, game_type="hideAndSeek", score=10)
        submit(client, player_id, game_type="hideAndSeek", score=20)
        data = client.get("/api/games/hideAndSeek/performance", params={"days": 7}).json()
        assert data["days"] == 7
        [today] = data["performance"]
        assert today["games_played"] == 2
        assert today["average_score"] == 15
        assert today["unique_players"] == 1

    def test_performance_bad_days(self, client):
        assert client.get("/api/games/hideAndSeek/performance", params={"days": 0}).status_code == 422

    def test_level_distribution(self, client):
        player_id = register(client, "levels")
        submit(client, player_id, game_type="flashCards", score=10, level=1)
        submit(client, player_id, game_type="flashCards", score=30, level=2)
        submit(client, player_id, game_type="flashCards", score=50, level=2)
        data = client.get("/api/games/flashCards/levels").json()
        assert [(b["level"], b["count"], b["average_score"]) for b in data["levels"]] == [(1, 1, 10), (2, 2, 40)]

    def test_player_analytics(self, client):
        player_id = register(client, "personal")
        submit(client, player_id, game_type="doubleSchulte", score=40)
        submit(client, player_id, game_type="doubleSchulte", score=30)
        submit(client, player_id, game_type="fractions", score=70)
        data = client.get(f"/api/players/{player_id}/analytics").json()
        assert data["total_results"] == 3
        assert sum(day["games_played"] for day in data["activity"]) == 3
        by_game = {g["game_type"]: g for g in data["by_game"]}
        assert by_game["doubleSchulte"]["best_score"] == 30
        assert by_game["fractions"]["best_score"] == 70

    def test_player_analytics_unknown_player(self, client):
        assert client.get("/api/players/555/analytics").status_code == 404


class TestAdmin:

    def test_recompute(self, client):
        register(client, "r1")
        register(client, "r2")
        data = client.post("/api/admin/recompute", json={}).json()
        assert data == {
            "updated_count": 0,
            "failed_count": 0,
            "unchanged_count": 2,
            "cancelled": False,
            "last_player_id": data["last_player_id"],
        }

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"


class TestStorageErrors:

    def test_busy_store_returns_503_with_retry_after(self, client, monkeypatch):
        def busy(*args, **kwargs):
            raise StorageTimeoutError("global_leaderboard")

        monkeypatch.setattr(client.app.state.ranking_engine, "get_global_leaderboard", busy)
        resp = client.get("/api/leaderboard/global")

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "1"
        assert resp.json()["context"] == {"operation": "global_leaderboard"}
        assert resp.json()["detail"] == "The service is busy. Please try again shortly."
