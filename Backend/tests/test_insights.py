"""History, analytics, performance comparison and the recompute CLI."""

import signal
from datetime import timedelta

import pytest
from sqlalchemy import update

import recompute
from errors import PlayerNotFoundError, UnknownGameTypeError, ValidationError
from helpers import get_aggregate, submit, update_aggregate
from models import ScoreRecord, utcnow
from ranking import composite_score


class TestHistory:

    def test_newest_first_and_limited(self, ranking_engine, make_player):
        player_id = make_player()
        for score in (10, 20, 30):
            submit(ranking_engine, player_id, game_type="tileMemory", score=score)
        submit(ranking_engine, player_id, game_type="fractions", score=99)

        records = ranking_engine.get_player_history(player_id, "tileMemory", limit=2)
        assert [r.score for r in records] == [30, 20]

    def test_unknown_player(self, ranking_engine):
        with pytest.raises(PlayerNotFoundError):
            ranking_engine.get_player_history(9999, "tileMemory")

    def test_limit_is_checked(self, ranking_engine, make_player):
        with pytest.raises(ValidationError):
            ranking_engine.get_player_history(make_player(), "tileMemory", limit=0)


class TestAnalytics:

    def test_figures(self, ranking_engine, make_player):
        a, b = make_player(), make_player()
        submit(ranking_engine, a, game_type="percentages", score=100, correct_answers=5, total_questions=10)
        submit(ranking_engine, a, game_type="percentages", score=200, correct_answers=10, total_questions=10)
        submit(ranking_engine, b, game_type="percentages", score=301)

        analytics = ranking_engine.get_game_analytics("percentages")
        assert analytics.total_games == 3
        assert analytics.average_score == 200.33
        assert analytics.max_score == 301
        assert analytics.min_score == 100
        assert analytics.average_duration == 60.0
        assert analytics.average_accuracy == 50.0
        assert analytics.unique_players == 2

    def test_empty_game(self, ranking_engine):
        analytics = ranking_engine.get_game_analytics("gcdLcm")
        assert analytics.total_games == 0
        assert analytics.average_score == 0

    def test_unknown_game(self, ranking_engine):
        with pytest.raises(UnknownGameTypeError):
            ranking_engine.get_game_analytics("chess")


class TestComparePerformance:

    def test_higher_is_better(self, ranking_engine, make_player):
        me, other = make_player(), make_player()
        submit(ranking_engine, me, game_type="flashAnzan", score=50)
        submit(ranking_engine, me, game_type="flashAnzan", score=80)
        submit(ranking_engine, other, game_type="flashAnzan", score=90)
        submit(ranking_engine, other, game_type="flashAnzan", score=20)

        comparison = ranking_engine.compare_performance(me, "flashAnzan")
        assert comparison.best_record.score == 80
        # one of four records beats 80
        assert comparison.percentile == 75
        assert comparison.score_vs_avg == 80 - 60

    def test_time_scored_lower_is_better(self, ranking_engine, make_player):
        me, other = make_player(), make_player()
        submit(ranking_engine, me, game_type="schulteTable", score=30)
        submit(ranking_engine, me, game_type="schulteTable", score=40)
        submit(ranking_engine, other, game_type="schulteTable", score=20)

        comparison = ranking_engine.compare_performance(me, "schulteTable")
        assert comparison.best_record.score == 30
        assert comparison.percentile == 67

    def test_no_results(self, ranking_engine, make_player):
        assert ranking_engine.compare_performance(make_player(), "flashCards") is None

    def test_unknown_player(self, ranking_engine):
        with pytest.raises(PlayerNotFoundError):
            ranking_engine.compare_performance(9999, "flashCards")

    def test_accuracy_metric(self, ranking_engine, make_player):
        me, other = make_player(), make_player()
        submit(ranking_engine, me, game_type="flashAnzan", score=90, correct_answers=6, total_questions=10)
        submit(ranking_engine, me, game_type="flashAnzan", score=40, correct_answers=9, total_questions=10)
        submit(ranking_engine, other, game_type="flashAnzan", score=10, correct_answers=10, total_questions=10)

        comparison = ranking_engine.compare_performance(me, "flashAnzan", metric="accuracy_pct")
        assert comparison.metric == "accuracy_pct"
        assert comparison.best_record.accuracy_pct == 90
        assert comparison.percentile == 67

    def test_duration_metric_lower_is_better(self, ranking_engine, make_player):
        me, other = make_player(), make_player()
        submit(ranking_engine, me, game_type="flashAnzan", duration_seconds=45)
        submit(ranking_engine, me, game_type="flashAnzan", duration_seconds=30)
        submit(ranking_engine, other, game_type="flashAnzan", duration_seconds=20)

        comparison = ranking_engine.compare_performance(me, "flashAnzan", metric="duration_seconds")
        assert comparison.best_record.duration_seconds == 30
        assert comparison.percentile == 67

    def test_unknown_metric(self, ranking_engine, make_player):
        with pytest.raises(ValidationError) as excinfo:
            ranking_engine.compare_performance(make_player(), "flashAnzan", metric="level")
        assert excinfo.value.field == "metric"


def backdate(session_factory, player_id, days):
    """Move all of a player's records ``days`` into the past."""
    with session_factory() as session:
        session.execute(
            update(ScoreRecord)
            .where(ScoreRecord.player_id == player_id)
            .values(created_at=utcnow() - timedelta(days=days))
        )
        session.commit()


class TestPerformanceOverTime:

    def test_groups_by_day_within_window(self, ranking_engine, make_player, session_factory):
        old, recent = make_player(), make_player()
        submit(ranking_engine, old, game_type="readingSpeed", score=50)
        backdate(session_factory, old, 40)
        submit(ranking_engine, recent, game_type="readingSpeed", score=20, correct_answers=1, total_questions=2)
        submit(ranking_engine, recent, game_type="readingSpeed", score=30)

        [today] = ranking_engine.get_performance_over_time("readingSpeed", days=30)
        assert today.games_played == 2
        assert today.average_score == 25
        assert today.average_accuracy == 25
        assert today.unique_players == 1

        days = ranking_engine.get_performance_over_time("readingSpeed", days=60)
        assert [d.games_played for d in days] == [1, 2]
        assert days[0].date < days[1].date

    def test_days_is_checked(self, ranking_engine):
        for days in (0, -1, 366, True, 1.5):
            with pytest.raises(ValidationError):
                ranking_engine.get_performance_over_time("readingSpeed", days=days)


class TestLevelDistribution:

    def test_buckets_by_level(self, ranking_engine, make_player):
        a, b = make_player(), make_player()
        submit(ranking_engine, a, game_type="gcdLcm", score=100, level=3, duration_seconds=30)
        submit(ranking_engine, b, game_type="gcdLcm", score=50, level=1)
        submit(ranking_engine, b, game_type="gcdLcm", score=200, level=3, duration_seconds=90)
        submit(ranking_engine, b, game_type="fractions", score=999, level=2)

        buckets = ranking_engine.get_level_distribution("gcdLcm")
        assert [(bucket.level, bucket.count) for bucket in buckets] == [(1, 1), (3, 2)]
        assert buckets[1].average_score == 150
        assert buckets[1].average_duration == 60

    def test_empty_game(self, ranking_engine):
        assert ranking_engine.get_level_distribution("gcdLcm") == []


class TestPlayerAnalytics:

    def test_activity_and_per_game_totals(self, ranking_engine, make_player, session_factory):
        player_id = make_player()
        submit(ranking_engine, player_id, game_type="schulteTable", score=40)
        backdate(session_factory, player_id, 3)
        submit(ranking_engine, player_id, game_type="schulteTable", score=25, duration_seconds=30)
        submit(ranking_engine, player_id, game_type="numberMemory", score=120)
        submit(ranking_engine, make_player(), game_type="numberMemory", score=500)

        analytics = ranking_engine.get_player_analytics(player_id)
        assert analytics.total_results == 3
        assert [day.games_played for day in analytics.activity] == [1, 2]
        assert analytics.activity[1].average_score == 72.5

        by_game = {game.game_type.value: game for game in analytics.by_game}
        assert set(by_game) == {"numberMemory", "schulteTable"}
        assert by_game["schulteTable"].best_score == 25
        assert by_game["schulteTable"].average_score == 32.5
        assert by_game["schulteTable"].average_duration == 45
        assert by_game["numberMemory"].best_score == 120

    def test_activity_keeps_most_recent_days(self, ranking_engine, make_player, session_factory):
        player_id = make_player()
        submit(ranking_engine, player_id, score=1)
        backdate(session_factory, player_id, 10)
        submit(ranking_engine, player_id, score=2)

        [latest] = ranking_engine.get_player_analytics(player_id, days=1).activity
        assert latest.average_score == 2

    def test_unknown_player(self, ranking_engine):
        with pytest.raises(PlayerNotFoundError):
            ranking_engine.get_player_analytics(4242)


class TestRecomputeCommand:

    def test_repairs_and_exits_cleanly(self, ranking_engine, make_player, session_factory, db_engine, monkeypatch):
        player_id = make_player()
        submit(ranking_engine, player_id, score=400, level=2)
        update_aggregate(session_factory, player_id, composite_score=1)

        monkeypatch.setattr(recompute, "create_db_engine", lambda: db_engine)
        monkeypatch.setattr(signal, "signal", lambda *args: None)

        assert recompute.main([]) == 0
        aggregate = get_aggregate(session_factory, player_id)
        assert aggregate.composite_score == composite_score(aggregate)

    def test_start_after_skips_earlier_players(self, ranking_engine, make_player, session_factory, db_engine, monkeypatch):
        first, second = make_player(), make_player()
        update_aggregate(session_factory, first, composite_score=1)
        update_aggregate(session_factory, second, composite_score=1)

        monkeypatch.setattr(recompute, "create_db_engine", lambda: db_engine)
        monkeypatch.setattr(signal, "signal", lambda *args: None)

        assert recompute.main(["--start-after", str(first)]) == 0
        assert get_aggregate(session_factory, first).composite_score == 1
        assert get_aggregate(session_factory, second).composite_score != 1
