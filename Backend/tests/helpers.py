"""Shared builders for the ranking test suite."""

from sqlalchemy import func, select

from models import PlayerAggregate, PlayerGameStats, ScoreRecord


def submit(engine, player_id, game_type="numberMemory", score=100, level=1,
           duration_seconds=60, correct_answers=0, total_questions=0):
    """Submit one result with sensible defaults."""
    return engine.submit_result(
        player_id, game_type, score, level, duration_seconds, correct_answers, total_questions
    )


def get_aggregate(session_factory, player_id) -> PlayerAggregate:
    with session_factory() as session:
        return session.scalars(
            select(PlayerAggregate).where(PlayerAggregate.player_id == player_id)
        ).one()


def update_aggregate(session_factory, player_id, **fields):
    """Overwrite stored aggregate fields, simulating drift or an old formula."""
    with session_factory() as session:
        aggregate = session.scalars(
            select(PlayerAggregate).where(PlayerAggregate.player_id == player_id)
        ).one()
        for name, value in fields.items():
            setattr(aggregate, name, value)
        session.commit()


def count_records(session_factory, player_id=None) -> int:
    query = select(func.count(ScoreRecord.id))
    if player_id is not None:
        query = query.where(ScoreRecord.player_id == player_id)
    with session_factory() as session:
        return session.scalar(query)


def game_stats_rows(session_factory, player_id):
    with session_factory() as session:
        rows = session.scalars(
            select(PlayerGameStats).where(PlayerGameStats.player_id == player_id)
        ).all()
        return {row.game_type: row for row in rows}
