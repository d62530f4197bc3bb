"""
Ranking recomputation / migration job.

Rebuilds every active player's derived aggregate fields from the stored
counters, backfills per-game stats rows for newly added game types and,
optionally, rewrites persisted session scores after a formula change.

Idempotent: a second run with no submissions in between writes nothing.
Each player is handled in its own version-checked transaction (the same one
used by live submissions), so the job can run next to live traffic and can
be stopped between players without leaving partial state.

Usage:
    python recompute.py [--start-after PLAYER_ID] [--include-sessions]
"""

import argparse
import logging
import signal
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select

from aggregates import PlayerUpdater, backfill_game_stats, load_game_stats, refresh_derived
from config import Config, setup_logging
from database import create_db_engine, init_db, make_session_factory
from errors import PlayerNotFoundError, RecomputationPlayerError
from models import Player, utcnow
from ranking import DEFAULT_FORMULA, RankingFormula
from store import recompute_session_scores

logger = logging.getLogger(__name__)


@dataclass
class RecomputationResult:
    updated_count: int = 0
    failed_count: int = 0
    unchanged_count: int = 0
    cancelled: bool = False
    last_player_id: Optional[int] = None
    failed_player_ids: List[int] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return self.updated_count + self.failed_count + self.unchanged_count


class RecomputationJob:
    """Batch rebuild of PlayerAggregate derived fields."""

    def __init__(self, session_factory, updater: PlayerUpdater, formula: RankingFormula = DEFAULT_FORMULA):
        self.session_factory = session_factory
        self.updater = updater
        self.formula = formula

    def active_player_ids(self, start_after: Optional[int] = None) -> List[int]:
        query = select(Player.id).where(Player.is_active.is_(True)).order_by(Player.id)
        if start_after is not None:
            query = query.where(Player.id > start_after)
        with self.session_factory() as session:
            return list(session.scalars(query))

    def _recompute_player(self, session, aggregate, include_sessions: bool) -> bool:
        changed = refresh_derived(aggregate, self.formula)

        stats = load_game_stats(session, aggregate.player_id)
        if backfill_game_stats(session, aggregate.player_id, stats):
            changed = True

        if include_sessions and recompute_session_scores(session, aggregate.player_id, self.formula):
            changed = True

        if changed:
            # Forces the versioned UPDATE even when only child rows changed
            aggregate.updated_at = utcnow()
        return changed

    def recompute_player(self, player_id: int, include_sessions: bool = False) -> bool:
        """Recompute one player; returns True if anything was written."""
        try:
            return self.updater.run(
                player_id,
                lambda session, aggregate: self._recompute_player(session, aggregate, include_sessions),
                operation="recompute",
            )
        except Exception as exc:
            raise RecomputationPlayerError(player_id, exc) from exc

    def run(
        self,
        stop_event: Optional[threading.Event] = None,
        start_after: Optional[int] = None,
        include_sessions: bool = False,
    ) -> RecomputationResult:
        """
        Recompute all active players in id order.

        ``stop_event`` is checked before each player; when set, the run stops
        and ``last_player_id`` is the checkpoint to pass as ``start_after``
        on the next run.
        """
        result = RecomputationResult(last_player_id=start_after)
        player_ids = self.active_player_ids(start_after)
        logger.info("Recomputation started for %d active players", len(player_ids))

        for player_id in player_ids:
            if stop_event is not None and stop_event.is_set():
                result.cancelled = True
                logger.info("Recomputation cancelled after player %s", result.last_player_id)
                break

            try:
                if self.recompute_player(player_id, include_sessions):
                    result.updated_count += 1
                else:
                    result.unchanged_count += 1
            except RecomputationPlayerError as exc:
                if isinstance(exc.cause, PlayerNotFoundError):
                    # Deleted or never aggregated since the id list was read
                    logger.warning("Skipping player %s: %s", player_id, exc.cause)
                else:
                    logger.error("%s", exc)
                result.failed_count += 1
                result.failed_player_ids.append(player_id)

            result.last_player_id = player_id

            if result.processed_count % 50 == 0:
                logger.info("⚡ %d players processed...", result.processed_count)

        logger.info(
            "Recomputation finished: updated=%d unchanged=%d failed=%d cancelled=%s",
            result.updated_count, result.unchanged_count, result.failed_count, result.cancelled,
        )
        return result


def main(argv=None):
    parser = argparse.ArgumentParser(description="Recompute ranking aggregates for all active players")
    parser.add_argument("--start-after", type=int, default=None, help="resume after this player id")
    parser.add_argument("--include-sessions", action="store_true", help="also rewrite persisted session scores")
    args = parser.parse_args(argv)

    setup_logging()
    engine = create_db_engine()
    init_db(engine)
    session_factory = make_session_factory(engine)
    updater = PlayerUpdater(session_factory, Config.STORE_TIMEOUT_SECONDS, Config.UPDATE_MAX_ATTEMPTS)

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())

    result = RecomputationJob(session_factory, updater).run(
        stop_event=stop_event,
        start_after=args.start_after,
        include_sessions=args.include_sessions,
    )
    if result.cancelled:
        logger.info("Resume with --start-after %s", result.last_player_id)

    engine.dispose()
    return 1 if result.failed_count else 0


if __name__ == "__main__":
    raise SystemExit(main())
