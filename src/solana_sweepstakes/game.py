from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from .draw import DrawResult, RandBelow, run_draw
from .errors import OpenGameExistsError
from .models import Game, utcnow
from .project_constants import SHORTLIST_CAP
from .store import EntryStore

log = logging.getLogger("rounds")


class GameLifecycle:
    """
    Sole writer of game status. Owns "the open game": creating rounds,
    finding expired ones and closing them with a draw.
    """

    def __init__(
        self,
        store: EntryStore,
        duration: timedelta,
        shortlist_cap: int = SHORTLIST_CAP,
        clock: Callable[[], datetime] = utcnow,
        randbelow: RandBelow = secrets.randbelow,
    ) -> None:
        if duration <= timedelta(0):
            raise ValueError("Round duration must be positive.")
        self.store = store
        self.duration = duration
        self.shortlist_cap = shortlist_cap
        self.clock = clock
        self.randbelow = randbelow

    def create_round(self) -> Game:
        """Opens a new round starting now. Returns the existing one if a round is already open."""
        existing = self.store.get_open_game()
        if existing is not None:
            log.warning("Game %s is still open; not creating another", existing.id)
            return existing

        start = self.clock()
        try:
            game = self.store.insert_game(start, start + self.duration)
        except OpenGameExistsError:
            game = self.store.get_open_game()
            if game is None:
                raise
            log.warning("Lost race creating a round; game %s is open", game.id)
            return game

        log.info("New game created: %s, ends at %s", game.id, game.end_time.isoformat())
        return game

    def current_open_round(self) -> Optional[Game]:
        return self.store.get_open_game()

    def expired_rounds(self) -> List[Game]:
        return self.store.get_expired_games(self.clock())

    def undrawn_rounds(self) -> List[Game]:
        """Closed rounds whose draw never got recorded (interrupted close)."""
        return self.store.get_undrawn_games()

    def close_round(
        self,
        game_id: int,
        winner: Optional[str],
        shortlist: Sequence[str],
        entrant_count: int,
        entrants_digest: Optional[str] = None,
    ) -> bool:
        """
        Closes the game and records its draw; the winner row is written only if
        there is a winner. Idempotent: a repeat call is a logged no-op returning False.
        """
        self.store.close_game(game_id)
        recorded = self.store.record_draw(
            game_id,
            winner,
            shortlist,
            entrant_count,
            entrants_digest=entrants_digest,
        )
        if not recorded:
            log.warning("Game %s is already closed; ignoring repeat close", game_id)
            return False
        log.info(
            "Game %s completed. Winner: %s, Total participants: %d",
            game_id,
            winner,
            entrant_count,
        )
        return True

    def finalize_round(self, game: Game) -> Optional[DrawResult]:
        """
        Closes ``game``, draws from its entrants and records the result.
        Returns None when the draw had already been recorded.

        The status flip is committed before entrants are read, so an entry
        racing the close either made it in before the flip or goes to the next round.
        """
        self.store.close_game(game.id)
        current = self.store.get_game(game.id)
        if current is None or current.has_draw:
            log.warning("Game %s already has a draw; skipping", game.id)
            return None

        entrants = self.store.get_participant_addresses(game.id)
        if not entrants:
            log.info("No participants found for game %s", game.id)
        result = run_draw(entrants, cap=self.shortlist_cap, randbelow=self.randbelow)

        if not self.close_round(
            game.id,
            result.winner,
            result.shortlist,
            result.entrant_count,
            entrants_digest=result.entrants_digest,
        ):
            return None
        return result
