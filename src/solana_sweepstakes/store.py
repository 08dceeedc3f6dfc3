"""SQLAlchemy-backed entry store for games, participants and winners.

Every public method runs in its own short transaction. Writes that other
components race on (admitting an entry, closing a game) are conditional on
the game's status inside the statement itself, so no lock is held across
calls.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import DateTime, String, func, insert, literal, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db import get_sessionmaker
from .errors import DuplicateTransactionError, NoOpenGameError, OpenGameExistsError
from .models import (
    AMOUNT_TYPE,
    STATUS_CLOSED,
    STATUS_OPEN,
    Game,
    Participant,
    Winner,
    utcnow,
)

log = logging.getLogger("store")


class EntryStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._Session = get_sessionmaker(engine)

    def close(self) -> None:
        self.engine.dispose()

    # -------- games --------
    def insert_game(self, start_time: datetime, end_time: datetime) -> Game:
        game = Game(
            start_time=start_time,
            end_time=end_time,
            status=STATUS_OPEN,
            total_volume=Decimal(0),
            prize_pool=Decimal(0),
        )
        try:
            with self._Session.begin() as session:
                session.add(game)
        except IntegrityError as e:
            raise OpenGameExistsError("An open game already exists") from e
        return game

    def get_game(self, game_id: int) -> Optional[Game]:
        with self._Session() as session:
            return session.get(Game, game_id)

    def get_open_game(self) -> Optional[Game]:
        stmt = (
            select(Game)
            .where(Game.status == STATUS_OPEN)
            .order_by(Game.start_time.desc(), Game.id.desc())
            .limit(1)
        )
        with self._Session() as session:
            return session.scalars(stmt).first()

    def get_expired_games(self, now: datetime) -> List[Game]:
        """Open games whose end time is before ``now``, oldest first."""
        stmt = (
            select(Game)
            .where(Game.status == STATUS_OPEN, Game.end_time < now)
            .order_by(Game.end_time.asc(), Game.id.asc())
        )
        with self._Session() as session:
            return list(session.scalars(stmt))

    def get_undrawn_games(self) -> List[Game]:
        """Closed games whose draw was never recorded, oldest first."""
        stmt = (
            select(Game)
            .where(Game.status == STATUS_CLOSED, Game.shortlist.is_(None))
            .order_by(Game.end_time.asc(), Game.id.asc())
        )
        with self._Session() as session:
            return list(session.scalars(stmt))

    def close_game(self, game_id: int) -> bool:
        """
        Flips an open game to closed. Once committed no entry can be admitted into it.
        Returns False if the game was not open.
        """
        with self._Session.begin() as session:
            result = session.execute(
                update(Game)
                .where(Game.id == game_id, Game.status == STATUS_OPEN)
                .values(status=STATUS_CLOSED)
            )
            return result.rowcount == 1

    def record_draw(
        self,
        game_id: int,
        winner_address: Optional[str],
        shortlist: Sequence[str],
        total_participants: int,
        entrants_digest: Optional[str] = None,
    ) -> bool:
        """
        Writes the draw of a closed game, plus its winner row when there is a winner.
        Returns False (and writes nothing) if a draw is already recorded or the game is open.
        """
        with self._Session.begin() as session:
            result = session.execute(
                update(Game)
                .where(
                    Game.id == game_id,
                    Game.status == STATUS_CLOSED,
                    Game.shortlist.is_(None),
                )
                .values(
                    winner_address=winner_address,
                    shortlist=list(shortlist),
                    entrants_digest=entrants_digest,
                )
            )
            if result.rowcount != 1:
                return False
            if winner_address:
                self._add_winner(
                    session, game_id, winner_address, total_participants, len(shortlist)
                )
        return True

    # -------- winners --------
    def _add_winner(
        self,
        session: Session,
        game_id: int,
        wallet_address: str,
        total_participants: int,
        shortlist_size: int,
    ) -> Winner:
        winner = Winner(
            game_id=game_id,
            wallet_address=wallet_address,
            total_participants=total_participants,
            shortlist_size=shortlist_size,
            won_at=utcnow(),
        )
        session.add(winner)
        session.flush()
        return winner

    def insert_winner(
        self,
        game_id: int,
        wallet_address: str,
        total_participants: int,
        shortlist_size: int,
    ) -> Optional[Winner]:
        """Returns None if the game already has a winner."""
        try:
            with self._Session.begin() as session:
                return self._add_winner(
                    session, game_id, wallet_address, total_participants, shortlist_size
                )
        except IntegrityError:
            log.warning("Game %s already has a winner; not recording %s", game_id, wallet_address)
            return None

    def get_winner(self, game_id: int) -> Optional[Winner]:
        with self._Session() as session:
            return session.scalars(select(Winner).where(Winner.game_id == game_id)).first()

    def count_winners(self, game_id: int) -> int:
        with self._Session() as session:
            return session.scalar(
                select(func.count()).select_from(Winner).where(Winner.game_id == game_id)
            )

    def list_winners(
        self,
        limit: int = 100,
        offset: int = 0,
        since: Optional[datetime] = None,
    ) -> List[Tuple[Winner, Game]]:
        stmt = select(Winner, Game).join(Game, Winner.game_id == Game.id)
        if since is not None:
            stmt = stmt.where(Winner.won_at > since)
        stmt = stmt.order_by(Winner.won_at.desc(), Winner.id.desc()).limit(limit).offset(offset)
        with self._Session() as session:
            return [(w, g) for w, g in session.execute(stmt)]

    def winner_stats(self, wallet_address: str) -> Tuple[int, Optional[datetime], Optional[datetime]]:
        stmt = select(func.count(Winner.id), func.min(Winner.won_at), func.max(Winner.won_at)).where(
            Winner.wallet_address == wallet_address
        )
        with self._Session() as session:
            total, first, latest = session.execute(stmt).one()
        return int(total or 0), first, latest

    # -------- participants --------
    def transaction_exists(self, transaction_sig: str) -> bool:
        stmt = select(Participant.id).where(Participant.transaction_sig == transaction_sig)
        with self._Session() as session:
            return session.scalar(stmt) is not None

    def _insert_participant(
        self,
        session: Session,
        wallet_address: str,
        transaction_sig: str,
        sol_amount: Decimal,
    ) -> Participant:
        # The open game is resolved inside the INSERT itself, so an entry racing a
        # round closure lands in the new round (or nowhere), never in the closed one.
        open_game = (
            select(
                Game.id,
                literal(wallet_address, String(44)),
                literal(transaction_sig, String(88)),
                literal(sol_amount, AMOUNT_TYPE),
                literal(utcnow(), DateTime(timezone=True)),
            )
            .where(Game.status == STATUS_OPEN)
            .order_by(Game.start_time.desc(), Game.id.desc())
            .limit(1)
        )
        stmt = insert(Participant).from_select(
            ["game_id", "wallet_address", "transaction_sig", "sol_amount", "entry_time"],
            open_game,
        )
        result = session.execute(stmt)
        if result.rowcount == 0:
            raise NoOpenGameError("No open game to admit the entry into")
        return session.scalars(
            select(Participant).where(Participant.transaction_sig == transaction_sig)
        ).one()

    def _increment_volume(
        self, session: Session, game_id: int, amount: Decimal, prize: Decimal
    ) -> bool:
        result = session.execute(
            update(Game)
            .where(Game.id == game_id, Game.status == STATUS_OPEN)
            .values(
                total_volume=Game.total_volume + amount,
                prize_pool=Game.prize_pool + prize,
            )
        )
        return result.rowcount == 1

    def insert_participant(
        self,
        wallet_address: str,
        transaction_sig: str,
        sol_amount: Decimal,
    ) -> Participant:
        """
        Admits an entry into whichever game is open when the statement runs.
        Raises DuplicateTransactionError if the signature was already admitted.
        """
        try:
            with self._Session.begin() as session:
                return self._insert_participant(
                    session, wallet_address, transaction_sig, sol_amount
                )
        except IntegrityError:
            if self.transaction_exists(transaction_sig):
                raise DuplicateTransactionError(transaction_sig)
            raise

    def increment_volume(self, game_id: int, amount: Decimal, prize: Decimal) -> bool:
        """Returns False if the game is no longer open; closed totals are frozen."""
        with self._Session.begin() as session:
            return self._increment_volume(session, game_id, amount, prize)

    def admit_entry(
        self,
        wallet_address: str,
        transaction_sig: str,
        sol_amount: Decimal,
        prize: Decimal,
    ) -> Participant:
        """
        Inserts the entry and credits its game's volume and prize pool in one
        transaction, so a round never closes between the two writes.
        """
        try:
            with self._Session.begin() as session:
                participant = self._insert_participant(
                    session, wallet_address, transaction_sig, sol_amount
                )
                self._increment_volume(session, participant.game_id, sol_amount, prize)
                return participant
        except IntegrityError:
            if self.transaction_exists(transaction_sig):
                raise DuplicateTransactionError(transaction_sig)
            raise

    def get_participants(self, game_id: int) -> List[Participant]:
        stmt = select(Participant).where(Participant.game_id == game_id).order_by(Participant.id)
        with self._Session() as session:
            return list(session.scalars(stmt))

    def get_participant_addresses(self, game_id: int) -> List[str]:
        stmt = (
            select(Participant.wallet_address)
            .where(Participant.game_id == game_id)
            .order_by(Participant.id)
        )
        with self._Session() as session:
            return list(session.scalars(stmt))
