"""Database models for games, participants and winners."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Use BigInteger by default, with a SQLite-safe Integer variant for autoincrement PKs.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

# 9 decimals matches lamport precision.
AMOUNT_TYPE = Numeric(20, 9)

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class Game(Base):
    """One fixed-duration sweepstakes round."""

    __tablename__ = "games"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """Fixed at creation, never updated."""

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_OPEN)
    winner_address: Mapped[Optional[str]] = mapped_column(String(44), nullable=True)
    shortlist: Mapped[Optional[List[str]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    """Post-shuffle shortlist written once by the draw; NULL until then."""

    entrants_digest: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """SHA-256 commitment over the sorted unique entrants at draw time."""

    total_volume: Mapped[Decimal] = mapped_column(
        AMOUNT_TYPE, nullable=False, default=Decimal(0)
    )
    prize_pool: Mapped[Decimal] = mapped_column(
        AMOUNT_TYPE, nullable=False, default=Decimal(0)
    )

    __table_args__ = (
        CheckConstraint("status IN ('open','closed')", name="game_status_enum"),
        Index("idx_games_status_end_time", "status", "end_time"),
        # At most one open round, enforced by the database as well.
        Index(
            "uq_games_single_open",
            "status",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN

    @property
    def has_draw(self) -> bool:
        return self.shortlist is not None

    def has_expired(self, now: datetime) -> bool:
        return as_utc(self.end_time) < as_utc(now)

    def __repr__(self) -> str:
        return f"<Game id={self.id} status={self.status} end_time={self.end_time}>"


class Participant(Base):
    """A single admitted entry, produced by one ledger transaction."""

    __tablename__ = "participants"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id"), nullable=False, index=True)
    wallet_address: Mapped[str] = mapped_column(String(44), nullable=False)
    transaction_sig: Mapped[str] = mapped_column(String(88), nullable=False, unique=True)
    """Unique across all games: a signature can only ever be spent once."""

    sol_amount: Mapped[Decimal] = mapped_column(AMOUNT_TYPE, nullable=False, default=Decimal(0))
    entry_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Winner(Base):
    """Declared winner of a closed game; written once, never updated."""

    __tablename__ = "winners"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id"), nullable=False, unique=True)
    wallet_address: Mapped[str] = mapped_column(String(44), nullable=False, index=True)
    total_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shortlist_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    won_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
