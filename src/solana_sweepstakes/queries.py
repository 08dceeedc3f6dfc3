"""Read-only views served to observers: current round, winner history, per-wallet stats."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from .db import dt_iso
from .models import Game, Winner, as_utc, utcnow
from .store import EntryStore

RECENT_WINNERS_WINDOW = timedelta(hours=24)


def _winner_row(winner: Winner, game: Game, *, with_pool: bool = False) -> Dict[str, Any]:
    row = {
        "winner_address": winner.wallet_address,
        "game_id": game.id,
        "start_time": dt_iso(game.start_time),
        "won_at": dt_iso(winner.won_at),
        "total_participants": winner.total_participants,
        "shortlist_size": winner.shortlist_size,
    }
    if with_pool:
        row["prize_pool"] = float(game.prize_pool or 0)
        row["total_volume"] = float(game.total_volume or 0)
    return row


def game_state(store: EntryStore, clock: Callable[[], datetime] = utcnow) -> Dict[str, Any]:
    game = store.get_open_game()
    participants = []
    end_time: Optional[str] = None
    prize_pool = 0.0
    volume = 0.0
    if game is not None:
        participants = [
            {"wallet_address": p.wallet_address, "sol_amount": float(p.sol_amount)}
            for p in store.get_participants(game.id)
        ]
        end_time = dt_iso(game.end_time)
        prize_pool = float(game.prize_pool or 0)
        volume = float(game.total_volume or 0)

    since = as_utc(clock()) - RECENT_WINNERS_WINDOW
    recent = store.list_winners(limit=1000, since=since)
    return {
        "game_id": game.id if game is not None else None,
        "end_time": end_time,
        "participants": participants,
        "current_prize_pool": prize_pool,
        "current_volume": volume,
        "recent_winners": [_winner_row(w, g, with_pool=True) for w, g in recent],
    }


def winner_history(store: EntryStore, limit: int = 100, offset: int = 0) -> Dict[str, Any]:
    if limit <= 0 or offset < 0:
        raise ValueError("limit must be positive and offset non-negative")
    rows = store.list_winners(limit=limit, offset=offset)
    return {
        "limit": limit,
        "offset": offset,
        "winners": [_winner_row(w, g) for w, g in rows],
    }


def winner_stats(store: EntryStore, wallet_address: str) -> Dict[str, Any]:
    total, first, latest = store.winner_stats(wallet_address)
    return {
        "wallet_address": wallet_address,
        "total_wins": total,
        "first_win": dt_iso(first),
        "latest_win": dt_iso(latest),
    }
