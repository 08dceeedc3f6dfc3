from __future__ import annotations

import unittest
from datetime import timedelta
from decimal import Decimal

from solana_sweepstakes.db import init_db, make_engine
from solana_sweepstakes.game import GameLifecycle
from solana_sweepstakes.models import STATUS_CLOSED, as_utc
from solana_sweepstakes.store import EntryStore

from ledger_fakes import FakeClock, wallet


class GameLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine("sqlite://")
        init_db(self.engine)
        self.store = EntryStore(self.engine)
        self.clock = FakeClock()
        self.lifecycle = GameLifecycle(self.store, timedelta(minutes=20), clock=self.clock)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _enter(self, game, n, sig=None, amount="0.05"):
        return self.store.admit_entry(
            wallet(n), sig or f"sig-{n}-{game.id}", Decimal(amount), Decimal(0)
        )

    def test_round_ends_after_configured_duration(self) -> None:
        game = self.lifecycle.create_round()
        self.assertEqual(as_utc(game.start_time), self.clock.now)
        self.assertEqual(as_utc(game.end_time), self.clock.now + timedelta(minutes=20))
        self.assertTrue(game.is_open)

    def test_create_round_never_opens_a_second_game(self) -> None:
        first = self.lifecycle.create_round()
        self.clock.advance(minutes=1)
        second = self.lifecycle.create_round()
        self.assertEqual(first.id, second.id)
        self.assertEqual(self.lifecycle.current_open_round().id, first.id)

    def test_no_open_round_initially(self) -> None:
        self.assertIsNone(self.lifecycle.current_open_round())
        self.assertEqual(self.lifecycle.expired_rounds(), [])

    def test_expired_rounds_use_clock(self) -> None:
        game = self.lifecycle.create_round()
        self.clock.advance(minutes=20)
        self.assertEqual(self.lifecycle.expired_rounds(), [])
        self.clock.advance(seconds=1)
        self.assertEqual([g.id for g in self.lifecycle.expired_rounds()], [game.id])

    def test_close_round_is_idempotent(self) -> None:
        game = self.lifecycle.create_round()
        self.assertTrue(self.lifecycle.close_round(game.id, wallet(1), [wallet(1)], 1))
        self.assertFalse(self.lifecycle.close_round(game.id, wallet(2), [wallet(2)], 1))
        self.assertEqual(self.store.count_winners(game.id), 1)
        self.assertEqual(self.store.get_winner(game.id).wallet_address, wallet(1))

    def test_close_round_without_winner_writes_no_winner_row(self) -> None:
        game = self.lifecycle.create_round()
        self.assertTrue(self.lifecycle.close_round(game.id, None, [], 0))
        closed = self.store.get_game(game.id)
        self.assertEqual(closed.status, STATUS_CLOSED)
        self.assertEqual(closed.shortlist, [])
        self.assertIsNone(closed.winner_address)
        self.assertEqual(self.store.count_winners(game.id), 0)

    def test_finalize_empty_round(self) -> None:
        game = self.lifecycle.create_round()
        result = self.lifecycle.finalize_round(game)
        self.assertIsNone(result.winner)
        self.assertEqual(result.shortlist, [])
        self.assertEqual(self.store.get_game(game.id).status, STATUS_CLOSED)
        self.assertIsNone(self.lifecycle.current_open_round())

    def test_finalize_draws_from_entrants(self) -> None:
        game = self.lifecycle.create_round()
        for n in (1, 2, 3):
            self._enter(game, n)
        self._enter(game, 1, sig="sig-again")

        result = self.lifecycle.finalize_round(game)

        self.assertIn(result.winner, {wallet(1), wallet(2), wallet(3)})
        self.assertEqual(sorted(result.shortlist), sorted([wallet(1), wallet(2), wallet(3)]))
        self.assertEqual(result.entrant_count, 4)
        closed = self.store.get_game(game.id)
        self.assertEqual(closed.winner_address, result.winner)
        self.assertEqual(closed.shortlist, result.shortlist)
        self.assertEqual(closed.entrants_digest, result.entrants_digest)
        winner = self.store.get_winner(game.id)
        self.assertEqual(winner.total_participants, 4)
        self.assertEqual(winner.shortlist_size, 3)

    def test_finalize_twice_keeps_first_draw(self) -> None:
        game = self.lifecycle.create_round()
        self._enter(game, 1)
        first = self.lifecycle.finalize_round(game)
        self.assertIsNotNone(first)
        self.assertIsNone(self.lifecycle.finalize_round(game))
        self.assertEqual(self.store.count_winners(game.id), 1)

    def test_finalize_completes_interrupted_close(self) -> None:
        game = self.lifecycle.create_round()
        self._enter(game, 1)
        # Status flipped but the process died before the draw was written.
        self.store.close_game(game.id)
        self.assertEqual([g.id for g in self.lifecycle.undrawn_rounds()], [game.id])

        result = self.lifecycle.finalize_round(game)
        self.assertEqual(result.winner, wallet(1))
        self.assertEqual(self.lifecycle.undrawn_rounds(), [])

    def test_entries_after_close_go_to_next_round(self) -> None:
        game = self.lifecycle.create_round()
        self._enter(game, 1)
        self.store.close_game(game.id)
        self.clock.advance(minutes=21)
        nxt = self.lifecycle.create_round()
        late = self.store.admit_entry(wallet(2), "sig-late", Decimal("1"), Decimal(0))

        self.assertEqual(late.game_id, nxt.id)
        result = self.lifecycle.finalize_round(game)
        self.assertEqual(result.shortlist, [wallet(1)])

    def test_rejects_non_positive_duration(self) -> None:
        with self.assertRaises(ValueError):
            GameLifecycle(self.store, timedelta(0))


if __name__ == "__main__":
    unittest.main()
