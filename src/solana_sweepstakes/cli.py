from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from dataclasses import replace
from typing import Any

from .config import Settings
from .db import init_db, make_engine
from .queries import game_state, winner_history, winner_stats
from .scheduler import SweepstakesService
from .store import EntryStore
from .transactions import is_valid_address
from .verify import verify_draw


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _read_settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(
        rpc_url_override=args.rpc_url, db_url_override=args.db_url, require_rpc=False
    )


def _open_store(args: argparse.Namespace) -> EntryStore:
    store = EntryStore(make_engine(_read_settings(args).db_url))
    init_db(store.engine)
    return store


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def cmd_run(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url, db_url_override=args.db_url)
    if args.timeout is not None:
        if args.timeout >= settings.poll_interval_s:
            raise SystemExit("--timeout must be shorter than POLL_INTERVAL_SECONDS.")
        settings = replace(settings, rpc_timeout_s=args.timeout)
    log = logging.getLogger("server")

    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        log.info("Received %s. Shutting down gracefully...", signal.Signals(signum).name)
        stop.set()

    # Installed before start-up so a signal during bootstrap still shuts down cleanly.
    previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    service = SweepstakesService(settings)
    try:
        try:
            service.start()
        except Exception:
            log.exception("Error initializing services")
            service.stop()
            return 1

        log.info("Sweepstakes running on %s; press Ctrl+C to stop", settings.network)
        while not stop.wait(1.0):
            pass
        service.stop()
        return 0
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def cmd_init_db(args: argparse.Namespace) -> int:
    _open_store(args).close()
    print("Database schema is up to date.")
    return 0


def cmd_state(args: argparse.Namespace) -> int:
    store = _open_store(args)
    try:
        _print_json(game_state(store))
    finally:
        store.close()
    return 0


def cmd_winners(args: argparse.Namespace) -> int:
    store = _open_store(args)
    try:
        _print_json(winner_history(store, limit=args.limit, offset=args.offset))
    finally:
        store.close()
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    if not is_valid_address(args.address):
        raise SystemExit(f"Not a valid Solana address: {args.address}")
    store = _open_store(args)
    try:
        _print_json(winner_stats(store, args.address))
    finally:
        store.close()
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    settings = _read_settings(args)
    store = _open_store(args)
    try:
        game = store.get_game(args.game_id)
        if game is None:
            raise SystemExit(f"Game {args.game_id} not found.")
        if not game.has_draw:
            raise SystemExit(f"Game {args.game_id} has no recorded draw yet (status: {game.status}).")
        entrants = store.get_participant_addresses(game.id)
        result = verify_draw(
            entrants,
            game.shortlist or [],
            game.winner_address,
            game.entrants_digest,
            cap=settings.shortlist_cap,
        )
    finally:
        store.close()

    print("✅ DRAW VERIFIED")
    print(f"Game           : {game.id}")
    print(f"Winner         : {result['winner']}")
    print(f"Shortlist size : {result['shortlist_size']}")
    print(f"Unique entrants: {result['unique_entrants']}")
    if result.get("entrants_digest"):
        print(f"Entrants SHA-256: {result['entrants_digest']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="solana-sweepstakes",
        description="Timed sweepstakes rounds fed by Solana token purchases.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--db-url", default=None, help="Override database URL (else DB_URL).")
    p.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-call RPC timeout seconds (else RPC_TIMEOUT_SECONDS).",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run", help="Run the round scheduler and ledger poller.")
    r.set_defaults(func=cmd_run)

    i = sub.add_parser("init-db", help="Create the database tables.")
    i.set_defaults(func=cmd_init_db)

    s = sub.add_parser("state", help="Print the current round as JSON.")
    s.set_defaults(func=cmd_state)

    w = sub.add_parser("winners", help="Print winner history as JSON.")
    w.add_argument("--limit", type=int, default=100, help="Page size.")
    w.add_argument("--offset", type=int, default=0, help="Rows to skip.")
    w.set_defaults(func=cmd_winners)

    st = sub.add_parser("stats", help="Print win statistics for one wallet.")
    st.add_argument("--address", required=True, help="Wallet address.")
    st.set_defaults(func=cmd_stats)

    v = sub.add_parser("verify", help="Re-check the recorded draw of a closed game.")
    v.add_argument("--game-id", required=True, type=int, help="Game identifier.")
    v.set_defaults(func=cmd_verify)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
