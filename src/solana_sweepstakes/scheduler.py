from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta, timezone
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .db import dt_iso, init_db, make_engine
from .config import Settings
from .game import GameLifecycle
from .ingest import IngestionPipeline
from .models import Game, as_utc, utcnow
from .notify import Notifier, log_subscriber
from .project_constants import EVENT_NEW_GAME_STARTED, EVENT_WINNER_DECLARED
from .retry import RetryPolicy
from .rpc import RpcClient
from .store import EntryStore

log = logging.getLogger("scheduler")

# Fire slightly after the round end so its end time is strictly in the past.
ROUND_END_SLACK_S = 1.0

ROUND_JOB_ID = "round-timer"
POLL_JOB_ID = "poll-timer"


class GuardedJob:
    """
    Job body run by the scheduler. Failures are logged and swallowed so the
    job stays scheduled; the lock lets shutdown wait for an in-flight run.
    """

    def __init__(self, name: str, body: Callable[[], object]) -> None:
        self.name = name
        self.body = body
        self._busy = threading.Lock()

    def __call__(self) -> None:
        with self._busy:
            try:
                self.body()
            except Exception:
                log.exception("%s tick failed", self.name)

    def wait_idle(self, timeout_s: float) -> bool:
        """True once no run is in flight, False if one is still going after ``timeout_s``."""
        if not self._busy.acquire(timeout=max(0.0, timeout_s)):
            return False
        self._busy.release()
        return True


class RoundOrchestrator:
    """Close expired rounds (oldest first), draw, then open the next round."""

    def __init__(self, lifecycle: GameLifecycle, notifier: Notifier) -> None:
        self.lifecycle = lifecycle
        self.notifier = notifier

    def pending_rounds(self) -> List[Game]:
        pending = self.lifecycle.undrawn_rounds() + self.lifecycle.expired_rounds()
        return sorted(pending, key=lambda g: (as_utc(g.end_time), g.id))

    def tick(self) -> Game:
        log.info("Scheduler cycle starting...")
        for game in self.pending_rounds():
            log.info("Processing expired game: %s", game.id)
            try:
                self.execute_draw(game)
            except Exception:
                # A closed game without a draw is retried via undrawn_rounds next tick.
                log.exception("Draw failed for game %s", game.id)

        current = self.lifecycle.current_open_round()
        if current is not None:
            log.warning("Game %s is still open; no new round this cycle", current.id)
            return current

        game = self.lifecycle.create_round()
        self.notifier.emit(EVENT_NEW_GAME_STARTED, {"end_time": dt_iso(game.end_time)})
        log.info("Scheduler cycle completed")
        return game

    def execute_draw(self, game: Game) -> None:
        result = self.lifecycle.finalize_round(game)
        if result is None:
            return
        self.notifier.emit(
            EVENT_WINNER_DECLARED,
            {"game_id": game.id, "winner": result.winner, "shortlist": list(result.shortlist)},
        )
        log.info("Draw completed for game %s, winner: %s", game.id, result.winner)

    def bootstrap(self) -> Game:
        """Start-up: catch up on rounds that expired while down, make sure one round is open."""
        pending = self.pending_rounds()
        if pending:
            log.warning(
                "Found %d expired game(s) at start-up; running catch-up draw",
                len(pending),
            )
            return self.tick()

        current = self.lifecycle.current_open_round()
        if current is None:
            log.info("No running game found, creating initial game...")
            return self.tick()
        return current

    def seconds_until_round_end(self) -> float:
        current = self.lifecycle.current_open_round()
        if current is None:
            return 0.0
        remaining = (as_utc(current.end_time) - as_utc(self.lifecycle.clock())).total_seconds()
        return max(0.0, remaining + ROUND_END_SLACK_S)


class SweepstakesService:
    """Wires the store, ledger, lifecycle, orchestrator and poller, and owns both timers."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[EntryStore] = None,
        ledger: Optional[RpcClient] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.settings = settings
        self.store = store or EntryStore(make_engine(settings.db_url))
        self.ledger = ledger or RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
        if notifier is None:
            notifier = Notifier()
            notifier.subscribe(log_subscriber)
        self.notifier = notifier

        self.lifecycle = GameLifecycle(
            self.store,
            timedelta(minutes=settings.game_duration_minutes),
            shortlist_cap=settings.shortlist_cap,
        )
        self.orchestrator = RoundOrchestrator(self.lifecycle, self.notifier)
        self.pipeline = IngestionPipeline(
            self.ledger,
            self.store,
            self.notifier,
            token_mint=settings.token_mint or "",
            min_sol_amount=settings.min_sol_amount,
            prize_pool_fraction=settings.prize_pool_fraction,
            policy=RetryPolicy(
                max_attempts=settings.rpc_max_retries,
                base_delay_s=settings.rpc_backoff_s,
                timeout_s=settings.rpc_timeout_s,
            ),
            page_size=settings.signature_page_size,
            max_pages=settings.signature_max_pages,
            max_consecutive_failures=settings.max_consecutive_failures,
        )

        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, GuardedJob] = {}

    def _add_job(
        self,
        job_id: str,
        body: Callable[[], object],
        interval_s: float,
        delay_s: Optional[float] = None,
    ) -> None:
        job = GuardedJob(job_id, body)
        self.jobs[job_id] = job
        first_run = utcnow() + timedelta(seconds=interval_s if delay_s is None else delay_s)
        self.scheduler.add_job(
            job,
            "interval",
            seconds=interval_s,
            next_run_time=first_run,
            id=job_id,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )

    def start(self) -> None:
        # Store failures here are fatal: there is nothing to run without it.
        init_db(self.store.engine)
        self.orchestrator.bootstrap()

        duration_s = self.settings.game_duration_minutes * 60.0
        log.info("Scheduler will run every %d minutes", self.settings.game_duration_minutes)
        self._add_job(
            ROUND_JOB_ID,
            self._round_tick,
            duration_s,
            delay_s=self.orchestrator.seconds_until_round_end(),
        )
        self._start_ingestion()
        self.scheduler.start()

    def _round_tick(self) -> None:
        try:
            self.orchestrator.tick()
        finally:
            self._realign_round_job()

    def _realign_round_job(self) -> None:
        # A new round ends one duration after it was created, not after the last fire.
        delay_s = self.orchestrator.seconds_until_round_end()
        if delay_s <= 0 or not self.scheduler.running:
            return
        next_run = utcnow() + timedelta(seconds=delay_s)
        self.scheduler.modify_job(ROUND_JOB_ID, next_run_time=next_run)

    def _start_ingestion(self) -> None:
        s = self.settings
        log.info("Starting Solana listener on %s...", s.network.upper())
        if not s.ingestion_enabled:
            log.warning(
                "Token mint address not configured for %s, starting in monitoring mode only",
                s.network,
            )
            return
        log.info("Token Mint: %s, Min SOL Amount: %s", s.token_mint, s.min_sol_amount)
        if not self.pipeline.start():
            log.warning("Continuing without blockchain monitoring...")
            return
        self._add_job(POLL_JOB_ID, self.pipeline.poll_once, s.poll_interval_s)
        log.info("Solana listener started successfully")

    def stop(self) -> None:
        log.info("Shutting down gracefully...")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        deadline = time.monotonic() + self.settings.shutdown_grace_s
        for job_id, job in self.jobs.items():
            if not job.wait_idle(deadline - time.monotonic()):
                log.warning("%s still running after the shutdown grace period", job_id)
        self.ledger.close()
        self.store.close()
        log.info("Shutdown complete")
