from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from .errors import DuplicateTransactionError, NoOpenGameError
from .notify import Notifier
from .project_constants import EVENT_NEW_PARTICIPANT
from .retry import RetryPolicy
from .rpc import RpcClient, SignatureInfo
from .store import EntryStore
from .transactions import (
    LedgerTransaction,
    is_valid_address,
    lamports_to_sol,
    parse_transaction,
    payer_spent_lamports,
    resolve_payer,
    sol_to_lamports,
)

log = logging.getLogger("ingest")


class Admission(str, enum.Enum):
    ADMITTED = "admitted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    """Ledger reads for the detail were exhausted; retry on a later tick."""


@dataclass
class TickReport:
    ok: bool
    latest_slot: Optional[int] = None
    marker: Optional[int] = None
    seen: int = 0
    admitted: int = 0
    duplicates: int = 0
    rejected: int = 0


class IngestionPipeline:
    """
    Polls the ledger for purchases of the token mint and admits qualifying
    ones into the open game. Sole writer of participants and game volume.
    """

    def __init__(
        self,
        ledger: RpcClient,
        store: EntryStore,
        notifier: Notifier,
        *,
        token_mint: str,
        min_sol_amount: Decimal,
        prize_pool_fraction: Decimal,
        policy: RetryPolicy,
        page_size: int = 25,
        max_pages: int = 10,
        max_consecutive_failures: int = 5,
        pace_s: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.notifier = notifier
        self.token_mint = token_mint
        self.min_lamports = sol_to_lamports(min_sol_amount)
        self.prize_pool_fraction = Decimal(prize_pool_fraction)
        self.policy = policy
        self.page_size = page_size
        self.max_pages = max_pages
        self.max_consecutive_failures = max_consecutive_failures
        self.pace_s = pace_s
        self.sleep = sleep

        self.last_processed_slot: Optional[int] = None
        self.consecutive_failures = 0

    @property
    def degraded(self) -> bool:
        return self.consecutive_failures >= self.max_consecutive_failures

    def start(self, attempts: int = 5) -> bool:
        """Sets the marker to the current slot. False if the ledger cannot be reached."""
        policy = RetryPolicy(
            max_attempts=attempts,
            base_delay_s=self.policy.base_delay_s,
            timeout_s=self.policy.timeout_s,
        )
        outcome = policy.run(
            lambda t: self.ledger.latest_sequence(timeout=t),
            label="getSlot",
            sleep=self.sleep,
        )
        if outcome.exhausted:
            log.error("Failed to reach the ledger: %s", outcome.error)
            return False
        self.last_processed_slot = outcome.value
        log.info("Connected! Latest slot: %s", self.last_processed_slot)
        return True

    # -------- poll tick --------
    def poll_once(self) -> TickReport:
        if self.last_processed_slot is None and not self.start(attempts=self.policy.max_attempts):
            return self._tick_failed(TickReport(ok=False))
        marker = self.last_processed_slot

        latest = self.policy.run(
            lambda t: self.ledger.latest_sequence(timeout=t),
            label="getSlot",
            sleep=self.sleep,
        )
        if latest.exhausted:
            return self._tick_failed(TickReport(ok=False, marker=marker))

        report = TickReport(ok=True, latest_slot=latest.value, marker=marker)
        if latest.value <= marker:
            return self._tick_succeeded(report)

        listed = self._list_since(marker)
        if listed is None:
            report.ok = False
            return self._tick_failed(report)
        newest_first, complete = listed

        # The RPC lists newest first; admit in ledger order.
        fresh = sorted(reversed(newest_first), key=lambda info: info.slot)
        if not complete:
            # Everything older than the oldest listed entry is out of reach this tick.
            log.warning(
                "More than %d pages of signatures since slot %s; slots %s-%s may have been skipped",
                self.max_pages,
                marker,
                marker + 1,
                fresh[0].slot - 1,
            )
        for i, info in enumerate(fresh):
            if i and self.pace_s:
                self.sleep(self.pace_s)
            report.seen += 1
            admission = self.process_signature(info.signature)
            if admission is Admission.ADMITTED:
                report.admitted += 1
            elif admission is Admission.DUPLICATE:
                report.duplicates += 1
            elif admission is Admission.REJECTED:
                report.rejected += 1
            else:
                # Everything below this slot was attempted; pick this one up next tick.
                self._advance_marker(info.slot - 1)
                report.ok = False
                report.marker = self.last_processed_slot
                return self._tick_failed(report)

        if complete:
            self._advance_marker(latest.value)
        else:
            # Siblings of the oldest entry in the same slot may sit on the next page.
            self._advance_marker(fresh[0].slot - 1)
        report.marker = self.last_processed_slot
        return self._tick_succeeded(report)

    def _list_since(self, marker: int) -> Optional[Tuple[List[SignatureInfo], bool]]:
        """
        Pages back from the newest signature until one at or below ``marker`` shows up.
        Returns the entries above the marker, newest first, and whether the marker was
        reached within ``max_pages``. None when a page could not be fetched.
        """
        out: List[SignatureInfo] = []
        before: Optional[str] = None
        for _ in range(self.max_pages):
            listed = self.policy.run(
                lambda t: self.ledger.list_recent_signatures(
                    self.token_mint, limit=self.page_size, before=before, timeout=t
                ),
                label="getSignaturesForAddress",
                sleep=self.sleep,
            )
            if listed.exhausted:
                return None
            page = listed.value
            out.extend(info for info in page if info.slot > marker)
            if len(page) < self.page_size or any(info.slot <= marker for info in page):
                return out, True
            before = page[-1].signature
        return out, False

    def _advance_marker(self, slot: int) -> None:
        if self.last_processed_slot is None or slot > self.last_processed_slot:
            self.last_processed_slot = slot

    def _tick_succeeded(self, report: TickReport) -> TickReport:
        if self.degraded:
            log.info("Ledger polling recovered after %d failed ticks", self.consecutive_failures)
        self.consecutive_failures = 0
        if report.seen:
            log.info(
                "Poll tick: %d seen, %d admitted, %d duplicate, %d rejected; marker=%s",
                report.seen,
                report.admitted,
                report.duplicates,
                report.rejected,
                report.marker,
            )
        return report

    def _tick_failed(self, report: TickReport) -> TickReport:
        self.consecutive_failures += 1
        if self.consecutive_failures == self.max_consecutive_failures:
            log.error(
                "Ledger polling failed %d ticks in a row; continuing in monitoring-only mode",
                self.consecutive_failures,
            )
        else:
            log.warning(
                "Poll tick skipped (%d consecutive failures); will try again next interval",
                self.consecutive_failures,
            )
        return report

    # -------- per signature --------
    def validate(self, tx: LedgerTransaction) -> Optional[str]:
        """Returns the rejection reason, or None when the transaction qualifies."""
        if not tx.succeeded:
            return f"transaction failed on chain: {tx.err}"
        spent = payer_spent_lamports(tx)
        if spent < self.min_lamports:
            return f"spent {spent} lamports, below minimum {self.min_lamports}"
        return None

    def process_signature(self, signature: str) -> Admission:
        if self.store.transaction_exists(signature):
            return Admission.DUPLICATE

        fetched = self.policy.run(
            lambda t: self.ledger.get_transaction(signature, timeout=t),
            label=f"getTransaction {signature}",
            sleep=self.sleep,
        )
        if fetched.exhausted:
            return Admission.UNAVAILABLE

        tx = parse_transaction(signature, fetched.value)
        if tx is None:
            log.info("Transaction data incomplete, skipping %s", signature)
            return Admission.REJECTED

        reason = self.validate(tx)
        if reason:
            log.debug("Rejected %s: %s", signature, reason)
            return Admission.REJECTED

        wallet_address = resolve_payer(tx.message)
        if wallet_address is None or not is_valid_address(wallet_address):
            log.info("Unable to extract wallet address from transaction %s", signature)
            return Admission.REJECTED

        if self.store.get_open_game() is None:
            log.info("No running game found for transaction %s", signature)
            return Admission.REJECTED

        sol_amount = lamports_to_sol(payer_spent_lamports(tx))
        prize = sol_amount * self.prize_pool_fraction
        try:
            participant = self.store.admit_entry(wallet_address, signature, sol_amount, prize)
        except DuplicateTransactionError:
            return Admission.DUPLICATE
        except NoOpenGameError:
            log.info("Round closed before %s could be admitted; dropping it", signature)
            return Admission.REJECTED

        log.info(
            "New participant added to game %s: %s, SOL spent: %s",
            participant.game_id,
            wallet_address,
            sol_amount,
        )
        self.notifier.emit(
            EVENT_NEW_PARTICIPANT,
            {"wallet_address": wallet_address, "sol_amount": float(sol_amount)},
        )
        return Admission.ADMITTED
