from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

from .project_constants import (
    DEFAULT_GAME_DURATION_MINUTES,
    DEFAULT_MIN_SOL_AMOUNT,
    DEFAULT_PRIZE_POOL_FRACTION,
    PLACEHOLDER_MINTS,
    SHORTLIST_CAP,
)

NETWORKS = ("mainnet", "devnet", "testnet")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, "").strip() or default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise RuntimeError(f"{name} must be a decimal number, got {raw!r}")
    if value < 0:
        raise RuntimeError(f"{name} must not be negative, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    network: str = "mainnet"
    token_mint: Optional[str] = None
    db_url: str = "sqlite:///./sweepstakes.db"

    game_duration_minutes: int = DEFAULT_GAME_DURATION_MINUTES
    min_sol_amount: Decimal = Decimal(DEFAULT_MIN_SOL_AMOUNT)
    shortlist_cap: int = SHORTLIST_CAP
    prize_pool_fraction: Decimal = Decimal(DEFAULT_PRIZE_POOL_FRACTION)

    poll_interval_s: float = 15.0
    signature_page_size: int = 25
    signature_max_pages: int = 10
    rpc_max_retries: int = 3
    rpc_backoff_s: float = 1.0
    rpc_timeout_s: float = 10.0
    max_consecutive_failures: int = 5
    shutdown_grace_s: float = 10.0

    @property
    def ingestion_enabled(self) -> bool:
        return bool(self.token_mint) and self.token_mint not in PLACEHOLDER_MINTS

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        db_url_override: str | None = None,
        require_rpc: bool = True,
    ) -> "Settings":
        load_dotenv()

        network = os.getenv("SOLANA_NETWORK", "mainnet").strip().lower() or "mainnet"
        if network not in NETWORKS:
            raise RuntimeError(
                f"SOLANA_NETWORK must be one of {', '.join(NETWORKS)}, got {network!r}"
            )
        suffix = network.upper()

        settings = Settings(
            rpc_url=rpc_url_override or _resolve_rpc_url(suffix, required=require_rpc),
            network=network,
            token_mint=os.getenv(f"TOKEN_MINT_ADDRESS_{suffix}", "").strip() or None,
            db_url=db_url_override
            or os.getenv("DB_URL", "").strip()
            or "sqlite:///./sweepstakes.db",
            game_duration_minutes=_env_int(
                "GAME_DURATION_MINUTES", DEFAULT_GAME_DURATION_MINUTES
            ),
            min_sol_amount=_env_decimal("MIN_SOL_AMOUNT", DEFAULT_MIN_SOL_AMOUNT),
            shortlist_cap=_env_int("SHORTLIST_CAP", SHORTLIST_CAP),
            prize_pool_fraction=_env_decimal(
                "PRIZE_POOL_FRACTION", DEFAULT_PRIZE_POOL_FRACTION
            ),
            poll_interval_s=_env_float("POLL_INTERVAL_SECONDS", 15.0),
            signature_page_size=_env_int("SIGNATURE_PAGE_SIZE", 25),
            signature_max_pages=_env_int("SIGNATURE_MAX_PAGES", 10),
            rpc_max_retries=_env_int("RPC_MAX_RETRIES", 3),
            rpc_backoff_s=_env_float("RPC_BACKOFF_SECONDS", 1.0),
            rpc_timeout_s=_env_float("RPC_TIMEOUT_SECONDS", 10.0),
            max_consecutive_failures=_env_int("MAX_CONSECUTIVE_FAILURES", 5),
            shutdown_grace_s=_env_float("SHUTDOWN_GRACE_SECONDS", 10.0),
        )

        # A stalled ledger call must never outlive a poll interval.
        if settings.rpc_timeout_s >= settings.poll_interval_s:
            raise RuntimeError(
                "RPC_TIMEOUT_SECONDS must be shorter than POLL_INTERVAL_SECONDS "
                f"({settings.rpc_timeout_s} >= {settings.poll_interval_s})"
            )
        return settings


def _resolve_rpc_url(suffix: str, required: bool = True) -> str:
    # Network specific URL first, then a generic RPC_URL, else build helius url from key.
    env_rpc = os.getenv(f"SOLANA_RPC_URL_{suffix}", "").strip() or os.getenv(
        "RPC_URL", ""
    ).strip()
    if env_rpc:
        return env_rpc

    helius_key = os.getenv("HELIUS_API_KEY", "").strip()
    if not helius_key:
        if not required:
            return ""
        raise RuntimeError(
            f"Missing SOLANA_RPC_URL_{suffix} (or RPC_URL / HELIUS_API_KEY). "
            "Put it in .env or export it."
        )
    if suffix == "MAINNET":
        return f"https://mainnet.helius-rpc.com/?api-key={helius_key}"
    return f"https://{suffix.lower()}.helius-rpc.com/?api-key={helius_key}"
