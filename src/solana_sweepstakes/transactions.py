from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

import base58

from .project_constants import LAMPORTS_PER_SOL

PUBKEY_LENGTH = 32


@dataclass(frozen=True)
class LegacyMessage:
    """Pre-v0 message: every account is listed inline."""

    account_keys: Tuple[str, ...]


@dataclass(frozen=True)
class VersionedMessage:
    """
    v0 message: static keys inline, further keys loaded from address lookup tables.
    The fee payer is always the first static key.
    """

    version: int
    static_account_keys: Tuple[str, ...]
    address_table_lookups: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)


Message = Union[LegacyMessage, VersionedMessage]


@dataclass(frozen=True)
class LedgerTransaction:
    signature: str
    slot: int
    message: Optional[Message]
    err: Any
    pre_balances: Tuple[int, ...]
    post_balances: Tuple[int, ...]

    @property
    def succeeded(self) -> bool:
        return self.err is None


def is_valid_address(address: str) -> bool:
    """True when ``address`` is base58 that decodes to a 32-byte public key."""
    if not address or not isinstance(address, str):
        return False
    try:
        raw = base58.b58decode(address)
    except ValueError:
        return False
    return len(raw) == PUBKEY_LENGTH


def _keys(items: Any) -> Tuple[str, ...]:
    # jsonParsed encoding returns {"pubkey": ...} objects instead of strings
    out: List[str] = []
    for item in items or []:
        if isinstance(item, dict):
            item = item.get("pubkey")
        if isinstance(item, str):
            out.append(item)
    return tuple(out)


def parse_message(result: Dict[str, Any]) -> Optional[Message]:
    """Classifies the message of a ``getTransaction`` result, or None if it has no keys."""
    tx = result.get("transaction")
    if not isinstance(tx, dict):
        return None
    msg = tx.get("message")
    if not isinstance(msg, dict):
        return None

    version = result.get("version", "legacy")
    if "staticAccountKeys" in msg:
        static = _keys(msg["staticAccountKeys"])
    elif isinstance(version, int):
        static = _keys(msg.get("accountKeys"))
    else:
        static = ()

    if static:
        return VersionedMessage(
            version=version if isinstance(version, int) else 0,
            static_account_keys=static,
            address_table_lookups=tuple(msg.get("addressTableLookups") or ()),
        )

    legacy = _keys(msg.get("accountKeys"))
    if legacy:
        return LegacyMessage(account_keys=legacy)
    return None


def resolve_payer(message: Optional[Message]) -> Optional[str]:
    if isinstance(message, LegacyMessage):
        return message.account_keys[0] if message.account_keys else None
    if isinstance(message, VersionedMessage):
        return message.static_account_keys[0] if message.static_account_keys else None
    return None


def parse_transaction(signature: str, result: Optional[Dict[str, Any]]) -> Optional[LedgerTransaction]:
    """
    Returns None when the detail is missing or has no balance information;
    such transactions cannot be priced and are skipped.
    """
    if not result:
        return None
    meta = result.get("meta")
    if not isinstance(meta, dict):
        return None
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if not pre or not post:
        return None
    return LedgerTransaction(
        signature=signature,
        slot=int(result.get("slot") or 0),
        message=parse_message(result),
        err=meta.get("err"),
        pre_balances=tuple(int(b) for b in pre),
        post_balances=tuple(int(b) for b in post),
    )


def payer_spent_lamports(tx: LedgerTransaction) -> int:
    # Account 0 is the fee payer in both message formats.
    return tx.pre_balances[0] - tx.post_balances[0]


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def sol_to_lamports(sol: Decimal) -> int:
    return int((Decimal(sol) * LAMPORTS_PER_SOL).to_integral_value())
