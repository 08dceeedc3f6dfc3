from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .errors import RpcError
from .project_constants import COMMITMENT


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    slot: int
    err: Any = None
    block_time: Optional[int] = None


class RpcClient:
    """Read-only Solana JSON-RPC client used as the ledger."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.Client(timeout=timeout_s, transport=transport)
        self._next_id = 0

    def close(self) -> None:
        self.client.close()

    def _post(
        self, method: str, params: List[Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        self._next_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": params,
        }
        if timeout is None:
            resp = self.client.post(self.rpc_url, json=payload)
        else:
            resp = self.client.post(self.rpc_url, json=payload, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RpcError(data["error"])
        return data

    def latest_sequence(self, timeout: Optional[float] = None) -> int:
        """Returns the current slot at ``confirmed`` commitment."""
        data = self._post("getSlot", [{"commitment": COMMITMENT}], timeout=timeout)
        return int(data["result"])

    def list_recent_signatures(
        self,
        address: str,
        limit: int = 25,
        before: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[SignatureInfo]:
        """
        Returns signatures touching ``address``, newest first, as the RPC orders them.
        ``before`` pages backwards: only signatures older than that one are listed.
        """
        opts: Dict[str, Any] = {"limit": limit, "commitment": COMMITMENT}
        if before:
            opts["before"] = before
        data = self._post("getSignaturesForAddress", [address, opts], timeout=timeout)
        out: List[SignatureInfo] = []
        for item in data.get("result") or []:
            out.append(
                SignatureInfo(
                    signature=item["signature"],
                    slot=int(item["slot"]),
                    err=item.get("err"),
                    block_time=item.get("blockTime"),
                )
            )
        return out

    def get_transaction(
        self, signature: str, timeout: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Returns the raw ``getTransaction`` result, or None when the ledger does not know it.
        Versioned (v0) transactions are requested explicitly; without
        ``maxSupportedTransactionVersion`` the RPC rejects them.
        """
        data = self._post(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": COMMITMENT,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
            timeout=timeout,
        )
        return data.get("result")
