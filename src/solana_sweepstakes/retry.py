from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

import httpx

from .errors import RpcError

T = TypeVar("T")

log = logging.getLogger("retry")

# Failures worth another attempt; anything else is a bug and propagates.
TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (httpx.HTTPError, RpcError)


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return not self.ok


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempts, exponential backoff base and per-call timeout for one ledger call site.
    The operation receives the timeout and must forward it to the network call.
    """

    max_attempts: int = 3
    base_delay_s: float = 1.0
    timeout_s: float = 10.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_s * (2 ** (attempt - 1))

    def run(
        self,
        operation: Callable[[float], T],
        *,
        label: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
    ) -> RetryOutcome[T]:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return RetryOutcome(ok=True, value=operation(self.timeout_s), attempts=attempt)
            except TRANSIENT_ERRORS as e:
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                log.info(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    label,
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                sleep(delay)

        log.warning("%s failed after %d attempts: %s", label, self.max_attempts, last_error)
        return RetryOutcome(ok=False, error=last_error, attempts=self.max_attempts)
