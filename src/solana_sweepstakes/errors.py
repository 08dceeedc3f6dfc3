"""Exceptions raised across the sweepstakes service."""


class SweepstakesError(RuntimeError):
    """Base class for all service errors."""


class RpcError(SweepstakesError):
    """The ledger RPC answered with a JSON-RPC error object."""

    def __init__(self, error):
        self.error = error
        super().__init__(f"RPC error: {error}")


class DuplicateTransactionError(SweepstakesError):
    """A participant with this transaction signature already exists."""

    def __init__(self, signature: str):
        self.signature = signature
        super().__init__(f"Transaction already exists: {signature}")


class NoOpenGameError(SweepstakesError):
    """No game was open when an entry was about to be admitted."""


class DrawVerificationError(SweepstakesError):
    """A recorded draw does not match its entrant set."""


class OpenGameExistsError(SweepstakesError):
    """Another game is already open; a second one cannot be inserted."""
