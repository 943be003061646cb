"""Error taxonomy for the swap pipeline.

Every error is terminal for the current invocation. Lower layers raise these;
the executor turns them into a structured ExecutorResult.
"""

from typing import Any, Optional


class SwapExecError(Exception):
    """Base class for all pipeline errors."""

    code = "swap_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RouteUnavailable(SwapExecError):
    """Raised when the aggregator cannot provide a quote."""

    code = "route_unavailable"


class SwapBuildFailed(SwapExecError):
    """Raised when the aggregator cannot build a swap transaction."""

    code = "swap_build_failed"


class MalformedTransaction(SwapExecError):
    """Raised when a transaction payload cannot be decoded."""

    code = "malformed_transaction"


class SigningFailed(SwapExecError):
    """Raised when a transaction cannot be signed with the wallet key."""

    code = "signing_failed"


class BroadcastFailed(SwapExecError):
    """Raised when a transaction could not be submitted.

    ``ambiguous`` is set when the request may have reached the network (a
    timeout or dropped connection), so the transaction can still land.
    """

    code = "broadcast_failed"

    def __init__(self, message: str, signature: Optional[str] = None, ambiguous: bool = False):
        self.signature = signature
        self.ambiguous = ambiguous
        super().__init__(message)


class OnChainFailure(SwapExecError):
    """Raised when a transaction landed but failed on chain."""

    code = "on_chain_failure"

    def __init__(self, reason: Any, signature: Optional[str] = None):
        self.reason = reason
        self.signature = signature
        super().__init__(f"Transaction failed on chain: {reason}")


class TransactionExpired(SwapExecError):
    """Raised when the chain advanced past the transaction's validity window."""

    code = "expired"

    def __init__(self, current_height: int, last_valid_block_height: int, signature: Optional[str] = None):
        self.current_height = current_height
        self.last_valid_block_height = last_valid_block_height
        self.signature = signature
        super().__init__(
            f"Transaction expired: current height {current_height} > "
            f"last valid {last_valid_block_height}"
        )


class ConfirmationTimedOut(SwapExecError):
    """Raised when the poll budget ran out before the status resolved."""

    code = "timed_out"

    def __init__(self, attempts: int, signature: Optional[str] = None):
        self.attempts = attempts
        self.signature = signature
        super().__init__(f"Transaction confirmation timeout after {attempts} attempts")


class InvalidWalletFormat(SwapExecError):
    """Raised when wallet key material is not a 64-byte secret key."""

    code = "invalid_wallet_format"


class RpcUnavailable(SwapExecError):
    """Raised when the RPC endpoint fails or returns a JSON-RPC error."""

    code = "rpc_unavailable"

    def __init__(self, message: str, rpc_code: Optional[int] = None, data: Any = None):
        self.rpc_code = rpc_code
        self.data = data
        super().__init__(message)


class SimulationFailed(SwapExecError):
    """Raised when a transaction simulation reports an error."""

    code = "simulation_failed"

    def __init__(self, message: str, logs: Optional[list] = None):
        self.logs = logs or []
        super().__init__(message)


class InvalidRequest(SwapExecError):
    """Raised when command arguments cannot be interpreted."""

    code = "invalid_request"


class IdempotencyConflict(SwapExecError):
    """Raised when an idempotency key is reused for a different route."""

    code = "idempotency_conflict"


class AttemptInProgress(IdempotencyConflict):
    """Raised when another invocation is still building the attempt for a key."""

    code = "attempt_in_progress"


class LedgerUnavailable(SwapExecError):
    """Raised when the attempt ledger database cannot be used."""

    code = "ledger_unavailable"
