"""Submission strategies for signed transactions.

A strategy broadcasts a signed transaction through one channel and returns a
handle; confirmation always goes through the shared ConfirmationEngine, since
signature status is visible on the RPC no matter which channel delivered the
transaction.

Broadcast is never retried here. Re-sending the same signature is a duplicate
submission, and a fresh blockhash means rebuilding the whole transaction.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx

from swapexec.errors import BroadcastFailed, RpcUnavailable
from swapexec.rpc.client import SolanaRpcClient
from swapexec.swap.builder import SignedTransaction
from swapexec.swap.confirmation import ConfirmationEngine, ConfirmationOutcome, SubmissionHandle

logger = logging.getLogger(__name__)


class SubmissionStrategy(ABC):
    """Abstract base class for broadcast channels."""

    channel = "abstract"

    def __init__(self, engine: ConfirmationEngine):
        self.engine = engine

    @abstractmethod
    async def submit(
        self,
        tx: SignedTransaction,
        bound: Optional[Tuple[int, int]] = None,
    ) -> SubmissionHandle:
        """Broadcast a signed transaction.

        Args:
            tx: Signed transaction
            bound: (start_height, last_valid_block_height) already read by the
                caller; read from the engine when omitted

        Raises:
            BroadcastFailed: when the channel rejects the transaction
            RpcUnavailable: when the expiry bound cannot be read
        """
        pass

    async def _bound(self, bound: Optional[Tuple[int, int]]) -> Tuple[int, int]:
        if bound is not None:
            return bound
        return await self.engine.expiry_bound()

    async def await_confirmation(self, handle: SubmissionHandle) -> ConfirmationOutcome:
        return await self.engine.await_confirmation(handle)

    async def aclose(self) -> None:
        """Release channel resources."""
        return None


class DirectSubmission(SubmissionStrategy):
    """Broadcast through the RPC node's sendTransaction."""

    channel = "direct"

    def __init__(self, rpc: SolanaRpcClient, engine: ConfirmationEngine, skip_preflight: bool = False):
        super().__init__(engine)
        self.rpc = rpc
        self.skip_preflight = skip_preflight

    async def submit(
        self,
        tx: SignedTransaction,
        bound: Optional[Tuple[int, int]] = None,
    ) -> SubmissionHandle:
        start_height, last_valid = await self._bound(bound)
        logger.info(f"Current block height: {start_height}, last valid: {last_valid}")

        try:
            signature = await self.rpc.send_transaction(tx.to_base64(), skip_preflight=self.skip_preflight)
        except RpcUnavailable as e:
            # A JSON-RPC error object is a definite rejection; anything else may have been delivered
            ambiguous = e.rpc_code is None
            raise BroadcastFailed(
                f"Failed to broadcast transaction: {e.message}",
                signature=tx.signature if ambiguous else None,
                ambiguous=ambiguous,
            ) from e

        if signature != tx.signature:
            logger.warning(f"RPC returned signature {signature}, expected {tx.signature}")

        logger.info(f"Transaction sent: {signature}")
        return SubmissionHandle(
            signature=signature,
            start_height=start_height,
            last_valid_block_height=last_valid,
            channel=self.channel,
        )


class BundleRelaySubmission(SubmissionStrategy):
    """Broadcast as a single-transaction bundle through a block engine relay.

    The relay only returns a bundle id; the transaction is tracked by its own
    signature afterwards.
    """

    channel = "bundle"

    def __init__(
        self,
        relay_url: str,
        engine: ConfirmationEngine,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        channel: str = "bundle",
    ):
        super().__init__(engine)
        self.relay_url = relay_url
        self.channel = channel
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def submit(
        self,
        tx: SignedTransaction,
        bound: Optional[Tuple[int, int]] = None,
    ) -> SubmissionHandle:
        start_height, last_valid = await self._bound(bound)

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [[tx.to_base64()], {"encoding": "base64"}],
        }
        try:
            response = await self._client.post(self.relay_url, json=payload)
        except httpx.HTTPError as e:
            raise BroadcastFailed(
                f"Bundle relay request failed: {e}",
                signature=tx.signature,
                ambiguous=True,
            ) from e

        if not response.is_success:
            raise BroadcastFailed(f"Bundle relay returned HTTP {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise BroadcastFailed("Bundle relay returned invalid JSON") from e

        if "error" in data or not data.get("result"):
            raise BroadcastFailed(f"Bundle relay rejected transaction: {data.get('error', data)}")

        logger.info(f"Bundle submitted via {self.channel}: {data['result']} (tx {tx.signature})")
        return SubmissionHandle(
            signature=tx.signature,
            start_height=start_height,
            last_valid_block_height=last_valid,
            channel=self.channel,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class UnconfiguredRelaySubmission(SubmissionStrategy):
    """Placeholder for a bundle mode whose relay URL is not configured."""

    def __init__(self, engine: ConfirmationEngine, channel: str):
        super().__init__(engine)
        self.channel = channel

    async def submit(
        self,
        tx: SignedTransaction,
        bound: Optional[Tuple[int, int]] = None,
    ) -> SubmissionHandle:
        raise BroadcastFailed(f"{self.channel} execution requires BUNDLE_RELAY_URL to be configured")


BUNDLE_MODES = ("jito", "bloxroute")


def create_submission_strategy(
    mode: str,
    rpc: SolanaRpcClient,
    engine: ConfirmationEngine,
    bundle_relay_url: Optional[str] = None,
    timeout: float = 10.0,
) -> SubmissionStrategy:
    """Create the strategy for an execution mode.

    Unknown modes fall back to direct submission.
    """
    mode = (mode or "simple").lower()

    if mode in BUNDLE_MODES:
        if not bundle_relay_url:
            return UnconfiguredRelaySubmission(engine, channel=mode)
        return BundleRelaySubmission(bundle_relay_url, engine, timeout=timeout, channel=mode)

    if mode != "simple":
        logger.warning(f"Unknown execution mode: {mode}, falling back to simple")

    return DirectSubmission(rpc, engine)
