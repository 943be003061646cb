"""Expiry-aware confirmation of broadcast transactions.

A Solana transaction embeds a recent blockhash and can never execute once the
chain has advanced past that blockhash's validity horizon. The engine uses this
to bound its wait: each poll first asks for the signature status, then checks
the block height against the expiry bound recorded at broadcast time, then
counts the attempt against an independent ceiling.

    Broadcast -> Confirmed | Failed | Expired | TimedOut
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from swapexec.errors import (
    ConfirmationTimedOut,
    OnChainFailure,
    RpcUnavailable,
    SwapExecError,
    TransactionExpired,
)
from swapexec.rpc.client import SolanaRpcClient

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_WINDOW = 150  # blocks, ~1 minute
DEFAULT_POLL_INTERVAL = 1.0  # seconds
DEFAULT_MAX_ATTEMPTS = 60


class OutcomeStatus(str, Enum):
    """Terminal states of a confirmation attempt."""

    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class SubmissionHandle:
    """Identifies a broadcast transaction and its validity window."""

    signature: str
    start_height: int
    last_valid_block_height: int
    channel: str = "direct"


@dataclass(frozen=True)
class ConfirmationOutcome:
    """Result of confirming a submission."""

    status: OutcomeStatus
    signature: str
    slot: Optional[int] = None
    transaction: Optional[dict] = None
    error: Any = None
    attempts: int = 0
    last_height: Optional[int] = None
    last_valid_block_height: Optional[int] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == OutcomeStatus.CONFIRMED

    def to_error(self) -> Optional[SwapExecError]:
        """Error describing a non-confirmed outcome; None when confirmed."""
        if self.status == OutcomeStatus.FAILED:
            return OnChainFailure(self.error, signature=self.signature)
        if self.status == OutcomeStatus.EXPIRED:
            return TransactionExpired(
                self.last_height or 0,
                self.last_valid_block_height or 0,
                signature=self.signature,
            )
        if self.status == OutcomeStatus.TIMED_OUT:
            return ConfirmationTimedOut(self.attempts, signature=self.signature)
        return None


class ConfirmationEngine:
    """Polls signature status until the transaction resolves or expires."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        expiry_window: int = DEFAULT_EXPIRY_WINDOW,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        commitment: str = "confirmed",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.rpc = rpc
        self.expiry_window = expiry_window
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.commitment = commitment
        self._sleep = sleep

    async def expiry_bound(self) -> tuple[int, int]:
        """Read the current block height and compute the last valid height.

        Returns:
            Tuple of (current_height, last_valid_block_height)
        """
        height = await self.rpc.get_block_height()
        return height, height + self.expiry_window

    async def await_confirmation(
        self,
        handle: SubmissionHandle,
        search_history: bool = False,
    ) -> ConfirmationOutcome:
        """Drive the confirmation state machine for a submission.

        RPC errors during a poll are treated as "not yet visible" for that
        iteration. They consume attempt budget but never resolve the outcome.

        Pass ``search_history`` when resuming a submission made by an earlier
        invocation, whose signature may have left the node's status cache.
        """
        signature = handle.signature
        last_valid = handle.last_valid_block_height
        attempts = 0
        height: Optional[int] = None

        logger.info(
            f"Confirming {signature} (start height {handle.start_height}, last valid {last_valid})"
        )

        while True:
            try:
                status = await self.rpc.get_signature_status(signature, search_history=search_history)
            except RpcUnavailable as e:
                logger.warning(f"Signature status poll failed: {e}")
                status = None

            if status is not None:
                if status.err is not None:
                    logger.error(f"Transaction {signature} failed on chain: {status.err}")
                    return ConfirmationOutcome(
                        status=OutcomeStatus.FAILED,
                        signature=signature,
                        slot=status.slot,
                        error=status.err,
                        attempts=attempts,
                        last_height=height,
                        last_valid_block_height=last_valid,
                    )
                if status.reached(self.commitment):
                    logger.info(f"Transaction {signature} confirmed at slot {status.slot}")
                    transaction = await self._fetch_transaction(signature)
                    slot = status.slot
                    if transaction and transaction.get("slot") is not None:
                        slot = int(transaction["slot"])
                    return ConfirmationOutcome(
                        status=OutcomeStatus.CONFIRMED,
                        signature=signature,
                        slot=slot,
                        transaction=transaction,
                        attempts=attempts,
                        last_height=height,
                        last_valid_block_height=last_valid,
                    )
                logger.debug(f"Transaction {signature} at {status.confirmation_status}, waiting for {self.commitment}")

            try:
                height = await self.rpc.get_block_height()
            except RpcUnavailable as e:
                logger.warning(f"Block height poll failed: {e}")
            else:
                if height > last_valid:
                    logger.warning(f"Transaction {signature} expired: height {height} > last valid {last_valid}")
                    return ConfirmationOutcome(
                        status=OutcomeStatus.EXPIRED,
                        signature=signature,
                        attempts=attempts,
                        last_height=height,
                        last_valid_block_height=last_valid,
                    )

            attempts += 1
            if attempts >= self.max_attempts:
                logger.warning(f"Transaction {signature} not confirmed after {attempts} attempts")
                return ConfirmationOutcome(
                    status=OutcomeStatus.TIMED_OUT,
                    signature=signature,
                    attempts=attempts,
                    last_height=height,
                    last_valid_block_height=last_valid,
                )

            await self._sleep(self.poll_interval)

    async def _fetch_transaction(self, signature: str) -> Optional[dict]:
        """Fetch confirmed transaction metadata; None if it is not retrievable."""
        try:
            return await self.rpc.get_transaction(signature)
        except RpcUnavailable as e:
            logger.warning(f"Could not fetch confirmed transaction {signature}: {e}")
            return None
