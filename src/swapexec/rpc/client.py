"""Async Solana JSON-RPC client over httpx.

Covers only the methods the swap pipeline and the health probe need.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from swapexec.errors import RpcUnavailable

logger = logging.getLogger(__name__)

SOLANA_RPC = "https://api.mainnet-beta.solana.com"

# Commitment levels in increasing order of finality
COMMITMENT_ORDER = ("processed", "confirmed", "finalized")


@dataclass(frozen=True)
class SignatureStatus:
    """Network-reported status of a broadcast transaction."""

    slot: int
    confirmations: Optional[int]
    err: Any
    confirmation_status: Optional[str]

    @classmethod
    def from_rpc(cls, data: dict) -> "SignatureStatus":
        return cls(
            slot=int(data.get("slot") or 0),
            confirmations=data.get("confirmations"),
            err=data.get("err"),
            confirmation_status=data.get("confirmationStatus"),
        )

    def reached(self, commitment: str) -> bool:
        """Check whether the status is at least at the given commitment."""
        if self.confirmation_status is None:
            # Nodes omit confirmationStatus only for rooted (finalized) entries
            return self.confirmations is None
        try:
            return COMMITMENT_ORDER.index(self.confirmation_status) >= COMMITMENT_ORDER.index(commitment)
        except ValueError:
            return False


@dataclass(frozen=True)
class LatestBlockhash:
    blockhash: str
    last_valid_block_height: int


class SolanaRpcClient:
    """Minimal async JSON-RPC client for a Solana endpoint."""

    def __init__(
        self,
        rpc_url: str = SOLANA_RPC,
        timeout: float = 30.0,
        commitment: str = "confirmed",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: Optional[list] = None) -> Any:
        """Issue a JSON-RPC call and return its result.

        Raises:
            RpcUnavailable: on transport errors, non-2xx responses or error objects
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RpcUnavailable(f"{method} request failed: {e}") from e

        if not response.is_success:
            raise RpcUnavailable(f"{method} returned HTTP {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise RpcUnavailable(f"{method} returned invalid JSON") from e

        if "error" in data:
            error = data["error"]
            if isinstance(error, dict):
                raise RpcUnavailable(
                    f"{method} error: {error.get('message', error)}",
                    rpc_code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcUnavailable(f"{method} error: {error}")

        if "result" not in data:
            raise RpcUnavailable(f"{method} returned no result")

        return data["result"]

    # ============ Chain state ============

    async def get_slot(self) -> int:
        return int(await self._call("getSlot", [{"commitment": self.commitment}]))

    async def get_block_height(self) -> int:
        return int(await self._call("getBlockHeight", [{"commitment": self.commitment}]))

    async def get_epoch_info(self) -> dict:
        return await self._call("getEpochInfo", [{"commitment": self.commitment}])

    async def get_latest_blockhash(self) -> LatestBlockhash:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            value = result["value"]
            return LatestBlockhash(
                blockhash=value["blockhash"],
                last_valid_block_height=int(value["lastValidBlockHeight"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RpcUnavailable(f"getLatestBlockhash returned malformed result: {result}") from e

    async def get_account_info(self, pubkey: str) -> Optional[dict]:
        """Get account info; None when the account does not exist."""
        result = await self._call(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": self.commitment}],
        )
        return result.get("value") if isinstance(result, dict) else None

    # ============ Transactions ============

    async def simulate_transaction(
        self,
        tx_base64: str,
        sig_verify: bool = False,
        replace_recent_blockhash: bool = True,
    ) -> dict:
        result = await self._call(
            "simulateTransaction",
            [
                tx_base64,
                {
                    "encoding": "base64",
                    "sigVerify": sig_verify,
                    "replaceRecentBlockhash": replace_recent_blockhash,
                    "commitment": self.commitment,
                },
            ],
        )
        return result.get("value") or {}

    async def send_transaction(self, tx_base64: str, skip_preflight: bool = False) -> str:
        """Broadcast a signed transaction and return its signature."""
        signature = await self._call(
            "sendTransaction",
            [
                tx_base64,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.commitment,
                },
            ],
        )
        return str(signature)

    async def get_signature_status(self, signature: str, search_history: bool = False) -> Optional[SignatureStatus]:
        """Get the status of a signature; None while it is not yet visible.

        Nodes only keep recent signatures in their status cache. Set
        ``search_history`` to also look up older, rooted transactions.
        """
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": search_history}],
        )
        statuses = result.get("value") or [None]
        status = statuses[0]
        if status is None:
            return None
        return SignatureStatus.from_rpc(status)

    async def get_transaction(self, signature: str) -> Optional[dict]:
        """Get a confirmed transaction with metadata; None if not available."""
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
