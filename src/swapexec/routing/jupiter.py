"""Jupiter DEX aggregator client for Solana.

Fetches a best route for a swap and the prebuilt unsigned transaction for
that route. No retries happen at this layer.
API docs: https://station.jup.ag/docs/apis/swap-api
"""

import logging
from typing import Optional

import httpx

from swapexec.errors import RouteUnavailable, SwapBuildFailed
from swapexec.routing.base import Route, SwapTransaction

logger = logging.getLogger(__name__)

JUPITER_API_V6 = "https://quote-api.jup.ag/v6"


class JupiterClient:
    """Async client for the Jupiter quote and swap endpoints."""

    def __init__(
        self,
        base_url: str = JUPITER_API_V6,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Aggregator base URL
            api_key: Optional API key for higher rate limits
            timeout: Request timeout in seconds
            client: Optional preconfigured HTTP client (owned by the caller)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _get_headers(self) -> dict:
        """Get API headers."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> Route:
        """Get the best route for a swap.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Input amount in base units
            slippage_bps: Slippage tolerance in basis points

        Returns:
            Route parsed from the quote response

        Raises:
            RouteUnavailable: on network errors, non-2xx or malformed payloads
        """
        logger.info(f"Requesting Jupiter quote: {amount} {input_mint} -> {output_mint} ({slippage_bps} bps)")

        try:
            response = await self._client.get(
                f"{self.base_url}/quote",
                headers=self._get_headers(),
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": str(amount),
                    "slippageBps": str(slippage_bps),
                    "onlyDirectRoutes": "false",
                    "asLegacyTransaction": "false",
                },
            )
        except httpx.HTTPError as e:
            raise RouteUnavailable(f"Jupiter quote request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"Jupiter API error: {response.status_code} - {response.text}")
            raise RouteUnavailable(f"Jupiter quote failed ({response.status_code}): {response.text}")

        try:
            route = Route.from_quote_response(response.json())
        except (KeyError, ValueError, TypeError) as e:
            raise RouteUnavailable(f"Malformed Jupiter quote: {e}") from e

        logger.info(
            f"Quote: {route.in_amount} -> {route.out_amount} via {' > '.join(route.dex_path) or 'direct'} "
            f"(impact {route.price_impact_pct}%, slot {route.context_slot})"
        )
        return route

    async def get_swap_transaction(self, route: Route, user_public_key: str) -> SwapTransaction:
        """Get the unsigned swap transaction for a route.

        Raises:
            SwapBuildFailed: on network errors, non-2xx or malformed payloads
        """
        try:
            response = await self._client.post(
                f"{self.base_url}/swap",
                headers=self._get_headers(),
                json={
                    "quoteResponse": route.raw,
                    "userPublicKey": user_public_key,
                    "wrapAndUnwrapSol": True,
                    "useSharedAccounts": True,
                    "asLegacyTransaction": False,
                    "useTokenLedger": False,
                },
            )
        except httpx.HTTPError as e:
            raise SwapBuildFailed(f"Jupiter swap request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"Jupiter swap error: {response.status_code} - {response.text}")
            raise SwapBuildFailed(f"Jupiter swap failed ({response.status_code}): {response.text}")

        try:
            swap_tx = SwapTransaction.from_swap_response(response.json())
        except (KeyError, ValueError, TypeError) as e:
            raise SwapBuildFailed(f"No swap transaction returned: {e}") from e

        if swap_tx.simulation_error:
            logger.warning(f"Jupiter reported a simulation error: {swap_tx.simulation_error}")

        return swap_tx

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "JupiterClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
