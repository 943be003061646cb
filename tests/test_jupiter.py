"""Tests for the Jupiter aggregator client and route models."""

import json
from decimal import Decimal

import httpx
import pytest

from swapexec.errors import RouteUnavailable, SwapBuildFailed
from swapexec.routing.base import Route, SwapTransaction
from swapexec.routing.jupiter import JupiterClient

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def make_client(handler, api_key=None) -> JupiterClient:
    return JupiterClient(
        base_url="http://jupiter.test/v6/",
        api_key=api_key,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestRoute:
    """Tests for the Route model."""

    def test_from_quote_response(self, quote_factory):
        route = Route.from_quote_response(quote_factory())

        assert route.input_mint == SOL_MINT
        assert route.output_mint == USDC_MINT
        assert route.in_amount == 1_000_000_000
        assert route.out_amount == 150_000_000
        assert route.other_amount_threshold == 149_250_000
        assert route.price_impact_pct == Decimal("0.0012")
        assert route.context_slot == 4240
        assert route.dex_path == ["Whirlpool"]

    def test_missing_field(self, quote_factory):
        data = quote_factory()
        del data["outAmount"]

        with pytest.raises(KeyError):
            Route.from_quote_response(data)

    def test_not_an_object(self):
        with pytest.raises(TypeError):
            Route.from_quote_response(["not", "a", "quote"])

    def test_fingerprint_ignores_context_slot(self, quote_factory):
        first = quote_factory()
        second = quote_factory()
        second["contextSlot"] = 9999
        second["outAmount"] = "149000000"

        assert Route.from_quote_response(first).fingerprint == Route.from_quote_response(second).fingerprint

    def test_fingerprint_tracks_amount(self, quote_factory):
        a = Route.from_quote_response(quote_factory(amount=1_000))
        b = Route.from_quote_response(quote_factory(amount=2_000))

        assert a.fingerprint != b.fingerprint

    def test_swap_transaction_requires_payload(self):
        with pytest.raises(ValueError):
            SwapTransaction.from_swap_response({"swapTransaction": ""})


class TestJupiterClient:
    """Tests for JupiterClient."""

    @pytest.mark.asyncio
    async def test_get_quote(self, quote_factory):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=quote_factory())

        async with make_client(handler) as jupiter:
            route = await jupiter.get_quote(SOL_MINT, USDC_MINT, 1_000_000_000, 50)

        assert route.out_amount == 150_000_000
        request = seen[0]
        assert request.url.path == "/v6/quote"
        assert request.url.params["inputMint"] == SOL_MINT
        assert request.url.params["outputMint"] == USDC_MINT
        assert request.url.params["amount"] == "1000000000"
        assert request.url.params["slippageBps"] == "50"
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_api_key_header(self, quote_factory):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=quote_factory())

        await make_client(handler, api_key="secret").get_quote(SOL_MINT, USDC_MINT, 1, 50)

        assert seen[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_quote_http_error(self):
        jupiter = make_client(lambda request: httpx.Response(400, json={"error": "Could not find any route"}))

        with pytest.raises(RouteUnavailable, match="400"):
            await jupiter.get_quote(SOL_MINT, USDC_MINT, 1, 50)

    @pytest.mark.asyncio
    async def test_quote_malformed(self):
        jupiter = make_client(lambda request: httpx.Response(200, json={"inputMint": SOL_MINT}))

        with pytest.raises(RouteUnavailable, match="Malformed"):
            await jupiter.get_quote(SOL_MINT, USDC_MINT, 1, 50)

    @pytest.mark.asyncio
    async def test_quote_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out")

        with pytest.raises(RouteUnavailable):
            await make_client(handler).get_quote(SOL_MINT, USDC_MINT, 1, 50)

    @pytest.mark.asyncio
    async def test_get_swap_transaction(self, quote_factory):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={"swapTransaction": "AQID", "lastValidBlockHeight": 3090, "prioritizationFeeLamports": 5000},
            )

        route = Route.from_quote_response(quote_factory())
        swap_tx = await make_client(handler).get_swap_transaction(route, "Wallet1111")

        assert swap_tx.swap_transaction == "AQID"
        assert swap_tx.last_valid_block_height == 3090
        assert swap_tx.prioritization_fee_lamports == 5000
        body = bodies[0]
        assert body["quoteResponse"] == quote_factory()
        assert body["userPublicKey"] == "Wallet1111"
        assert body["wrapAndUnwrapSol"] is True

    @pytest.mark.asyncio
    async def test_swap_missing_transaction(self, quote_factory):
        jupiter = make_client(lambda request: httpx.Response(200, json={"lastValidBlockHeight": 1}))
        route = Route.from_quote_response(quote_factory())

        with pytest.raises(SwapBuildFailed):
            await jupiter.get_swap_transaction(route, "Wallet1111")

    @pytest.mark.asyncio
    async def test_swap_http_error(self, quote_factory):
        jupiter = make_client(lambda request: httpx.Response(500, text="internal"))
        route = Route.from_quote_response(quote_factory())

        with pytest.raises(SwapBuildFailed, match="500"):
            await jupiter.get_swap_transaction(route, "Wallet1111")

    def test_client_only_exposes_route_calls(self):
        public = {name for name in vars(JupiterClient) if not name.startswith("_")}

        assert public == {"get_quote", "get_swap_transaction", "aclose"}
