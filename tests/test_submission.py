"""Tests for submission strategies."""

import json

import httpx
import pytest

from swapexec.errors import BroadcastFailed, RpcUnavailable
from swapexec.swap.builder import TransactionBuilder
from swapexec.swap.confirmation import ConfirmationEngine
from swapexec.swap.submission import (
    BundleRelaySubmission,
    DirectSubmission,
    UnconfiguredRelaySubmission,
    create_submission_strategy,
)


@pytest.fixture
def signed_tx(wallet, payload_builder):
    return TransactionBuilder().prepare(payload_builder(wallet.pubkey()), keypair=wallet)


@pytest.fixture
def engine(stub_rpc, fake_sleep):
    return ConfirmationEngine(stub_rpc, expiry_window=150, sleep=fake_sleep)


class TestCreateSubmissionStrategy:
    """Tests for mode selection."""

    def test_simple(self, stub_rpc, engine):
        assert isinstance(create_submission_strategy("simple", stub_rpc, engine), DirectSubmission)

    def test_unknown_mode_falls_back(self, stub_rpc, engine, caplog):
        strategy = create_submission_strategy("warp", stub_rpc, engine)

        assert isinstance(strategy, DirectSubmission)
        assert "falling back to simple" in caplog.text

    def test_bundle_mode_with_relay(self, stub_rpc, engine):
        strategy = create_submission_strategy("jito", stub_rpc, engine, bundle_relay_url="http://relay.test")

        assert isinstance(strategy, BundleRelaySubmission)
        assert strategy.channel == "jito"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["jito", "bloxroute"])
    async def test_bundle_mode_without_relay(self, stub_rpc, engine, signed_tx, mode):
        strategy = create_submission_strategy(mode, stub_rpc, engine)
        assert isinstance(strategy, UnconfiguredRelaySubmission)

        with pytest.raises(BroadcastFailed, match="BUNDLE_RELAY_URL"):
            await strategy.submit(signed_tx)

        assert stub_rpc.sent == []


class TestDirectSubmission:
    """Tests for DirectSubmission."""

    @pytest.mark.asyncio
    async def test_submit(self, stub_rpc, engine, signed_tx):
        handle = await DirectSubmission(stub_rpc, engine).submit(signed_tx)

        assert handle.signature == signed_tx.signature
        assert handle.start_height == 1000
        assert handle.last_valid_block_height == 1150
        assert handle.channel == "direct"
        assert stub_rpc.sent == [signed_tx.to_base64()]

    @pytest.mark.asyncio
    async def test_send_error_becomes_broadcast_failed(self, stub_rpc, engine, signed_tx):
        stub_rpc.failures["send_transaction"] = RpcUnavailable("Blockhash not found", rpc_code=-32002)

        with pytest.raises(BroadcastFailed, match="Blockhash not found"):
            await DirectSubmission(stub_rpc, engine).submit(signed_tx)

    @pytest.mark.asyncio
    async def test_rejection_is_not_ambiguous(self, stub_rpc, engine, signed_tx):
        stub_rpc.failures["send_transaction"] = RpcUnavailable("Blockhash not found", rpc_code=-32002)

        with pytest.raises(BroadcastFailed) as exc_info:
            await DirectSubmission(stub_rpc, engine).submit(signed_tx)

        assert exc_info.value.ambiguous is False
        assert exc_info.value.signature is None

    @pytest.mark.asyncio
    async def test_transport_error_is_ambiguous(self, stub_rpc, engine, signed_tx):
        stub_rpc.failures["send_transaction"] = RpcUnavailable("sendTransaction request failed: ReadTimeout")

        with pytest.raises(BroadcastFailed) as exc_info:
            await DirectSubmission(stub_rpc, engine).submit(signed_tx)

        assert exc_info.value.ambiguous is True
        assert exc_info.value.signature == signed_tx.signature

    @pytest.mark.asyncio
    async def test_supplied_bound_skips_height_read(self, stub_rpc, engine, signed_tx):
        handle = await DirectSubmission(stub_rpc, engine).submit(signed_tx, bound=(2000, 2150))

        assert handle.start_height == 2000
        assert handle.last_valid_block_height == 2150
        assert "get_block_height" not in stub_rpc.calls

    @pytest.mark.asyncio
    async def test_expiry_bound_read_before_send(self, stub_rpc, engine, signed_tx):
        await DirectSubmission(stub_rpc, engine).submit(signed_tx)

        assert stub_rpc.calls.index("get_block_height") < stub_rpc.calls.index("send_transaction")

    @pytest.mark.asyncio
    async def test_await_confirmation_uses_engine(self, stub_rpc, engine, signed_tx):
        strategy = DirectSubmission(stub_rpc, engine)
        handle = await strategy.submit(signed_tx)

        outcome = await strategy.await_confirmation(handle)

        assert outcome.is_confirmed
        assert outcome.signature == signed_tx.signature


class TestBundleRelaySubmission:
    """Tests for BundleRelaySubmission."""

    @pytest.mark.asyncio
    async def test_send_bundle(self, engine, signed_tx):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "bundle-id-1"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        strategy = BundleRelaySubmission("http://relay.test/api/v1/bundles", engine, client=client, channel="jito")

        handle = await strategy.submit(signed_tx)

        assert handle.signature == signed_tx.signature
        assert handle.channel == "jito"
        assert handle.last_valid_block_height == 1150
        assert bodies[0]["method"] == "sendBundle"
        assert bodies[0]["params"] == [[signed_tx.to_base64()], {"encoding": "base64"}]

    @pytest.mark.asyncio
    async def test_relay_rejection(self, engine, signed_tx):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad"}})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        strategy = BundleRelaySubmission("http://relay.test", engine, client=client)

        with pytest.raises(BroadcastFailed, match="rejected"):
            await strategy.submit(signed_tx)

    @pytest.mark.asyncio
    async def test_relay_http_error(self, engine, signed_tx):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited")))
        strategy = BundleRelaySubmission("http://relay.test", engine, client=client)

        with pytest.raises(BroadcastFailed, match="429"):
            await strategy.submit(signed_tx)

    @pytest.mark.asyncio
    async def test_relay_unreachable_is_ambiguous(self, engine, signed_tx):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        strategy = BundleRelaySubmission("http://relay.test", engine, client=client)

        with pytest.raises(BroadcastFailed) as exc_info:
            await strategy.submit(signed_tx)

        assert exc_info.value.ambiguous is True
        assert exc_info.value.signature == signed_tx.signature
