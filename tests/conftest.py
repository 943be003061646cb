"""Pytest configuration and fixtures."""

import asyncio
import base64
import os
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["DEBUG"] = "true"
os.environ.pop("ATTEMPT_LEDGER_URL", None)
os.environ.pop("BUNDLE_RELAY_URL", None)

from swapexec.config import Settings
from swapexec.ledger.database import close_db
from swapexec.ledger.models import Base
from swapexec.ledger.repository import AttemptRepository
from swapexec.routing.base import Route, SwapTransaction
from swapexec.rpc.client import LatestBlockhash, SignatureStatus

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

START_HEIGHT = 1000
CONFIRMED_SLOT = 4242
RECEIVED_AMOUNT = "149900000"


def make_quote(
    input_mint: str = SOL_MINT,
    output_mint: str = USDC_MINT,
    amount: int = 1_000_000_000,
    slippage_bps: int = 50,
) -> dict:
    """Quote payload shaped like the aggregator's /quote response."""
    return {
        "inputMint": input_mint,
        "inAmount": str(amount),
        "outputMint": output_mint,
        "outAmount": "150000000",
        "otherAmountThreshold": "149250000",
        "swapMode": "ExactIn",
        "slippageBps": slippage_bps,
        "priceImpactPct": "0.0012",
        "routePlan": [
            {
                "swapInfo": {"ammKey": "whirlpool-amm", "label": "Whirlpool"},
                "percent": 100,
            }
        ],
        "contextSlot": 4240,
    }


def build_payload(
    payer: Pubkey,
    instruction_count: int = 2,
    versioned: bool = False,
    lookup_table: bool = False,
    prefix: tuple = (),
) -> str:
    """Build an unsigned base64 transaction of transfers paid by payer."""
    recipients = [Pubkey.new_unique() for _ in range(instruction_count)]
    instructions = list(prefix) + [
        transfer(TransferParams(from_pubkey=payer, to_pubkey=recipient, lamports=1_000 * (i + 1)))
        for i, recipient in enumerate(recipients)
    ]
    blockhash = Hash.new_unique()

    if versioned:
        tables = [AddressLookupTableAccount(Pubkey.new_unique(), recipients)] if lookup_table else []
        message = MessageV0.try_compile(payer, instructions, tables, blockhash)
    else:
        message = Message.new_with_blockhash(instructions, payer, blockhash)

    signatures = [Signature.default()] * message.header.num_required_signatures
    tx = VersionedTransaction.populate(message, signatures)
    return base64.b64encode(bytes(tx)).decode()


def signature_status(confirmation_status: Optional[str] = "confirmed", err=None) -> SignatureStatus:
    return SignatureStatus(
        slot=CONFIRMED_SLOT - 1,
        confirmations=None if confirmation_status == "finalized" else 1,
        err=err,
        confirmation_status=confirmation_status,
    )


class StubRpc:
    """Scripted stand-in for SolanaRpcClient.

    Scripts are consumed one entry per call; the last entry repeats. An entry
    that is an exception is raised instead of returned.
    """

    rpc_url = "http://rpc.test"

    def __init__(self, wallet: Optional[Keypair] = None):
        self.statuses: list = [signature_status("confirmed")]
        self.heights: list = [START_HEIGHT]
        self.failures: dict = {}
        self.sent: list[str] = []
        self.simulated: list[str] = []
        self.calls: list[str] = []
        self.search_history: list[bool] = []
        self.slot = CONFIRMED_SLOT
        self.account: Optional[dict] = {"executable": True, "lamports": 1, "owner": "NativeLoader1111111111111111111111111111111"}
        self.simulation = {
            "err": None,
            "logs": [
                "Program JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 invoke [1]",
                "Program JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 consumed 61234 of 400000 compute units",
                "Program JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 success",
            ],
            "unitsConsumed": 61234,
        }
        owner = str(wallet.pubkey()) if wallet else None
        self.transaction: Optional[dict] = {
            "slot": CONFIRMED_SLOT,
            "meta": {
                "err": None,
                "postTokenBalances": [
                    {
                        "accountIndex": 3,
                        "mint": USDC_MINT,
                        "owner": "PoolVault1111111111111111111111111111111111",
                        "uiTokenAmount": {"amount": "98765000000", "decimals": 6},
                    },
                    {
                        "accountIndex": 2,
                        "mint": USDC_MINT,
                        "owner": owner,
                        "uiTokenAmount": {"amount": RECEIVED_AMOUNT, "decimals": 6},
                    },
                ],
            },
        }

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    @staticmethod
    def _next(script: list):
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_slot(self) -> int:
        self._record("get_slot")
        return self.slot

    async def get_block_height(self) -> int:
        self._record("get_block_height")
        return self._next(self.heights)

    async def get_epoch_info(self) -> dict:
        self._record("get_epoch_info")
        return {"epoch": 612, "slotIndex": 1234, "slotsInEpoch": 432000, "absoluteSlot": self.slot}

    async def get_latest_blockhash(self) -> LatestBlockhash:
        self._record("get_latest_blockhash")
        return LatestBlockhash(blockhash=str(Hash.default()), last_valid_block_height=START_HEIGHT + 150)

    async def get_account_info(self, pubkey: str) -> Optional[dict]:
        self._record("get_account_info")
        return self.account

    async def simulate_transaction(self, tx_base64: str, sig_verify: bool = False, replace_recent_blockhash: bool = True) -> dict:
        self._record("simulate_transaction")
        self.simulated.append(tx_base64)
        return self.simulation

    async def send_transaction(self, tx_base64: str, skip_preflight: bool = False) -> str:
        self._record("send_transaction")
        self.sent.append(tx_base64)
        tx = VersionedTransaction.from_bytes(base64.b64decode(tx_base64))
        return str(tx.signatures[0])

    async def get_signature_status(self, signature: str, search_history: bool = False) -> Optional[SignatureStatus]:
        self._record("get_signature_status")
        self.search_history.append(search_history)
        return self._next(self.statuses)

    async def get_transaction(self, signature: str) -> Optional[dict]:
        self._record("get_transaction")
        return self.transaction

    async def aclose(self) -> None:
        pass


class StubJupiter:
    """Stand-in for JupiterClient returning a transaction paid by the wallet.

    Set ``swap_gate`` to hold get_swap_transaction until the event is set;
    ``swap_entered`` is set once a call is waiting on it.
    """

    def __init__(self, wallet: Keypair):
        self.payload = build_payload(wallet.pubkey())
        self.quotes: list[int] = []
        self.swap_users: list[str] = []
        self.quote_error: Optional[Exception] = None
        self.swap_error: Optional[Exception] = None
        self.swap_gate: Optional[asyncio.Event] = None
        self.swap_entered = asyncio.Event()

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Route:
        self.quotes.append(amount)
        if self.quote_error:
            raise self.quote_error
        return Route.from_quote_response(make_quote(input_mint, output_mint, amount, slippage_bps))

    async def get_swap_transaction(self, route: Route, user_public_key: str) -> SwapTransaction:
        self.swap_users.append(user_public_key)
        if self.swap_gate is not None:
            self.swap_entered.set()
            await self.swap_gate.wait()
        if self.swap_error:
            raise self.swap_error
        return SwapTransaction(swap_transaction=self.payload, last_valid_block_height=START_HEIGHT + 150)

    async def aclose(self) -> None:
        pass


@pytest.fixture
def wallet() -> Keypair:
    return Keypair()


@pytest.fixture
def quote_factory():
    return make_quote


@pytest.fixture
def payload_builder():
    return build_payload


@pytest.fixture
def status_factory():
    return signature_status


@pytest.fixture
def stub_rpc(wallet: Keypair) -> StubRpc:
    return StubRpc(wallet)


@pytest.fixture
def stub_jupiter(wallet: Keypair) -> StubJupiter:
    return StubJupiter(wallet)


@pytest.fixture
def settings() -> Settings:
    """Settings with fast confirmation and no external services."""
    return Settings(
        sol_rpc_url="http://rpc.test",
        jupiter_api_url="http://jupiter.test",
        bundle_relay_url="",
        poll_interval_seconds=0.0,
        max_confirmation_attempts=5,
        expiry_window_blocks=150,
        attempt_ledger_url=None,
    )


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def fake_sleep(sleeps: list):
    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return sleep


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def attempt_repo(db_session: AsyncSession) -> AttemptRepository:
    """Create attempt repository for testing."""
    return AttemptRepository(db_session)


@pytest_asyncio.fixture
async def ledger_url(tmp_path) -> AsyncGenerator[str, None]:
    """File-backed ledger URL; the module-level engine is disposed afterwards."""
    yield f"sqlite+aiosqlite:///{tmp_path / 'attempts.db'}"
    await close_db()
