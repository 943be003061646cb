"""Swap executor: the pipeline behind the ping, simulate and swap commands.

    route -> swap transaction -> prepare (decode, compute budget, sign)
          -> submit -> confirm -> extract received amount

Every stage raises a SwapExecError on failure; this module is the single place
where errors become an ExecutorResult. Nothing here retries a stage.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from sqlalchemy.exc import SQLAlchemyError

from swapexec.config import Settings, get_settings
from swapexec.errors import (
    BroadcastFailed,
    InvalidRequest,
    LedgerUnavailable,
    OnChainFailure,
    RouteUnavailable,
    RpcUnavailable,
    SimulationFailed,
    SwapExecError,
    TransactionExpired,
)
from swapexec.health import HealthProbe
from swapexec.ledger.database import get_db, init_db
from swapexec.ledger.models import AttemptStatus, SwapAttempt
from swapexec.ledger.repository import AttemptRepository
from swapexec.routing.base import Route
from swapexec.routing.jupiter import JupiterClient
from swapexec.rpc.client import SolanaRpcClient
from swapexec.swap.builder import SignedTransaction, TransactionBuilder
from swapexec.swap.confirmation import ConfirmationEngine, ConfirmationOutcome
from swapexec.swap.extractor import extract_received_amount
from swapexec.swap.results import ExecutorResult
from swapexec.swap.submission import SubmissionStrategy, create_submission_strategy
from swapexec.swap.wallet import load_wallet
from swapexec.utils.amounts import format_duration, parse_amount

logger = logging.getLogger(__name__)

CONSUMED_UNITS_RE = re.compile(r"consumed (\d+) of (\d+) compute units")


@dataclass
class SwapRequest:
    """Arguments of a simulate or swap invocation."""

    input_mint: str
    output_mint: str
    amount: str
    slippage_bps: int
    wallet_path: Optional[str] = None
    mode: str = "simple"
    idempotency_key: Optional[str] = None
    route_info: Optional[str] = None
    priority_fee: Optional[int] = None
    compute_unit_limit: Optional[int] = None
    user_public_key: Optional[str] = None


def parse_compute_units(logs: list[str]) -> int:
    """Read compute units from "consumed N of M compute units" log lines.

    The last matching line wins, which is the outermost program invocation.
    """
    units = 0
    for line in logs:
        match = CONSUMED_UNITS_RE.search(line)
        if match:
            units = int(match.group(1))
    return units


class SwapExecutor:
    """Runs the swap pipeline and reports a structured result."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rpc: Optional[SolanaRpcClient] = None,
        jupiter: Optional[JupiterClient] = None,
        keypair: Optional[Keypair] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.rpc = rpc or SolanaRpcClient(
            self.settings.sol_rpc_url,
            timeout=self.settings.http_timeout,
            commitment=self.settings.commitment,
        )
        self.jupiter = jupiter or JupiterClient(
            base_url=self.settings.jupiter_api_url,
            api_key=self.settings.jupiter_api_key or None,
            timeout=self.settings.http_timeout,
        )
        self.keypair = keypair
        self.builder = TransactionBuilder(
            keypair=keypair,
            default_priority_fee=self.settings.default_priority_fee,
            base_compute_units=self.settings.base_compute_units,
            compute_units_per_instruction=self.settings.compute_units_per_instruction,
            max_compute_units=self.settings.max_compute_units,
        )
        self.engine = ConfirmationEngine(
            self.rpc,
            expiry_window=self.settings.expiry_window_blocks,
            poll_interval=self.settings.poll_interval_seconds,
            max_attempts=self.settings.max_confirmation_attempts,
            commitment=self.settings.commitment,
            sleep=sleep,
        )

    # ============ Commands ============

    async def ping(self) -> ExecutorResult:
        """Run the RPC health probe."""
        report = await HealthProbe(self.rpc).run()
        logs = [f"RPC endpoint: {report.rpc_url}"]
        response_time = f"Response time: {format_duration(report.latency_ms)}"

        if report.healthy:
            logs.append(f"Current slot: {report.slot}")
            logs.append(response_time)
            return ExecutorResult(success=True, slot=report.slot, logs=logs)

        logs.append(f"Failed check: {report.failed_check}")
        logs.append(f"Error: {report.error}")
        logs.append(response_time)
        return ExecutorResult(
            success=False,
            error=f"Ping failed: {report.error}",
            error_code=RpcUnavailable.code,
            logs=logs,
        )

    async def simulate(self, request: SwapRequest) -> ExecutorResult:
        """Build the swap transaction and simulate it without broadcasting."""
        logger.info(
            f"Executing simulate command: {request.amount} {request.input_mint} -> "
            f"{request.output_mint} ({request.slippage_bps} bps)"
        )
        logs: list[str] = []

        try:
            user_public_key = self._simulation_user(request)
            route = await self._resolve_route(request, logs)
            swap_tx = await self.jupiter.get_swap_transaction(route, user_public_key)

            tx = self.builder.decode(swap_tx.swap_transaction)
            limit = request.compute_unit_limit
            if limit is None:
                limit = self.settings.simulation_compute_unit_limit
            tx = self.builder.inject_compute_directives(tx, limit, request.priority_fee)

            simulation = await self.rpc.simulate_transaction(self.builder.encode_for_simulation(tx))
            sim_logs = list(simulation.get("logs") or [])
            if simulation.get("err") is not None:
                raise SimulationFailed(f"Simulation error: {simulation['err']}", logs=sim_logs)

            logs.extend(sim_logs)
            units = simulation.get("unitsConsumed")
            compute_units = int(units) if units is not None else parse_compute_units(sim_logs)
            if simulation.get("accounts"):
                logs.append(f"Accounts affected: {len(simulation['accounts'])}")

        except SimulationFailed as e:
            logger.error(f"Simulation failed: {e.message}")
            return ExecutorResult.from_error(e, "Simulation failed", logs + e.logs)
        except SwapExecError as e:
            logger.error(f"Simulation failed: {e.message}")
            return ExecutorResult.from_error(e, "Simulation failed", logs)

        expected_out = str(route.out_amount)
        logs.append(f"Expected output: {expected_out}")
        logs.append(f"Compute units used: {compute_units}")
        logger.info(f"Simulation successful - Expected output: {expected_out}")

        return ExecutorResult(
            success=True,
            logs=logs,
            expected_out=expected_out,
            compute_units_used=compute_units,
        )

    async def swap(self, request: SwapRequest) -> ExecutorResult:
        """Execute a swap end to end."""
        logger.info(
            f"Executing swap command: {request.amount} {request.input_mint} -> "
            f"{request.output_mint} ({request.slippage_bps} bps, mode {request.mode})"
        )
        key = request.idempotency_key
        logs: list[str] = []
        if key:
            logger.info(f"Idempotency key: {key}")

        try:
            keypair = self._wallet_keypair(request)
            logs.append(f"Wallet: {keypair.pubkey()}")
            route = await self._resolve_route(request, logs)

            if key and self.settings.attempt_ledger_url:
                return await self._swap_with_ledger(request, keypair, route, logs)

            strategy = self._strategy(request.mode)
            try:
                signed = await self._build_signed(request, keypair, route, logs)
                handle = await strategy.submit(signed)
                logs.append(f"Transaction sent: {handle.signature} via {handle.channel}")
                outcome = await strategy.await_confirmation(handle)
            finally:
                await strategy.aclose()

        except SwapExecError as e:
            logger.error(f"Swap failed: {e.message}")
            return ExecutorResult.from_error(e, "Swap failed", logs, idempotency_key=key)

        received = self._received_amount(outcome, route, keypair)
        return self._outcome_result(outcome, received, logs, key)

    # ============ Pipeline stages ============

    def _wallet_keypair(self, request: SwapRequest) -> Keypair:
        if self.keypair is not None:
            return self.keypair
        if not request.wallet_path:
            raise InvalidRequest("A wallet file is required")
        return load_wallet(request.wallet_path)

    def _simulation_user(self, request: SwapRequest) -> str:
        if request.user_public_key:
            try:
                return str(Pubkey.from_string(request.user_public_key))
            except ValueError as e:
                raise InvalidRequest(f"Invalid user public key: {request.user_public_key}") from e
        if self.keypair is not None or request.wallet_path:
            return str(self._wallet_keypair(request).pubkey())
        raise InvalidRequest("Simulation requires a wallet file or a user public key")

    async def _resolve_route(self, request: SwapRequest, logs: list[str]) -> Route:
        """Use the supplied route verbatim, or fetch a fresh quote."""
        if request.route_info:
            try:
                route = Route.from_quote_response(json.loads(request.route_info))
            except (ValueError, KeyError, TypeError) as e:
                raise RouteUnavailable(f"Invalid route info: {e}") from e
            logs.append(f"Using supplied route (context slot {route.context_slot})")
            return route

        try:
            amount = parse_amount(request.amount)
        except ValueError as e:
            raise InvalidRequest(str(e)) from e

        route = await self.jupiter.get_quote(
            request.input_mint,
            request.output_mint,
            amount,
            request.slippage_bps,
        )
        logs.append(f"Quote: {route.in_amount} -> {route.out_amount} (context slot {route.context_slot})")
        logger.debug(f"Route: {route.to_dict()}")
        return route

    async def _build_signed(
        self,
        request: SwapRequest,
        keypair: Keypair,
        route: Route,
        logs: list[str],
    ) -> SignedTransaction:
        swap_tx = await self.jupiter.get_swap_transaction(route, str(keypair.pubkey()))
        signed = self.builder.prepare(
            swap_tx.swap_transaction,
            compute_unit_limit=request.compute_unit_limit,
            priority_fee=request.priority_fee,
            keypair=keypair,
        )
        if request.compute_unit_limit is not None or request.priority_fee is not None:
            logs.append("Compute budget directives added")
        return signed

    def _strategy(self, mode: str) -> SubmissionStrategy:
        return create_submission_strategy(
            mode,
            self.rpc,
            self.engine,
            bundle_relay_url=self.settings.bundle_relay_url if self.settings.has_bundle_relay else None,
            timeout=self.settings.http_timeout,
        )

    @staticmethod
    def _received_amount(outcome: ConfirmationOutcome, route: Route, keypair: Keypair) -> Optional[str]:
        if not outcome.is_confirmed:
            return None
        return extract_received_amount(outcome.transaction, route.output_mint, owner=str(keypair.pubkey()))

    @staticmethod
    def _outcome_result(
        outcome: ConfirmationOutcome,
        received: Optional[str],
        logs: list[str],
        key: Optional[str],
    ) -> ExecutorResult:
        if outcome.is_confirmed:
            logs.append(f"Transaction signature: {outcome.signature}")
            logs.append(f"Received amount: {received}")
            logs.append(f"Confirmed at slot: {outcome.slot}")
            logger.info(f"Swap successful - Signature: {outcome.signature}")
            return ExecutorResult(
                success=True,
                signature=outcome.signature,
                received_amount=received,
                slot=outcome.slot,
                logs=logs,
                idempotency_key=key,
            )

        error = outcome.to_error()
        logger.error(f"Swap failed: {error.message}")
        return ExecutorResult.from_error(error, "Swap failed", logs, idempotency_key=key, slot=outcome.slot)

    # ============ Attempt ledger ============

    async def _swap_with_ledger(
        self,
        request: SwapRequest,
        keypair: Keypair,
        route: Route,
        logs: list[str],
    ) -> ExecutorResult:
        """Swap with a persistent attempt record so a key is never broadcast twice.

        The signed transaction is recorded before it is handed to the network.
        A later call with the same key resumes confirmation of that signature
        instead of building a new transaction.
        """
        key = request.idempotency_key
        db_url = self.settings.attempt_ledger_url

        try:
            await init_db(db_url)
            async with get_db(db_url) as session:
                repo = AttemptRepository(session, stale_after=self.settings.attempt_stale_seconds)
                attempt = await repo.begin_attempt(key, route)
                await session.commit()

                if attempt.is_terminal:
                    logs.append(f"Attempt already {AttemptStatus(attempt.status).value}, returning recorded result")
                    return self._attempt_result(attempt, logs)

                handle = repo.handle_for(attempt)
                if handle is not None:
                    logs.append(f"Resuming confirmation of {handle.signature}")
                    outcome = await self.engine.await_confirmation(handle, search_history=True)
                else:
                    outcome = await self._broadcast_recorded(request, keypair, route, logs, repo, attempt)

                received = self._received_amount(outcome, route, keypair)
                await repo.record_outcome(attempt, outcome, received)
        except SQLAlchemyError as e:
            logger.exception("Attempt ledger error")
            raise LedgerUnavailable(f"Attempt ledger error: {e}") from e

        return self._outcome_result(outcome, received, logs, key)

    async def _broadcast_recorded(
        self,
        request: SwapRequest,
        keypair: Keypair,
        route: Route,
        logs: list[str],
        repo: AttemptRepository,
        attempt: SwapAttempt,
    ) -> ConfirmationOutcome:
        session = repo.session
        strategy = self._strategy(request.mode)
        try:
            try:
                signed = await self._build_signed(request, keypair, route, logs)
                bound = await self.engine.expiry_bound()
            except SwapExecError as e:
                await repo.mark_aborted(attempt, e.message)
                await session.commit()
                raise

            start_height, last_valid = bound
            await repo.mark_sending(attempt, signed.signature, start_height, last_valid, strategy.channel)
            await session.commit()

            try:
                handle = await strategy.submit(signed, bound=bound)
            except BroadcastFailed as e:
                if e.ambiguous:
                    # The transaction may still land; keep the signature for the next call
                    logger.warning(f"Broadcast of {signed.signature} may have reached the network: {e.message}")
                    await repo.record_send_error(attempt, e.message)
                else:
                    await repo.mark_aborted(attempt, e.message)
                await session.commit()
                raise

            await repo.mark_broadcast(attempt, handle)
            await session.commit()
            logs.append(f"Transaction sent: {handle.signature} via {handle.channel}")
            return await strategy.await_confirmation(handle)
        finally:
            await strategy.aclose()

    @staticmethod
    def _attempt_result(attempt: SwapAttempt, logs: list[str]) -> ExecutorResult:
        status = AttemptStatus(attempt.status)
        if status == AttemptStatus.CONFIRMED:
            return ExecutorResult(
                success=True,
                signature=attempt.signature,
                received_amount=attempt.received_amount,
                slot=attempt.slot,
                logs=logs,
                idempotency_key=attempt.idempotency_key,
            )

        code = OnChainFailure.code if status == AttemptStatus.FAILED else TransactionExpired.code
        return ExecutorResult(
            success=False,
            signature=attempt.signature,
            slot=attempt.slot,
            error=f"Swap failed: {attempt.error_message}",
            error_code=code,
            logs=logs,
            idempotency_key=attempt.idempotency_key,
        )

    # ============ Lifecycle ============

    async def aclose(self) -> None:
        await self.jupiter.aclose()
        await self.rpc.aclose()

    async def __aenter__(self) -> "SwapExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
