"""RPC endpoint health probe.

Runs an ordered battery of read-only checks in a single pass and stops at the
first failure, reporting which check failed.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from swapexec.errors import RpcUnavailable
from swapexec.rpc.client import SolanaRpcClient

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


@dataclass
class CheckResult:
    name: str
    ok: bool
    latency_ms: float
    value: Any = None
    error: Optional[str] = None


@dataclass
class HealthReport:
    """Outcome of a probe run."""

    rpc_url: str
    healthy: bool
    latency_ms: float
    slot: Optional[int] = None
    failed_check: Optional[str] = None
    error: Optional[str] = None
    checks: list[CheckResult] = field(default_factory=list)


class HealthProbe:
    """Stateless multi-check liveness probe for a Solana RPC endpoint."""

    def __init__(self, rpc: SolanaRpcClient, account: str = SYSTEM_PROGRAM_ID):
        self.rpc = rpc
        self.account = account

    def _checks(self) -> list[tuple[str, Callable[[], Awaitable[Any]]]]:
        return [
            ("slot", self.rpc.get_slot),
            ("block_height", self.rpc.get_block_height),
            ("epoch_info", self.rpc.get_epoch_info),
            ("latest_blockhash", self.rpc.get_latest_blockhash),
            ("account", self._check_account),
        ]

    async def _check_account(self) -> dict:
        account = await self.rpc.get_account_info(self.account)
        if account is None:
            raise RpcUnavailable(f"Account {self.account} not found")
        return account

    async def run(self) -> HealthReport:
        """Run all checks in order, stopping at the first failure."""
        logger.info(f"Executing ping command to {self.rpc.rpc_url}")
        start = time.perf_counter()
        report = HealthReport(rpc_url=self.rpc.rpc_url, healthy=False, latency_ms=0.0)

        for name, check in self._checks():
            check_start = time.perf_counter()
            try:
                value = await check()
            except RpcUnavailable as e:
                elapsed = (time.perf_counter() - check_start) * 1000
                report.checks.append(CheckResult(name, False, elapsed, error=e.message))
                report.failed_check = name
                report.error = f"{name} check failed: {e.message}"
                report.latency_ms = (time.perf_counter() - start) * 1000
                logger.error(f"Ping failed: {report.error}")
                return report

            elapsed = (time.perf_counter() - check_start) * 1000
            report.checks.append(CheckResult(name, True, elapsed, value=value))
            if name == "slot":
                report.slot = value
            elif name == "latest_blockhash":
                logger.info(f"Recent blockhash: {value.blockhash}")

        report.healthy = True
        report.latency_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Ping successful - Current slot: {report.slot}, Duration: {report.latency_ms:.0f}ms")
        return report
