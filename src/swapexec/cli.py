"""Command line entry point.

Usage:
    swapexec ping [--rpc-url URL] [--timeout 5]
    swapexec simulate --input-mint MINT --output-mint MINT --amount 1.0 --slippage-bps 50
    swapexec swap --input-mint MINT --output-mint MINT --amount 1.0 --slippage-bps 50 --wallet id.json

Every command prints one JSON result to stdout and exits with 0 on success,
1 on any failure. Logs go to stderr.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from swapexec.config import Settings, get_settings
from swapexec.swap.executor import SwapExecutor, SwapRequest
from swapexec.swap.results import ExecutorResult

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="swapexec", description="Solana Trading Executor")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ping = subparsers.add_parser("ping", help="Ping command for health checks")
    ping.add_argument("--rpc-url", help="RPC endpoint to ping")
    ping.add_argument("--timeout", type=float, default=5.0, help="Timeout in seconds")

    def add_swap_arguments(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--input-mint", required=True, help="Input mint address")
        sub.add_argument("--output-mint", required=True, help="Output mint address")
        sub.add_argument("--amount", required=True, help="Amount in lamports, or SOL if it has a decimal point")
        sub.add_argument("--slippage-bps", type=int, required=True, help="Slippage in basis points")
        sub.add_argument("--rpc-url", help="RPC endpoint")
        sub.add_argument("--route-info", help="Route info from Jupiter (JSON)")
        sub.add_argument("--priority-fee", type=int, help="Priority fee in microlamports")
        sub.add_argument("--compute-unit-limit", type=int, help="Compute unit limit")

    simulate = subparsers.add_parser("simulate", help="Simulate a swap without execution")
    add_swap_arguments(simulate)
    simulate.add_argument("--wallet", help="Wallet file path (used for the fee payer)")
    simulate.add_argument("--user-public-key", help="Fee payer public key when no wallet is given")

    swap = subparsers.add_parser("swap", help="Execute a swap")
    add_swap_arguments(swap)
    swap.add_argument("--wallet", required=True, help="Wallet file path")
    swap.add_argument("--mode", default="simple", help="Execution mode: simple, jito, bloxroute")
    swap.add_argument("--idempotency-key", help="Idempotency key")

    return parser


def _settings_for(args: argparse.Namespace, base: Settings) -> Settings:
    update = {}
    if getattr(args, "rpc_url", None):
        update["sol_rpc_url"] = args.rpc_url
    if args.command == "ping":
        update["http_timeout"] = args.timeout
    return base.model_copy(update=update) if update else base


def _request_for(args: argparse.Namespace) -> SwapRequest:
    return SwapRequest(
        input_mint=args.input_mint,
        output_mint=args.output_mint,
        amount=args.amount,
        slippage_bps=args.slippage_bps,
        wallet_path=getattr(args, "wallet", None),
        mode=getattr(args, "mode", "simple"),
        idempotency_key=getattr(args, "idempotency_key", None),
        route_info=args.route_info,
        priority_fee=args.priority_fee,
        compute_unit_limit=args.compute_unit_limit,
        user_public_key=getattr(args, "user_public_key", None),
    )


async def run(args: argparse.Namespace, settings: Optional[Settings] = None) -> ExecutorResult:
    """Run a parsed command and return its result."""
    settings = _settings_for(args, settings or get_settings())

    async with SwapExecutor(settings) as executor:
        if args.command == "ping":
            return await executor.ping()
        if args.command == "simulate":
            return await executor.simulate(_request_for(args))
        return await executor.swap(_request_for(args))


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    logger.debug(f"Settings: {settings.get_safe_dict()}")

    try:
        result = asyncio.run(run(args, settings))
    except Exception as e:
        logger.exception("Unexpected error")
        result = ExecutorResult(
            success=False,
            error=f"Unexpected error: {type(e).__name__}: {e}",
            error_code="internal_error",
            logs=[f"Error: {e}"],
            idempotency_key=getattr(args, "idempotency_key", None),
        )

    print(result.to_json())
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
