"""Utility modules for swapexec."""

from swapexec.utils.amounts import (
    LAMPORTS_PER_SOL,
    format_duration,
    lamports_to_sol,
    parse_amount,
    sol_to_lamports,
)

__all__ = [
    "LAMPORTS_PER_SOL",
    "format_duration",
    "lamports_to_sol",
    "parse_amount",
    "sol_to_lamports",
]
