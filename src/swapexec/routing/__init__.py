"""Routing module: the Jupiter aggregator client and its route models."""

from swapexec.routing.base import Route, SwapTransaction
from swapexec.routing.jupiter import JUPITER_API_V6, JupiterClient

__all__ = [
    "Route",
    "SwapTransaction",
    "JupiterClient",
    "JUPITER_API_V6",
]
