"""Route and swap transaction models returned by the aggregator."""

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """A swap quote from the aggregator.

    The raw quote payload is kept verbatim because the aggregator expects it
    back unchanged when building the swap transaction.
    """

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    other_amount_threshold: int = 0
    swap_mode: str = "ExactIn"
    price_impact_pct: Decimal = Decimal("0")
    route_plan: tuple = ()
    context_slot: Optional[int] = None
    raw: dict = field(default_factory=dict, compare=False, hash=False)
    timestamp: float = field(default_factory=time.time, compare=False)

    @classmethod
    def from_quote_response(cls, data: dict) -> "Route":
        """Build a route from a quote response.

        Raises:
            KeyError, ValueError, TypeError: on malformed payloads
        """
        if not isinstance(data, dict):
            raise TypeError(f"Quote response must be an object, got {type(data).__name__}")

        context_slot = data.get("contextSlot")
        return cls(
            input_mint=str(data["inputMint"]),
            output_mint=str(data["outputMint"]),
            in_amount=int(data["inAmount"]),
            out_amount=int(data["outAmount"]),
            slippage_bps=int(data.get("slippageBps", 0)),
            other_amount_threshold=int(data.get("otherAmountThreshold") or 0),
            swap_mode=str(data.get("swapMode", "ExactIn")),
            price_impact_pct=Decimal(str(data.get("priceImpactPct") or "0")),
            route_plan=tuple(data.get("routePlan") or ()),
            context_slot=int(context_slot) if context_slot is not None else None,
            raw=data,
        )

    @property
    def dex_path(self) -> list[str]:
        """Labels of the AMMs the route goes through."""
        path = []
        for step in self.route_plan:
            swap_info = step.get("swapInfo", {}) if isinstance(step, dict) else {}
            path.append(swap_info.get("label", "Unknown"))
        return path

    @property
    def fingerprint(self) -> str:
        """Stable hash of the swap intent (pair, size and slippage).

        The context slot is left out so that a re-fetched quote for the same
        intent maps to the same fingerprint.
        """
        intent = {
            "inputMint": self.input_mint,
            "outputMint": self.output_mint,
            "inAmount": str(self.in_amount),
            "slippageBps": self.slippage_bps,
        }
        encoded = json.dumps(intent, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode()).hexdigest()

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "input_mint": self.input_mint,
            "output_mint": self.output_mint,
            "in_amount": str(self.in_amount),
            "out_amount": str(self.out_amount),
            "slippage_bps": self.slippage_bps,
            "price_impact_pct": str(self.price_impact_pct),
            "dex_path": self.dex_path,
            "context_slot": self.context_slot,
        }


@dataclass(frozen=True)
class SwapTransaction:
    """Unsigned swap transaction built by the aggregator for a route."""

    swap_transaction: str  # base64 encoded
    last_valid_block_height: Optional[int] = None
    prioritization_fee_lamports: Optional[int] = None
    compute_unit_limit: Optional[int] = None
    simulation_error: Optional[Any] = None

    @classmethod
    def from_swap_response(cls, data: dict) -> "SwapTransaction":
        """Build from a swap response.

        Raises:
            KeyError, ValueError, TypeError: on malformed payloads
        """
        swap_transaction = data["swapTransaction"]
        if not isinstance(swap_transaction, str) or not swap_transaction:
            raise ValueError("swapTransaction must be a non-empty base64 string")

        def _optional_int(key: str) -> Optional[int]:
            value = data.get(key)
            return int(value) if value is not None else None

        return cls(
            swap_transaction=swap_transaction,
            last_valid_block_height=_optional_int("lastValidBlockHeight"),
            prioritization_fee_lamports=_optional_int("prioritizationFeeLamports"),
            compute_unit_limit=_optional_int("computeUnitLimit"),
            simulation_error=data.get("simulationError"),
        )
