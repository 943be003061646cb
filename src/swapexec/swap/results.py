"""Executor result record emitted by every command."""

from typing import Optional

from pydantic import BaseModel, Field

from swapexec.errors import SwapExecError


class ExecutorResult(BaseModel):
    """Outcome of a ping, simulate or swap invocation."""

    success: bool = Field(..., description="Whether the operation succeeded")
    signature: Optional[str] = Field(None, description="Transaction signature")
    received_amount: Optional[str] = Field(None, description="Output amount received in base units")
    slot: Optional[int] = Field(None, description="Slot of confirmation (or current slot for ping)")
    error: Optional[str] = Field(None, description="Human-readable error message")
    error_code: Optional[str] = Field(None, description="Stable error class identifier")
    logs: list[str] = Field(default_factory=list, description="Log lines describing the stages run")
    expected_out: Optional[str] = Field(None, description="Quoted output amount (simulate)")
    compute_units_used: Optional[int] = Field(None, description="Compute units consumed (simulate)")
    idempotency_key: Optional[str] = Field(None, description="Caller-supplied idempotency key")

    @classmethod
    def from_error(
        cls,
        error: SwapExecError,
        prefix: str,
        logs: Optional[list[str]] = None,
        **kwargs,
    ) -> "ExecutorResult":
        """Build a failure result from a pipeline error."""
        logs = list(logs or [])
        logs.append(f"Error: {error.message}")
        signature = kwargs.pop("signature", None) or getattr(error, "signature", None)
        return cls(
            success=False,
            error=f"{prefix}: {error.message}",
            error_code=error.code,
            logs=logs,
            signature=signature,
            **kwargs,
        )

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)
