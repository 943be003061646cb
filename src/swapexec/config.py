"""Application configuration using pydantic-settings.

Every tunable of the swap pipeline lives here so that the executor can hand
explicit values to the builder and the confirmation engine.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Logging
    # ======================
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Endpoints
    # ======================
    sol_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    jupiter_api_url: str = Field(
        default="https://quote-api.jup.ag/v6", description="Jupiter aggregator base URL"
    )
    jupiter_api_key: str = Field(default="", description="Jupiter API key (optional)")
    bundle_relay_url: str = Field(
        default="", description="Bundle relay (block engine) URL for jito/bloxroute modes"
    )
    http_timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")
    commitment: str = Field(default="confirmed", description="RPC commitment level")

    # ======================
    # Confirmation
    # ======================
    expiry_window_blocks: int = Field(
        default=150, description="Blocks after broadcast before a transaction expires"
    )
    poll_interval_seconds: float = Field(
        default=1.0, description="Delay between signature status polls"
    )
    max_confirmation_attempts: int = Field(
        default=60, description="Maximum signature status polls before timing out"
    )

    # ======================
    # Compute budget
    # ======================
    default_priority_fee: int = Field(
        default=1000, description="Default compute unit price in micro-lamports"
    )
    base_compute_units: int = Field(
        default=200_000, description="Base compute unit limit for derived limits"
    )
    compute_units_per_instruction: int = Field(
        default=50_000, description="Compute units added per instruction"
    )
    max_compute_units: int = Field(
        default=1_400_000, description="Network ceiling for compute units per transaction"
    )
    simulation_compute_unit_limit: int = Field(
        default=400_000, description="Compute unit limit used for simulations"
    )

    # ======================
    # Attempt ledger
    # ======================
    attempt_ledger_url: Optional[str] = Field(
        default=None,
        description="Database URL for idempotency records (disabled when unset)",
    )
    attempt_stale_seconds: float = Field(
        default=120.0,
        description="Seconds before an unsigned attempt left by another invocation may be retried",
    )

    @property
    def has_bundle_relay(self) -> bool:
        return bool(self.bundle_relay_url)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "debug": self.debug,
            "rpc": self.sol_rpc_url,
            "jupiter": {
                "url": self.jupiter_api_url,
                "api_key": "***" if self.jupiter_api_key else "(not set)",
            },
            "bundle_relay": self.bundle_relay_url or "(not set)",
            "confirmation": {
                "commitment": self.commitment,
                "expiry_window_blocks": self.expiry_window_blocks,
                "poll_interval_seconds": self.poll_interval_seconds,
                "max_attempts": self.max_confirmation_attempts,
            },
            "compute_budget": {
                "default_priority_fee": self.default_priority_fee,
                "base_units": self.base_compute_units,
                "units_per_instruction": self.compute_units_per_instruction,
                "max_units": self.max_compute_units,
            },
            "attempt_ledger": self._redact_url(self.attempt_ledger_url)
            if self.attempt_ledger_url
            else "(disabled)",
            "attempt_stale_seconds": self.attempt_stale_seconds,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
