"""swapexec - Solana swap executor with expiry-aware confirmation."""

__version__ = "0.1.0"
