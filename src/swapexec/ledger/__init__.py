"""Attempt ledger: persistent records of swap attempts by idempotency key."""

from swapexec.ledger.models import AttemptStatus, Base, SwapAttempt
from swapexec.ledger.repository import AttemptRepository

__all__ = ["AttemptRepository", "AttemptStatus", "Base", "SwapAttempt"]
