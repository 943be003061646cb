"""SQLAlchemy models for the attempt ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class AttemptStatus(str, Enum):
    """Status of a swap attempt."""

    BUILDING = "building"        # Route fetched, transaction not yet signed
    SENDING = "sending"          # Signed and recorded, broadcast in flight
    BROADCAST = "broadcast"      # Sent to network, outcome unknown
    CONFIRMED = "confirmed"      # Confirmed on chain
    FAILED = "failed"            # Rejected on chain
    EXPIRED = "expired"          # Blockhash validity window passed
    TIMED_OUT = "timed_out"      # Poll budget exhausted
    ABORTED = "aborted"          # Failed before broadcast


TERMINAL_STATUSES = {
    AttemptStatus.CONFIRMED,
    AttemptStatus.FAILED,
    AttemptStatus.EXPIRED,
}


class SwapAttempt(Base):
    """A swap execution attempt keyed by the caller's idempotency key."""

    __tablename__ = "swap_attempts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    route_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    input_mint: Mapped[str] = mapped_column(String(64), nullable=False)
    output_mint: Mapped[str] = mapped_column(String(64), nullable=False)
    in_amount: Mapped[str] = mapped_column(String(40), nullable=False)
    signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    start_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    last_valid_block_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    channel: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[AttemptStatus] = mapped_column(
        String(20), default=AttemptStatus.BUILDING, nullable=False
    )
    slot: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    received_amount: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def is_terminal(self) -> bool:
        return AttemptStatus(self.status) in TERMINAL_STATUSES

    @property
    def was_broadcast(self) -> bool:
        return self.signature is not None
