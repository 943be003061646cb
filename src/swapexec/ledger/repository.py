"""Repository for swap attempt records."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from swapexec.errors import AttemptInProgress, IdempotencyConflict
from swapexec.ledger.models import AttemptStatus, SwapAttempt
from swapexec.routing.base import Route
from swapexec.swap.confirmation import ConfirmationOutcome, OutcomeStatus, SubmissionHandle

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = 120.0  # seconds

_OUTCOME_STATUS = {
    OutcomeStatus.CONFIRMED: AttemptStatus.CONFIRMED,
    OutcomeStatus.FAILED: AttemptStatus.FAILED,
    OutcomeStatus.EXPIRED: AttemptStatus.EXPIRED,
    OutcomeStatus.TIMED_OUT: AttemptStatus.TIMED_OUT,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AttemptRepository:
    """Database operations for idempotent swap attempts."""

    def __init__(self, session: AsyncSession, stale_after: float = DEFAULT_STALE_AFTER):
        self.session = session
        self.stale_after = timedelta(seconds=stale_after)

    async def get_by_key(self, idempotency_key: str) -> Optional[SwapAttempt]:
        stmt = select(SwapAttempt).where(SwapAttempt.idempotency_key == idempotency_key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def begin_attempt(self, idempotency_key: str, route: Route) -> SwapAttempt:
        """Get or create the attempt record for a key.

        An aborted record, or a building record nobody touched for
        ``stale_after``, is reset for a fresh attempt.

        Raises:
            IdempotencyConflict: if the key was used for a different route
            AttemptInProgress: if another invocation is building this attempt
        """
        attempt = await self.get_by_key(idempotency_key)

        if attempt is None:
            return await self._create(idempotency_key, route)

        if attempt.route_fingerprint != route.fingerprint:
            raise IdempotencyConflict(
                f"Idempotency key {idempotency_key!r} was already used for a different swap"
            )

        if attempt.was_broadcast:
            return attempt

        if AttemptStatus(attempt.status) == AttemptStatus.BUILDING and not self._is_stale(attempt):
            raise AttemptInProgress(f"Swap for idempotency key {idempotency_key!r} is already in progress")

        logger.info(f"Resetting {attempt.status} attempt for key {idempotency_key}")
        attempt.status = AttemptStatus.BUILDING
        attempt.error_message = None
        attempt.updated_at = _utcnow()
        await self.session.flush()
        return attempt

    async def _create(self, idempotency_key: str, route: Route) -> SwapAttempt:
        now = _utcnow()
        attempt = SwapAttempt(
            idempotency_key=idempotency_key,
            route_fingerprint=route.fingerprint,
            input_mint=route.input_mint,
            output_mint=route.output_mint,
            in_amount=str(route.in_amount),
            status=AttemptStatus.BUILDING,
            created_at=now,
            updated_at=now,
        )
        self.session.add(attempt)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Another invocation inserted the same key first
            await self.session.rollback()
            raise AttemptInProgress(
                f"Swap for idempotency key {idempotency_key!r} is already in progress"
            ) from e
        return attempt

    def _is_stale(self, attempt: SwapAttempt) -> bool:
        if attempt.updated_at is None:
            return True
        return _utcnow() - _as_utc(attempt.updated_at) > self.stale_after

    async def mark_sending(
        self,
        attempt: SwapAttempt,
        signature: str,
        start_height: int,
        last_valid_block_height: int,
        channel: str,
    ) -> SwapAttempt:
        """Record the signed transaction before it is handed to the network."""
        attempt.signature = signature
        attempt.start_height = start_height
        attempt.last_valid_block_height = last_valid_block_height
        attempt.channel = channel
        attempt.status = AttemptStatus.SENDING
        attempt.updated_at = _utcnow()
        await self.session.flush()
        return attempt

    async def mark_broadcast(self, attempt: SwapAttempt, handle: SubmissionHandle) -> SwapAttempt:
        attempt.signature = handle.signature
        attempt.start_height = handle.start_height
        attempt.last_valid_block_height = handle.last_valid_block_height
        attempt.channel = handle.channel
        attempt.status = AttemptStatus.BROADCAST
        attempt.updated_at = _utcnow()
        await self.session.flush()
        return attempt

    async def record_outcome(
        self,
        attempt: SwapAttempt,
        outcome: ConfirmationOutcome,
        received_amount: Optional[str] = None,
    ) -> SwapAttempt:
        attempt.status = _OUTCOME_STATUS[outcome.status]
        attempt.slot = outcome.slot
        attempt.received_amount = received_amount
        error = outcome.to_error()
        attempt.error_message = error.message if error else None
        attempt.updated_at = _utcnow()
        await self.session.flush()
        return attempt

    async def record_send_error(self, attempt: SwapAttempt, error_message: str) -> SwapAttempt:
        """Note a broadcast error that may still have delivered the transaction.

        The record keeps its signature so the next call resumes confirmation.
        """
        attempt.error_message = error_message
        attempt.updated_at = _utcnow()
        await self.session.flush()
        return attempt

    async def mark_aborted(self, attempt: SwapAttempt, error_message: str) -> SwapAttempt:
        """Record a failure that left nothing on the network."""
        attempt.status = AttemptStatus.ABORTED
        attempt.error_message = error_message
        attempt.signature = None
        attempt.start_height = None
        attempt.last_valid_block_height = None
        attempt.channel = None
        attempt.updated_at = _utcnow()
        await self.session.flush()
        return attempt

    @staticmethod
    def handle_for(attempt: SwapAttempt) -> Optional[SubmissionHandle]:
        """Rebuild the submission handle of a sending or broadcast attempt."""
        if not attempt.was_broadcast or attempt.last_valid_block_height is None:
            return None
        return SubmissionHandle(
            signature=attempt.signature,
            start_height=attempt.start_height or 0,
            last_valid_block_height=attempt.last_valid_block_height,
            channel=attempt.channel or "direct",
        )
