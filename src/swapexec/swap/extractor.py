"""Received amount extraction from confirmed transaction metadata."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

ZERO_AMOUNT = "0"


def extract_received_amount(
    confirmed_tx: Optional[dict],
    output_mint: str,
    owner: Optional[str] = None,
) -> str:
    """Find the post-execution token balance for the output mint.

    When an owner is given, the balance owned by that wallet is preferred over
    other accounts holding the same mint (pools, fee accounts).

    A confirmed transaction without a matching balance record still counts as a
    successful swap, so this returns "0" instead of failing.
    """
    if not confirmed_tx:
        logger.warning("No confirmed transaction metadata available, received amount unknown")
        return ZERO_AMOUNT

    meta = confirmed_tx.get("meta") or {}
    post_balances = meta.get("postTokenBalances") or []

    matches = [b for b in post_balances if isinstance(b, dict) and b.get("mint") == output_mint]
    if owner:
        owned = [b for b in matches if b.get("owner") == owner]
        if owned:
            matches = owned

    for balance in matches:
        amount = (balance.get("uiTokenAmount") or {}).get("amount")
        if amount is not None:
            return str(amount)

    logger.warning(f"No post-execution balance found for mint {output_mint}")
    return ZERO_AMOUNT
