"""Amount and duration helpers."""

from decimal import Decimal, InvalidOperation

LAMPORTS_PER_SOL = 1_000_000_000


def lamports_to_sol(lamports: int) -> Decimal:
    """Convert lamports to SOL."""
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def sol_to_lamports(sol: Decimal) -> int:
    """Convert SOL to lamports, truncating sub-lamport dust."""
    return int(Decimal(sol) * LAMPORTS_PER_SOL)


def parse_amount(amount: str) -> int:
    """Parse an amount string into base units.

    Strings with a decimal point are SOL-denominated ("1.0" -> 1_000_000_000),
    anything else is an exact integer amount of base units.

    Raises:
        ValueError: for non-numeric or negative amounts
    """
    text = amount.strip()
    if "." in text:
        try:
            value = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {amount!r}") from e
        if not value.is_finite():
            raise ValueError(f"Invalid amount: {amount!r}")
        lamports = sol_to_lamports(value)
    else:
        if not text.isdigit():
            raise ValueError(f"Invalid amount: {amount!r}")
        lamports = int(text)

    if lamports < 0:
        raise ValueError(f"Amount must not be negative: {amount!r}")
    return lamports


def format_duration(duration_ms: float) -> str:
    """Format a duration in a human readable way."""
    if duration_ms < 1000:
        return f"{int(duration_ms)}ms"
    if duration_ms < 60_000:
        return f"{duration_ms / 1000:.1f}s"
    return f"{duration_ms / 60_000:.1f}m"
