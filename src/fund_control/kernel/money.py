"""
Money helpers - integer minor units

Balances are kept as integer cents so that no amount ever drifts through
binary floating point. Decimal is only used at the edges (parsing input,
rendering output).
"""

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_cents(amount: Decimal | int | str) -> int:
    """
    Convert a currency amount to integer cents

    Accepts Decimal, int or numeric strings. Floats are refused - by the
    time a value is a float it may already be off by a fraction of a cent.

    Raises:
        TypeError: For floats or other unsupported types
        ValueError: For strings that are not numbers
    """
    if isinstance(amount, bool) or isinstance(amount, float):
        raise TypeError("Currency amounts must be Decimal, int or str - not float")
    if isinstance(amount, int):
        return amount * 100
    if isinstance(amount, str):
        try:
            amount = Decimal(amount.replace(",", "").strip())
        except InvalidOperation as e:
            raise ValueError(f"Not a currency amount: {amount!r}") from e
    if not isinstance(amount, Decimal):
        raise TypeError(f"Unsupported currency amount type: {type(amount).__name__}")
    if not amount.is_finite():
        raise ValueError(f"Not a currency amount: {amount!r}")

    return int(amount.quantize(CENT, rounding=ROUND_HALF_EVEN) * 100)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal"""
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int) -> str:
    """Render cents for humans: 123456 -> '1,234.56'"""
    return f"{from_cents(cents):,.2f}"


def percent_of(part_cents: int, whole_cents: int) -> Decimal:
    """Percentage of part in whole, two places (0 when whole is 0)"""
    if whole_cents == 0:
        return Decimal("0.00")
    return (Decimal(part_cents) * 100 / Decimal(whole_cents)).quantize(CENT)
