"""Fixed-point helpers for converting native token units into display strings."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

_CENT = Decimal("0.01")


def format_units(value: int, decimals: int) -> str:
    """Render an integer amount of base units as an exact decimal string.

    Integer arithmetic only, so values wider than the Decimal context precision
    (uint256 balances) keep every digit up to ``decimals``.
    """

    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(int(value)), 10**decimals)
    if decimals == 0 or fraction == 0:
        return f"{sign}{whole}"
    fraction_str = str(fraction).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{fraction_str}"


def to_decimal(amount: str | int | float | Decimal) -> Decimal:
    try:
        # Route floats through str so 0.1 stays 0.1.
        return amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a numeric amount: {amount!r}") from exc


def usd_value(amount: str | int | Decimal, price: float | None) -> str:
    """Multiply a human-readable amount by a USD price, rounded to cents.

    A missing price yields ``"0"`` so consumers always receive a numeric string.
    """

    if price is None:
        return "0"
    product = to_decimal(amount) * to_decimal(price)
    return format_usd(product)


def format_usd(value: Decimal | float) -> str:
    quantized = to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)
    if quantized.is_zero():
        return "0"
    return f"{quantized:f}"


def sum_usd(values: list[str]) -> str:
    total = sum((to_decimal(value) for value in values), Decimal("0"))
    return format_usd(total)


__all__ = ["format_units", "format_usd", "sum_usd", "to_decimal", "usd_value"]
