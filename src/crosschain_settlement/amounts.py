"""Conversions between human decimal amounts and atomic token units."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Union

from .exceptions import SettlementValidationError

AmountLike = Union[str, int, Decimal]

# Enough digits for 78-digit uint256 values at any decimals count.
_PRECISION = 96


def parse_amount(amount: AmountLike) -> Decimal:
    """Parse a human-readable amount, rejecting garbage, non-finite and negative values."""
    if isinstance(amount, bool) or not isinstance(amount, (str, int, Decimal)):
        raise SettlementValidationError(f"Invalid amount: {amount!r}", field="amount")
    try:
        value = Decimal(amount.strip() if isinstance(amount, str) else amount)
    except (InvalidOperation, ValueError):
        raise SettlementValidationError(f"Invalid amount: {amount!r}", field="amount")
    if not value.is_finite():
        raise SettlementValidationError(f"Amount must be finite: {amount!r}", field="amount")
    if value < 0:
        raise SettlementValidationError(f"Amount must not be negative: {amount!r}", field="amount")
    return value


def to_atomic(amount: AmountLike, decimals: int) -> int:
    """Convert a decimal amount to atomic units, rounding half-up.

    Args:
        amount: Human-readable amount, e.g. ``"9.98"``
        decimals: Decimal places of the token

    Returns:
        Integer amount in the token's smallest unit
    """
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    value = parse_amount(amount)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = value.scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


def format_atomic(units: int, decimals: int) -> str:
    """Format atomic units as a plain decimal string without trailing zeros."""
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    sign = "-" if units < 0 else ""
    digits = str(abs(int(units)))
    if decimals == 0:
        return f"{sign}{digits}"
    digits = digits.rjust(decimals + 1, "0")
    whole, frac = digits[:-decimals], digits[-decimals:].rstrip("0")
    if not frac:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac}"


def fee_units(fee: AmountLike, decimals: int) -> int:
    """Protocol fee expressed in atomic units of an asset with ``decimals`` places."""
    return to_atomic(fee, decimals)


__all__ = [
    "parse_amount",
    "to_atomic",
    "format_atomic",
    "fee_units",
]
