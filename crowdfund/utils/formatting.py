"""Utility functions for parsing and formatting currency amounts."""

import re
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional, Union

from crowdfund.errors import InvalidInput


def parse_amount(value: Union[int, str], field: str = "amount") -> int:
    """Parse an amount in the smallest currency unit.

    Accepts Python ints and base-10 integer strings of any size.

    Args:
        value: Amount as int or decimal string
        field: Field name used in error messages

    Returns:
        Non-negative integer amount

    Raises:
        InvalidInput: If the value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be an integer")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and re.fullmatch(r"[0-9]+", value.strip()):
        amount = int(value.strip())
    else:
        raise InvalidInput(f"{field} must be a non-negative integer, got {value!r}")
    if amount < 0:
        raise InvalidInput(f"{field} must be >= 0")
    return amount


def to_smallest_unit(value: Union[str, Decimal], decimals: int) -> int:
    """Convert a human amount (e.g. "12.5") to the smallest currency unit.

    Args:
        value: Decimal amount as string or Decimal
        decimals: Currency decimals (6 for USDC)

    Returns:
        Integer amount, truncated to the currency precision

    Raises:
        InvalidInput: If the value is not a non-negative number
    """
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidInput(f"invalid amount: {value!r}") from e
    if not amount.is_finite() or amount < 0:
        raise InvalidInput(f"amount must be a non-negative number, got {value!r}")
    return int(amount.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def units_to_decimal(amount: int, decimals: int) -> Decimal:
    """Convert a smallest-unit amount to a Decimal in whole currency units."""
    if amount is None:
        return Decimal("0")
    return Decimal(amount).scaleb(-decimals)


def format_amount(amount: int, decimals: int = 6, symbol: str = "USDC") -> str:
    """Format an amount for display, e.g. ``1,500.00 USDC``.

    Args:
        amount: Amount in smallest currency unit
        decimals: Currency decimals
        symbol: Currency symbol

    Returns:
        Human-readable amount with two decimal places
    """
    value = units_to_decimal(amount, decimals).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    return f"{value:,.2f} {symbol}"


def format_delta(delta: int, decimals: int = 6, symbol: str = "USDC") -> str:
    """Format a balance increase for a notification, e.g. ``+$150.00 USDC``."""
    sign = "+" if delta >= 0 else "-"
    value = units_to_decimal(abs(delta), decimals).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    return f"{sign}${value:,.2f} {symbol}"


def format_timestamp(value: Optional[datetime]) -> str:
    """Render a timestamp as ISO-8601 in UTC."""
    if value is None:
        return "-"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")
