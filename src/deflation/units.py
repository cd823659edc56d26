"""Conversion between human token amounts and integer base units."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

DEFAULT_DECIMALS = 18


def to_base_units(value: Union[str, int, Decimal], decimals: int = DEFAULT_DECIMALS) -> int:
    """Convert a token amount such as ``"9.5"`` to base units.

    Raises ValueError for malformed input or precision finer than one base unit.
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a token amount: {value!r}")
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{value} has more than {decimals} decimal places")
    return int(scaled)


def format_units(amount: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """Render base units as a plain decimal token string."""
    text = format(Decimal(amount).scaleb(-decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
