"""
Token amount conversion between decimal strings and integer base units.
"""

from decimal import Decimal, DecimalException, Inexact, InvalidOperation, localcontext
from typing import Union

# USDC and most stablecoins use 6 decimals
DEFAULT_DECIMALS = 6

MAX_UINT256 = 2**256 - 1


def to_base_units(value: Union[int, str, Decimal], decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Convert a human-readable token amount to integer base units.

    Uses Decimal arithmetic so "0.1" becomes exactly 100000 at 6 decimals.
    Floats are rejected; amounts must arrive as strings or Decimals.

    Examples:
        >>> to_base_units("10.5")
        10500000
        >>> to_base_units("0.000001")
        1

    Raises:
        ValueError: if the value is not a finite number, has more
            fractional digits than the token supports, or does not fit
            in a uint256
    """
    if isinstance(value, float):
        raise ValueError("Amounts must be given as strings, not floats")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e

    if not dec_value.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    # Enough precision for any uint256; anything that would round is out of range
    with localcontext() as ctx:
        ctx.prec = 80
        ctx.traps[Inexact] = True
        try:
            base_units = dec_value.scaleb(decimals)
            fractional = base_units != base_units.to_integral_value()
        except DecimalException as e:
            raise ValueError(f"Amount out of range: {value!r}") from e

    if fractional:
        raise ValueError(
            f"Amount {value} has more than {decimals} decimal places"
        )
    if base_units > MAX_UINT256:
        raise ValueError(f"Amount out of range: {value!r}")

    return int(base_units)


def format_units(base_units: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """Format integer base units as a plain decimal string (e.g. "10.5")."""
    amount = Decimal(base_units).scaleb(-decimals)
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
