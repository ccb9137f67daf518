"""Conversions between human decimal strings and 18-decimal ledger integers."""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from autoyield.errors import InvalidAmount, InvalidRate

TOKEN_DECIMALS = 18
WEI = 10**TOKEN_DECIMALS
BPS_PER_PERCENT = 100

_DECIMAL_RE = re.compile(r"^(?P<whole>\d*)(?:\.(?P<frac>\d*))?$")


def to_ledger_units(value: str, decimals: int = TOKEN_DECIMALS) -> int:
    """Parse a human decimal string into integer ledger units.

    Digits beyond ``decimals`` fractional places are truncated, never rounded up.

    Raises:
        InvalidAmount: if ``value`` is empty, not a plain decimal number, or negative.
    """
    if value is None:
        raise InvalidAmount("Amount is required")
    text = str(value).strip()
    if not text:
        raise InvalidAmount("Amount is required")
    if text.startswith("-"):
        raise InvalidAmount(f"Amount must not be negative: {text}")
    match = _DECIMAL_RE.match(text)
    if not match:
        raise InvalidAmount(f"Amount is not a decimal number: {text}")
    whole = match.group("whole") or ""
    frac = match.group("frac") or ""
    if not whole and not frac:
        raise InvalidAmount(f"Amount is not a decimal number: {text}")
    frac = frac[:decimals].ljust(decimals, "0")
    return int(whole or "0") * 10**decimals + int(frac)


def to_display_string(
    amount: Optional[int],
    precision: int = 2,
    decimals: int = TOKEN_DECIMALS,
) -> str:
    """Render integer ledger units as a fixed-precision decimal string.

    Never raises; ``None``, zero and unparseable values render as zero.
    """
    try:
        units = int(amount or 0)
    except (TypeError, ValueError):
        units = 0
    if units < 0:
        units = 0
    precision = max(0, min(precision, decimals))
    step = 10 ** (decimals - precision)
    rounded, remainder = divmod(units, step)
    if remainder * 2 >= step:
        rounded += 1
    if precision == 0:
        return str(rounded)
    whole, frac = divmod(rounded, 10**precision)
    return f"{whole}.{frac:0{precision}d}"


def percent_to_bps(percent: Union[float, str, Decimal]) -> int:
    """Convert a percentage (``5.25``) to basis points (``525``), rounding half up."""
    try:
        value = Decimal(str(percent).strip())
    except InvalidOperation as exc:
        raise InvalidRate(f"Rate is not a number: {percent}") from exc
    if not value.is_finite():
        raise InvalidRate(f"Rate is not a number: {percent}")
    return int((value * BPS_PER_PERCENT).to_integral_value(rounding=ROUND_HALF_UP))


def bps_to_percent(bps: Optional[int]) -> float:
    return int(bps or 0) / BPS_PER_PERCENT


def format_bps(bps: Optional[int]) -> str:
    return f"{bps_to_percent(bps):.2f}"
