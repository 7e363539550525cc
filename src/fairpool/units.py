"""
fairpool/units.py

TON amount conversion and display helpers.

All engine arithmetic is done on integer nanotons; these helpers only sit at
the edges where people type or read TON amounts.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .config import NANOTON_PER_TON, TON_DECIMALS


Amount = Union[int, float, str, Decimal]


def ton_to_nanoton(ton: Amount) -> int:
    """
    Convert a TON amount to integer nanotons.

    Floats go through their shortest repr so 0.1 becomes 100_000_000 exactly.
    Sub-nanoton digits are rounded half up.

    Raises:
        ValueError: If the amount is not a finite number
    """
    if isinstance(ton, bool):
        raise ValueError("TON amount must be a number")
    try:
        value = Decimal(repr(ton)) if isinstance(ton, float) else Decimal(ton)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid TON amount: {ton!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid TON amount: {ton!r}")
    nanoton = (value * NANOTON_PER_TON).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(nanoton)


def nanoton_to_ton(nanoton: int) -> Decimal:
    """Convert integer nanotons to an exact Decimal TON amount."""
    return Decimal(nanoton) / NANOTON_PER_TON


def format_ton(
    nanoton: int,
    decimals: int = 4,
    show_symbol: bool = True,
    compact: bool = False,
) -> str:
    """
    Format a nanoton amount for display.

    Examples:
        format_ton(1_500_000_000)             -> "1.5 TON"
        format_ton(2_500_000_000_000, compact=True) -> "2.5K TON"
    """
    ton = nanoton_to_ton(nanoton)
    suffix = " TON" if show_symbol else ""

    if ton == 0:
        return f"0{suffix}"

    magnitude = abs(ton)
    if compact and magnitude >= 1_000_000:
        return f"{ton / 1_000_000:.1f}M{suffix}"
    if compact and magnitude >= 1000:
        return f"{ton / 1000:.1f}K{suffix}"

    # Smaller amounts get more precision
    if magnitude >= 1:
        places = min(decimals, 4)
    elif magnitude >= Decimal("0.01"):
        places = min(decimals, 6)
    else:
        places = min(decimals, 8)
    places = min(places, TON_DECIMALS)

    formatted = f"{ton:.{places}f}"
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    return f"{formatted}{suffix}"


def format_duration(seconds: int) -> str:
    """Format a duration as '45s', '12m', '3h 5m' or '2d 4h'."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        hours, minutes = seconds // 3600, (seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    days, hours = seconds // 86400, (seconds % 86400) // 3600
    return f"{days}d {hours}h" if hours else f"{days}d"
