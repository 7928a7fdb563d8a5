from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


def _clamp_minor(value: int | float | Decimal | None) -> int:
    try:
        parsed = int(value or 0)
    except Exception:
        parsed = 0
    return parsed if parsed > 0 else 0


def money_major_to_minor(amount: float | Decimal | int | str | None) -> int:
    try:
        parsed = Decimal(str(amount or 0))
    except Exception:
        parsed = Decimal("0")
    minor = (parsed * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return _clamp_minor(int(minor))


def money_minor_to_major(minor: int | float | Decimal | None) -> float:
    try:
        parsed = Decimal(int(minor or 0))
    except Exception:
        parsed = Decimal("0")
    return float((parsed / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def line_total_minor(unit_price_minor: int, quantity: int) -> int:
    return _clamp_minor(unit_price_minor) * max(0, int(quantity or 0))


def minor_to_whole_units(minor: int) -> int:
    """Mobile-money pushes only accept whole currency units; round half up."""
    parsed = Decimal(_clamp_minor(minor)) / Decimal("100")
    return int(parsed.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
