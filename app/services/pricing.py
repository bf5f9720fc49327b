"""Points-to-value conversion.

Every hour and price figure in the studio derives from one rate table:
a point is ``hours_per_point`` hours of work billed at ``hourly_rate``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union
import math

Number = Union[int, float, Decimal]

_ONE_DECIMAL = Decimal("0.1")
_WHOLE = Decimal("1")


@dataclass(frozen=True)
class RateTable:
    hours_per_point: Decimal = Decimal("10")
    hourly_rate: Decimal = Decimal("175")
    base_fee: Decimal = Decimal("0")

    @property
    def price_per_point(self) -> Decimal:
        return self.hours_per_point * self.hourly_rate


DEFAULT_RATES = RateTable()

POINT_BASE_FEE = int(DEFAULT_RATES.base_fee)
POINT_PRICE_PER_POINT = int(DEFAULT_RATES.price_per_point)
HOURS_PER_POINT = int(DEFAULT_RATES.hours_per_point)


def to_decimal(value: Optional[Number]) -> Decimal:
    """Exact decimal for a point value; missing, negative or non-finite input is 0."""

    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        result = value
    else:
        if isinstance(value, float) and not math.isfinite(value):
            return Decimal(0)
        # repr gives the shortest round-tripping form, so 2.15 stays 2.15
        result = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    if not result.is_finite() or result < 0:
        return Decimal(0)
    return result


def round_points(value: Optional[Number]) -> Decimal:
    """Round a point value to one decimal place, half up."""
    return to_decimal(value).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP)


def hours_from_points(points: Optional[Number], rates: RateTable = DEFAULT_RATES) -> float:
    hours = to_decimal(points) * rates.hours_per_point
    return float(hours.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def price_from_points(points: Optional[Number], rates: RateTable = DEFAULT_RATES) -> int:
    amount = to_decimal(points)
    if amount == 0:
        return 0
    price = rates.base_fee + amount * rates.price_per_point
    return int(price.quantize(_WHOLE, rounding=ROUND_HALF_UP))


def pricing_formula_text(prefix: str = "Formula:", rates: RateTable = DEFAULT_RATES) -> str:
    """Human-readable formula so UI copy stays in sync with the rate table."""
    return (
        f"{prefix} ${int(rates.base_fee):,} base + "
        f"(complexity x ${int(rates.price_per_point):,})"
    )
