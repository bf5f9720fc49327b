"""Aggregation of line items into container totals."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel

from .line_items import effective_points
from .pricing import DEFAULT_RATES, RateTable, hours_from_points, price_from_points

DeliverableLookup = Mapping[int, Optional[float]]


class Totals(BaseModel):
    deliverable_count: int = 0
    total_points: float = 0.0
    total_hours: float = 0.0
    total_price: int = 0


def aggregate(
    line_items: Iterable[Any],
    deliverable_lookup: DeliverableLookup,
    rates: RateTable = DEFAULT_RATES,
) -> Totals:
    """Sum line items into count, points, hours and price.

    ``deliverable_lookup`` maps deliverable id to catalog base points. An id
    missing from the lookup contributes 0 points but is still counted.
    Points are summed as decimals so the result does not depend on the
    order of ``line_items``.
    """

    count = 0
    total = Decimal(0)
    for item in line_items:
        count += 1
        base_points = deliverable_lookup.get(getattr(item, "deliverable_id", None))
        total += effective_points(item, base_points)

    return Totals(
        deliverable_count=count,
        total_points=float(total),
        total_hours=hours_from_points(total, rates),
        total_price=price_from_points(total, rates),
    )
