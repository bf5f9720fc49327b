"""Line item value objects shared by sprint drafts and package templates."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Tuple
import math

from pydantic import BaseModel

from ..models.line_item import DeliverableSnapshot
from .exceptions import ConsistencyWarning, ValidationError
from .pricing import round_points, to_decimal

DeliverableId = int


class LineItemInput(BaseModel):
    """One requested line item in a replace-set call."""

    deliverable_id: DeliverableId
    quantity: Optional[int] = None
    complexity_multiplier: Optional[float] = None
    custom_estimate_points: Optional[float] = None
    sort_order: Optional[int] = None
    note: Optional[str] = None
    custom_scope: Optional[str] = None


@dataclass(frozen=True)
class LineItem:
    deliverable_id: DeliverableId
    quantity: int = 1
    complexity_multiplier: float = 1.0
    custom_estimate_points: Optional[float] = None
    sort_order: Optional[int] = None
    note: Optional[str] = None
    custom_scope: Optional[str] = None
    snapshot: Optional[DeliverableSnapshot] = None


def normalize_multiplier(value: Any) -> float:
    """Absent, non-numeric, non-finite or non-positive multipliers become 1.0."""

    if value is None or isinstance(value, bool):
        return 1.0
    try:
        multiplier = float(value)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(multiplier) or multiplier <= 0:
        return 1.0
    return multiplier


def normalize_quantity(value: Any) -> int:
    """Quantity used by aggregation: missing is 1, negative contributes nothing."""

    if value is None:
        return 1
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return max(quantity, 0)


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def adjusted_points(base_points: Optional[float], multiplier: Any) -> Decimal:
    """Catalog points scaled by a complexity multiplier, rounded to one decimal."""
    return round_points(to_decimal(base_points) * Decimal(repr(normalize_multiplier(multiplier))))


def effective_points(item: Any, base_points: Optional[float]) -> Decimal:
    """Points one line item contributes to a container total.

    Works on ``LineItem`` values and on persisted line item rows alike.
    """

    custom = getattr(item, "custom_estimate_points", None)
    if custom is not None:
        per_unit = round_points(custom)
    else:
        per_unit = adjusted_points(base_points, getattr(item, "complexity_multiplier", None))
    return per_unit * normalize_quantity(getattr(item, "quantity", None))


def normalize_line_items(
    items: Iterable[LineItemInput],
    *,
    allow_custom_points: bool = True,
) -> List[LineItem]:
    """Validate a requested set and apply defaults.

    All problems are collected and raised together as one ``ValidationError``.
    """

    errors: List[str] = []
    seen: set = set()
    normalized: List[LineItem] = []

    for position, item in enumerate(items):
        if item.deliverable_id in seen:
            errors.append(f"Deliverable {item.deliverable_id} is listed more than once")
            continue
        seen.add(item.deliverable_id)

        quantity = 1 if item.quantity is None else item.quantity
        if quantity < 1:
            errors.append(f"Quantity for deliverable {item.deliverable_id} must be at least 1")

        if item.custom_estimate_points is not None:
            if not allow_custom_points:
                errors.append(
                    f"Deliverable {item.deliverable_id}: package items cannot override estimate points"
                )
            elif not math.isfinite(item.custom_estimate_points) or item.custom_estimate_points < 0:
                errors.append(
                    f"Custom estimate points for deliverable {item.deliverable_id} must be non-negative"
                )

        normalized.append(
            LineItem(
                deliverable_id=item.deliverable_id,
                quantity=quantity,
                complexity_multiplier=normalize_multiplier(item.complexity_multiplier),
                custom_estimate_points=item.custom_estimate_points,
                sort_order=item.sort_order if item.sort_order is not None else position,
                note=_clean_text(item.note),
                custom_scope=_clean_text(item.custom_scope),
            )
        )

    if errors:
        raise ValidationError("Invalid line items", errors=errors)
    return normalized


def missing_deliverables(items: Sequence[LineItem], known_ids: Iterable[DeliverableId]) -> List[LineItem]:
    known = set(known_ids)
    return [item for item in items if item.deliverable_id not in known]


def drop_missing(
    items: Sequence[LineItem],
    known_ids: Iterable[DeliverableId],
    *,
    strict: bool,
) -> Tuple[List[LineItem], List[ConsistencyWarning]]:
    """Split off items whose deliverable is not in ``known_ids``.

    Strict mode raises one ``ValidationError`` naming every missing id.
    Lenient mode returns the remaining items and one warning per dropped item.
    """

    known = set(known_ids)
    missing = missing_deliverables(items, known)
    if not missing:
        return list(items), []

    if strict:
        raise ValidationError(
            "Unknown deliverables",
            errors=[f"Deliverable {item.deliverable_id} does not exist" for item in missing],
        )

    warnings = [
        ConsistencyWarning(
            code="unknown_deliverable",
            message=f"Deliverable {item.deliverable_id} does not exist and was skipped",
            deliverable_id=item.deliverable_id,
        )
        for item in missing
    ]
    return [item for item in items if item.deliverable_id in known], warnings
