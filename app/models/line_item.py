from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Column, String, Text, Integer, Float


@dataclass(frozen=True)
class DeliverableSnapshot:
    """Catalog fields copied onto a line item when it is attached.

    Historical sprints keep displaying what was sold even after the
    catalog entry is renamed or re-scoped.
    """

    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def of(cls, deliverable) -> "DeliverableSnapshot":
        return cls(
            name=deliverable.name,
            category=deliverable.category,
            description=deliverable.description,
            scope=deliverable.scope,
        )


# Attribute names backing the snapshot composite, in dataclass field order
SNAPSHOT_COLUMNS = (
    "deliverable_name",
    "deliverable_category",
    "deliverable_description",
    "deliverable_scope",
)


class LineItemColumns:
    """Columns shared by sprint and package line items."""

    quantity = Column(Integer, nullable=False, default=1)
    complexity_multiplier = Column(Float, nullable=False, default=1.0)
    note = Column(Text, nullable=True)
    custom_scope = Column(Text, nullable=True)

    deliverable_name = Column(String, nullable=True)
    deliverable_category = Column(String, nullable=True)
    deliverable_description = Column(Text, nullable=True)
    deliverable_scope = Column(Text, nullable=True)
