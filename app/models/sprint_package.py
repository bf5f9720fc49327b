from sqlalchemy import (
    Column, String, Integer, Boolean, ForeignKey, Float, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship, composite, validates
from .base import BaseModel
from .line_item import DeliverableSnapshot, LineItemColumns, SNAPSHOT_COLUMNS


class SprintPackage(BaseModel):
    """Reusable, admin-curated bundle of deliverables.

    Price and hours are always derived from the current line items and the
    live catalog. ``flat_fee`` and ``flat_hours`` are legacy columns that
    stay NULL; assigning anything else raises.
    """

    __tablename__ = "sprint_packages"

    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    tagline = Column(String, nullable=True)
    category = Column(String, nullable=True)

    active = Column(Boolean, nullable=False, default=True)
    featured = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    # Legacy, always NULL
    flat_fee = Column(Float, nullable=True)
    flat_hours = Column(Float, nullable=True)

    line_items = relationship(
        "SprintPackageDeliverable",
        back_populates="sprint_package",
        cascade="all, delete-orphan",
        order_by="SprintPackageDeliverable.sort_order",
    )

    @validates("flat_fee", "flat_hours")
    def _no_stored_price(self, key, value):
        if value is not None:
            raise ValueError(f"{key} is derived from deliverables and cannot be stored")
        return value


class SprintPackageDeliverable(LineItemColumns, BaseModel):
    __tablename__ = "sprint_package_deliverables"
    __table_args__ = (
        UniqueConstraint("sprint_package_id", "deliverable_id", name="uq_package_deliverable"),
    )

    sprint_package_id = Column(Integer, ForeignKey("sprint_packages.id", ondelete="CASCADE"), nullable=False, index=True)
    deliverable_id = Column(Integer, ForeignKey("deliverables.id"), nullable=False, index=True)
    sort_order = Column(Integer, nullable=False, default=0)

    snapshot = composite(DeliverableSnapshot, *SNAPSHOT_COLUMNS)

    sprint_package = relationship("SprintPackage", back_populates="line_items")
