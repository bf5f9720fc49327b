from sqlalchemy import (
    Column, String, Integer, Date, ForeignKey, JSON, Float, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship, composite
from .base import BaseModel
from .line_item import DeliverableSnapshot, LineItemColumns, SNAPSHOT_COLUMNS


class SprintDraft(BaseModel):
    __tablename__ = "sprint_drafts"

    title = Column(String, nullable=False)
    project_id = Column(Integer, nullable=True, index=True)

    # Schedule
    start_date = Column(Date, nullable=True)
    weeks = Column(Integer, nullable=False, default=2)
    due_date = Column(Date, nullable=True)

    status = Column(String, nullable=False, default="draft")  # draft, negotiating, scheduled, in_progress, complete, cancelled
    source = Column(String, nullable=False, default="manual")  # manual, ingestion
    sprint_package_id = Column(Integer, ForeignKey("sprint_packages.id", ondelete="SET NULL"), nullable=True)

    # Contract metadata
    contract_url = Column(String, nullable=True)
    contract_status = Column(String, nullable=False, default="not_linked")  # not_linked, drafted, signed

    # Cached totals, rewritten whenever the line item set changes
    deliverable_count = Column(Integer, nullable=False, default=0)
    total_estimate_points = Column(Float, nullable=False, default=0.0)
    total_fixed_hours = Column(Float, nullable=False, default=0.0)
    total_fixed_price = Column(Integer, nullable=False, default=0)

    # Relationships
    line_items = relationship(
        "SprintDeliverable",
        back_populates="sprint_draft",
        cascade="all, delete-orphan",
        order_by="SprintDeliverable.id",
    )
    changelog = relationship(
        "SprintChangelog",
        back_populates="sprint_draft",
        cascade="all, delete-orphan",
        order_by="SprintChangelog.id",
    )


class SprintDeliverable(LineItemColumns, BaseModel):
    __tablename__ = "sprint_deliverables"
    __table_args__ = (
        UniqueConstraint("sprint_draft_id", "deliverable_id", name="uq_sprint_deliverable"),
    )

    sprint_draft_id = Column(Integer, ForeignKey("sprint_drafts.id", ondelete="CASCADE"), nullable=False, index=True)
    deliverable_id = Column(Integer, ForeignKey("deliverables.id"), nullable=False, index=True)

    # Estimate captured at attach time
    base_points = Column(Float, nullable=True)
    custom_estimate_points = Column(Float, nullable=True)
    custom_hours = Column(Float, nullable=True)

    snapshot = composite(DeliverableSnapshot, *SNAPSHOT_COLUMNS)

    sprint_draft = relationship("SprintDraft", back_populates="line_items")


class SprintChangelog(BaseModel):
    __tablename__ = "sprint_draft_changelog"

    sprint_draft_id = Column(Integer, ForeignKey("sprint_drafts.id", ondelete="CASCADE"), nullable=False, index=True)
    actor = Column(String, nullable=True)
    action = Column(String, nullable=False)  # created, deliverables, status, contract_url, contract_status, overview, recalculate
    summary = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)

    sprint_draft = relationship("SprintDraft", back_populates="changelog")
