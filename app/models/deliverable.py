from sqlalchemy import Column, String, Text, Float, Boolean
from .base import BaseModel


class Deliverable(BaseModel):
    __tablename__ = "deliverables"

    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)  # Branding, Product
    scope = Column(Text, nullable=True)

    # Complexity in points; NULL means bespoke, price TBD
    base_points = Column(Float, nullable=True)

    # Soft-deactivated instead of deleted once referenced
    active = Column(Boolean, nullable=False, default=True)
