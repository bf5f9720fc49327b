from .base import Base, BaseModel
from .deliverable import Deliverable
from .line_item import DeliverableSnapshot
from .sprint_package import SprintPackage, SprintPackageDeliverable
from .sprint_draft import SprintDraft, SprintDeliverable, SprintChangelog

__all__ = [
    "Base",
    "BaseModel",
    "Deliverable",
    "DeliverableSnapshot",
    "SprintPackage",
    "SprintPackageDeliverable",
    "SprintDraft",
    "SprintDeliverable",
    "SprintChangelog",
]
