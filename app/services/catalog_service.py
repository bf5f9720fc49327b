from __future__ import annotations

from typing import Dict, Iterable, List, Optional
import math

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.deliverable import Deliverable
from ..models.sprint_draft import SprintDeliverable
from ..models.sprint_package import SprintPackageDeliverable
from ..models.base import is_storable_id, utcnow
from ..utils.logging import get_logger
from .exceptions import NotFoundError, ValidationError
from .pricing import round_points

logger = get_logger(__name__)


class DeliverableCreate(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    scope: Optional[str] = None
    base_points: Optional[float] = None
    active: bool = True


class DeliverableUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    scope: Optional[str] = None
    base_points: Optional[float] = None
    active: Optional[bool] = None


def _clean_points(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    if not math.isfinite(value) or value < 0:
        raise ValidationError("Base points must be a non-negative number")
    return float(round_points(value))


def _clean_name(value: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationError("Name is required")
    return name


class CatalogService:
    """Deliverable catalog. Composers only ever read from it."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create_deliverable(self, data: DeliverableCreate) -> Deliverable:
        deliverable = Deliverable(
            name=_clean_name(data.name),
            description=data.description,
            category=data.category.strip() if data.category and data.category.strip() else None,
            scope=data.scope,
            base_points=_clean_points(data.base_points),
            active=data.active,
        )
        self.db.add(deliverable)
        await self.db.commit()

        logger.info("Created deliverable %d '%s'", deliverable.id, deliverable.name)
        return deliverable

    async def update_deliverable(self, deliverable_id: int, data: DeliverableUpdate) -> Deliverable:
        deliverable = await self.get_deliverable(deliverable_id)
        changes = data.model_dump(exclude_unset=True)

        if "name" in changes:
            deliverable.name = _clean_name(changes["name"])
        if "base_points" in changes:
            deliverable.base_points = _clean_points(changes["base_points"])
        for field in ("description", "category", "scope"):
            if field in changes:
                setattr(deliverable, field, changes[field] or None)
        if changes.get("active") is not None:
            deliverable.active = changes["active"]

        deliverable.updated_at = utcnow()
        await self.db.commit()

        logger.info("Updated deliverable %d: %s", deliverable_id, sorted(changes))
        return deliverable

    async def delete_deliverable(self, deliverable_id: int) -> bool:
        """Hard-delete an unreferenced deliverable, otherwise deactivate it.

        Returns True when the row was removed.
        """

        deliverable = await self.get_deliverable(deliverable_id)

        if await self._reference_count(deliverable_id) > 0:
            deliverable.active = False
            deliverable.updated_at = utcnow()
            await self.db.commit()
            logger.info("Deactivated referenced deliverable %d", deliverable_id)
            return False

        await self.db.delete(deliverable)
        await self.db.commit()
        logger.info("Deleted deliverable %d", deliverable_id)
        return True

    async def get_deliverable(self, deliverable_id: int) -> Deliverable:
        deliverable = None
        if is_storable_id(deliverable_id):
            deliverable = await self.db.get(Deliverable, deliverable_id)
        if deliverable is None:
            raise NotFoundError("Deliverable", deliverable_id)
        return deliverable

    async def list_deliverables(self, include_inactive: bool = False) -> List[Deliverable]:
        stmt = select(Deliverable)
        if include_inactive:
            stmt = stmt.order_by(Deliverable.active.desc(), Deliverable.name)
        else:
            stmt = stmt.where(Deliverable.active.is_(True)).order_by(Deliverable.name)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def load_by_ids(self, deliverable_ids: Iterable[int]) -> Dict[int, Deliverable]:
        """Deliverables keyed by id, active or not. Unknown ids are absent.

        Ids outside the key range are unknown by definition and never reach the driver.
        """

        ids = {deliverable_id for deliverable_id in deliverable_ids if is_storable_id(deliverable_id)}
        if not ids:
            return {}
        result = await self.db.execute(select(Deliverable).where(Deliverable.id.in_(ids)))
        return {deliverable.id: deliverable for deliverable in result.scalars().all()}

    async def base_points_lookup(self, deliverable_ids: Iterable[int]) -> Dict[int, Optional[float]]:
        deliverables = await self.load_by_ids(deliverable_ids)
        return {deliverable_id: d.base_points for deliverable_id, d in deliverables.items()}

    async def active_by_name(self, names: Iterable[str]) -> Dict[str, List[Deliverable]]:
        """Active deliverables whose name matches exactly, grouped by name."""

        wanted = {name for name in names if name}
        if not wanted:
            return {}
        stmt = (
            select(Deliverable)
            .where(Deliverable.active.is_(True), Deliverable.name.in_(wanted))
            .order_by(Deliverable.id)
        )
        result = await self.db.execute(stmt)

        matches: Dict[str, List[Deliverable]] = {}
        for deliverable in result.scalars().all():
            matches.setdefault(deliverable.name, []).append(deliverable)
        return matches

    async def _reference_count(self, deliverable_id: int) -> int:
        sprint_refs = await self.db.scalar(
            select(func.count(SprintDeliverable.id)).where(SprintDeliverable.deliverable_id == deliverable_id)
        )
        package_refs = await self.db.scalar(
            select(func.count(SprintPackageDeliverable.id)).where(
                SprintPackageDeliverable.deliverable_id == deliverable_id
            )
        )
        return (sprint_refs or 0) + (package_refs or 0)
