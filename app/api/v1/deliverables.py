from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict

from ...database import get_db
from ...core.auth import Caller, require_admin
from ...services.catalog_service import CatalogService, DeliverableCreate, DeliverableUpdate

router = APIRouter()


class DeliverableResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    scope: Optional[str] = None
    base_points: Optional[float] = None
    active: bool
    created_at: datetime
    updated_at: datetime


class DeliverableDeleteResponse(BaseModel):
    id: int
    deleted: bool
    deactivated: bool


@router.get("", response_model=List[DeliverableResponse])
async def list_deliverables(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db)
):
    """List catalog deliverables"""

    return await CatalogService(db).list_deliverables(include_inactive=include_inactive)


@router.get("/{deliverable_id}", response_model=DeliverableResponse)
async def get_deliverable(
    deliverable_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await CatalogService(db).get_deliverable(deliverable_id)


@router.post("", response_model=DeliverableResponse, status_code=201)
async def create_deliverable(
    request: DeliverableCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    """Add a deliverable to the catalog"""

    return await CatalogService(db).create_deliverable(request)


@router.patch("/{deliverable_id}", response_model=DeliverableResponse)
async def update_deliverable(
    deliverable_id: int,
    request: DeliverableUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    return await CatalogService(db).update_deliverable(deliverable_id, request)


@router.delete("/{deliverable_id}", response_model=DeliverableDeleteResponse)
async def delete_deliverable(
    deliverable_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    """Delete a deliverable, or deactivate it when line items still reference it"""

    deleted = await CatalogService(db).delete_deliverable(deliverable_id)
    return DeliverableDeleteResponse(id=deliverable_id, deleted=deleted, deactivated=not deleted)
