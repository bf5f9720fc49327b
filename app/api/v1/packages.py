from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from ...database import get_db
from ...core.auth import Caller, require_admin
from ...services.aggregation import Totals
from ...services.exceptions import ConsistencyWarning
from ...services.line_items import LineItemInput
from ...services.package_service import (
    PackageCreate,
    PackageDefinition,
    PackageResult,
    PackageService,
    PackageUpdate,
)

router = APIRouter()


class ReplacePackageDeliverablesRequest(BaseModel):
    deliverables: List[LineItemInput] = Field(default_factory=list)


class SeedPackagesRequest(BaseModel):
    packages: List[PackageDefinition]


class PackageLineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deliverable_id: int
    deliverable_name: Optional[str] = None
    deliverable_category: Optional[str] = None
    deliverable_description: Optional[str] = None
    deliverable_scope: Optional[str] = None
    quantity: int
    complexity_multiplier: float
    sort_order: int
    note: Optional[str] = None
    custom_scope: Optional[str] = None


class PackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    description: Optional[str] = None
    tagline: Optional[str] = None
    category: Optional[str] = None
    active: bool
    featured: bool
    sort_order: int
    line_items: List[PackageLineItemResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class PackageWithTotalsResponse(BaseModel):
    package: PackageResponse
    totals: Totals
    warnings: List[ConsistencyWarning] = Field(default_factory=list)
    created: bool = False


class SeedPackagesResponse(BaseModel):
    success: bool
    count: int
    created: int
    packages: List[PackageWithTotalsResponse]


def _with_totals(result: PackageResult) -> PackageWithTotalsResponse:
    return PackageWithTotalsResponse(
        package=PackageResponse.model_validate(result.package),
        totals=result.totals,
        warnings=result.warnings,
        created=result.created,
    )


@router.get("", response_model=List[PackageResponse])
async def list_packages(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db)
):
    """List packages, featured first"""

    return await PackageService(db).list_packages(include_inactive=include_inactive)


@router.get("/totals", response_model=List[PackageWithTotalsResponse])
async def list_package_totals(
    include_inactive: bool = True,
    db: AsyncSession = Depends(get_db)
):
    """Live totals for every package, computed from the current catalog"""

    pairs = await PackageService(db).list_package_totals(include_inactive=include_inactive)
    return [
        PackageWithTotalsResponse(package=PackageResponse.model_validate(package), totals=totals)
        for package, totals in pairs
    ]


@router.post("", response_model=PackageWithTotalsResponse, status_code=201)
async def create_package(
    request: PackageCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    result = await PackageService(db).create_package(request)
    return _with_totals(result)


@router.post("/seed", response_model=SeedPackagesResponse)
async def seed_packages(
    request: SeedPackagesRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    """Insert or update packages by slug. Safe to run repeatedly."""

    results = await PackageService(db).seed_packages(request.packages)
    return SeedPackagesResponse(
        success=True,
        count=len(results),
        created=sum(1 for result in results if result.created),
        packages=[_with_totals(result) for result in results],
    )


@router.get("/{id_or_slug}", response_model=PackageWithTotalsResponse)
async def get_package(
    id_or_slug: str,
    db: AsyncSession = Depends(get_db)
):
    """Get a package by id or slug, with its live totals"""

    package_service = PackageService(db)
    package = await package_service.get_package(id_or_slug)
    totals = await package_service.get_package_totals(package.id)
    return PackageWithTotalsResponse(package=PackageResponse.model_validate(package), totals=totals)


@router.patch("/{package_id}", response_model=PackageResponse)
async def update_package(
    package_id: int,
    request: PackageUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    return await PackageService(db).update_package(package_id, request)


@router.delete("/{package_id}", status_code=204)
async def delete_package(
    package_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    await PackageService(db).delete_package(package_id)


@router.put("/{package_id}/deliverables", response_model=PackageWithTotalsResponse)
async def replace_package_deliverables(
    package_id: int,
    request: ReplacePackageDeliverablesRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    """Replace the deliverable set of a package. Unknown deliverables fail the request."""

    result = await PackageService(db).set_package_line_items(
        package_id, request.deliverables, strict=True
    )
    return _with_totals(result)


@router.get("/{package_id}/totals", response_model=Totals)
async def get_package_totals(
    package_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await PackageService(db).get_package_totals(package_id)
