from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field

from ...database import get_db
from ...core.auth import Caller, get_current_caller, require_admin
from ...services.aggregation import Totals
from ...services.exceptions import ConsistencyWarning
from ...services.ingestion import DraftIngestionAdapter, DraftProposal, IngestionResult
from ...services.line_items import LineItemInput
from ...services.sprint_service import ReplaceResult, SprintService, SprintStatus

router = APIRouter()


class SprintCreateRequest(BaseModel):
    title: str
    project_id: Optional[int] = None
    start_date: Optional[date] = None
    weeks: Optional[int] = None
    due_date: Optional[date] = None
    package_id: Optional[int] = None


class SprintOverviewRequest(BaseModel):
    title: Optional[str] = None
    start_date: Optional[date] = None
    weeks: Optional[int] = None
    due_date: Optional[date] = None


class ReplaceDeliverablesRequest(BaseModel):
    deliverables: List[LineItemInput] = Field(default_factory=list)


class StatusUpdateRequest(BaseModel):
    status: str


class ContractUpdateRequest(BaseModel):
    contract_url: Optional[str] = None
    contract_status: Optional[str] = None


class SprintLineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deliverable_id: int
    deliverable_name: Optional[str] = None
    deliverable_category: Optional[str] = None
    deliverable_description: Optional[str] = None
    deliverable_scope: Optional[str] = None
    quantity: int
    complexity_multiplier: float
    base_points: Optional[float] = None
    custom_estimate_points: Optional[float] = None
    custom_hours: Optional[float] = None
    note: Optional[str] = None
    custom_scope: Optional[str] = None


class SprintResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    project_id: Optional[int] = None
    start_date: Optional[date] = None
    weeks: int
    due_date: Optional[date] = None
    status: str
    source: str
    sprint_package_id: Optional[int] = None
    contract_url: Optional[str] = None
    contract_status: str
    deliverable_count: int
    total_estimate_points: float
    total_fixed_hours: float
    total_fixed_price: int
    line_items: List[SprintLineItemResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ReplaceResponse(BaseModel):
    sprint: SprintResponse
    totals: Totals
    warnings: List[ConsistencyWarning] = Field(default_factory=list)


class ChangelogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor: Optional[str] = None
    action: str
    summary: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


def _replace_response(result: ReplaceResult) -> ReplaceResponse:
    return ReplaceResponse(
        sprint=SprintResponse.model_validate(result.sprint),
        totals=result.totals,
        warnings=result.warnings,
    )


@router.post("", response_model=ReplaceResponse, status_code=201)
async def create_sprint(
    request: SprintCreateRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_current_caller)
):
    """Create a sprint draft, optionally starting from a package"""

    result = await SprintService(db).create_sprint_draft(
        title=request.title,
        project_id=request.project_id,
        start_date=request.start_date,
        weeks=request.weeks,
        due_date=request.due_date,
        package_id=request.package_id,
        actor=caller.subject,
    )
    return _replace_response(result)


@router.get("", response_model=List[SprintResponse])
async def list_sprints(
    status: Optional[SprintStatus] = None,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db)
):
    return await SprintService(db).list_sprints(status=status, limit=limit, offset=offset)


@router.post("/ingest", response_model=IngestionResult)
async def ingest_draft(
    proposal: DraftProposal,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_current_caller)
):
    """Create a sprint draft from a generated proposal, dropping what does not resolve"""

    return await DraftIngestionAdapter(db).ingest(proposal, actor=caller.subject)


@router.post("/recalculate")
async def recalculate_sprints(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    """Backfill line item estimates and recompute cached totals for every sprint"""

    result = await SprintService(db).recalculate_all(caller)
    return {"success": True, **result}


@router.get("/{sprint_id}", response_model=SprintResponse)
async def get_sprint(
    sprint_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Get sprint details"""

    return await SprintService(db).get_sprint(sprint_id)


@router.patch("/{sprint_id}", response_model=SprintResponse)
async def update_sprint_overview(
    sprint_id: int,
    request: SprintOverviewRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_current_caller)
):
    return await SprintService(db).update_overview(
        sprint_id,
        title=request.title,
        start_date=request.start_date,
        weeks=request.weeks,
        due_date=request.due_date,
        actor=caller.subject,
    )


@router.put("/{sprint_id}/deliverables", response_model=ReplaceResponse)
async def replace_sprint_deliverables(
    sprint_id: int,
    request: ReplaceDeliverablesRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_current_caller)
):
    """Replace the deliverable set of a sprint. Unknown deliverables fail the request."""

    result = await SprintService(db).set_line_items(
        sprint_id, request.deliverables, strict=True, actor=caller.subject
    )
    return _replace_response(result)


@router.get("/{sprint_id}/totals", response_model=Totals)
async def get_sprint_totals(
    sprint_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await SprintService(db).get_totals(sprint_id)


@router.post("/{sprint_id}/recalculate", response_model=Totals)
async def recalculate_sprint(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(require_admin)
):
    return await SprintService(db).recalculate_totals(sprint_id)


@router.patch("/{sprint_id}/status", response_model=SprintResponse)
async def update_sprint_status(
    sprint_id: int,
    request: StatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_current_caller)
):
    return await SprintService(db).update_status(sprint_id, request.status, actor=caller.subject)


@router.patch("/{sprint_id}/contract", response_model=SprintResponse)
async def update_sprint_contract(
    sprint_id: int,
    request: ContractUpdateRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_current_caller)
):
    """Link a contract or change its status. Admin only."""

    sprint_service = SprintService(db)
    fields = request.model_fields_set

    sprint = None
    if "contract_url" in fields:
        sprint = await sprint_service.set_contract_url(sprint_id, request.contract_url, caller)
    if "contract_status" in fields:
        sprint = await sprint_service.set_contract_status(sprint_id, request.contract_status, caller)
    if sprint is None:
        sprint = await sprint_service.get_sprint(sprint_id)
    return sprint


@router.get("/{sprint_id}/changelog", response_model=List[ChangelogResponse])
async def get_sprint_changelog(
    sprint_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await SprintService(db).get_changelog(sprint_id)
