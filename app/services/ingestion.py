"""Turn a machine-generated sprint proposal into a persisted draft.

The proposal shape is whatever the drafting assistant emits: deliverables
referenced by id or by exact catalog name, with optional quantity and
complexity. Anything that does not resolve against the active catalog is
dropped and reported back as a warning.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Tuple
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..utils.logging import get_logger
from .aggregation import Totals
from .catalog_service import CatalogService
from .exceptions import ConsistencyWarning, NotFoundError
from .line_items import LineItemInput
from .package_service import PackageService
from .sprint_service import SprintService, SprintSource

logger = get_logger(__name__)


class ProposedDeliverable(BaseModel):
    deliverable_id: Optional[int] = None
    deliverable_name: Optional[str] = None
    quantity: Optional[int] = None
    complexity_multiplier: Optional[float] = None
    note: Optional[str] = None
    custom_scope: Optional[str] = None


class DraftProposal(BaseModel):
    title: str
    sprint_id: Optional[int] = None
    project_id: Optional[int] = None
    start_date: Optional[date] = None
    weeks: Optional[int] = None
    due_date: Optional[date] = None
    sprint_package_id: Optional[int] = None
    deliverables: List[ProposedDeliverable] = Field(default_factory=list)


class IngestionResult(BaseModel):
    success: bool
    sprint_id: Optional[int] = None
    totals: Totals = Field(default_factory=Totals)
    warnings: List[ConsistencyWarning] = Field(default_factory=list)


class DraftIngestionAdapter:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.catalog = CatalogService(db)
        self.packages = PackageService(db)
        self.sprints = SprintService(db)

    async def ingest(self, proposal: DraftProposal, actor: Optional[str] = None) -> IngestionResult:
        """Create (or refill) a draft from ``proposal`` with lenient resolution.

        ``set_line_items`` runs exactly once, with ``strict=False``. A new draft
        is only flushed before it, so the draft and its items commit together.
        """

        items, warnings = await self._resolve_deliverables(proposal.deliverables)

        package_id = None
        if proposal.sprint_package_id is not None:
            package_items, package_warnings, package_id = await self._package_selection(
                proposal.sprint_package_id
            )
            warnings.extend(package_warnings)
            if package_id is not None and not proposal.deliverables:
                items = package_items

        if proposal.sprint_id is not None:
            sprint_id = proposal.sprint_id
        else:
            created = await self.sprints.create_sprint_draft(
                title=proposal.title,
                project_id=proposal.project_id,
                start_date=proposal.start_date,
                weeks=proposal.weeks,
                due_date=proposal.due_date,
                package_id=package_id,
                source=SprintSource.INGESTION,
                actor=actor,
                copy_package_items=False,
                commit=False,
            )
            sprint_id = created.sprint.id

        result = await self.sprints.set_line_items(sprint_id, items, strict=False, actor=actor)
        warnings.extend(result.warnings)

        logger.info(
            "Ingested proposal into sprint %d: %d deliverables, %d warnings",
            sprint_id, result.totals.deliverable_count, len(warnings),
        )
        return IngestionResult(success=True, sprint_id=sprint_id, totals=result.totals, warnings=warnings)

    async def _resolve_deliverables(
        self, proposed: List[ProposedDeliverable]
    ) -> Tuple[List[LineItemInput], List[ConsistencyWarning]]:
        by_id = await self.catalog.load_by_ids(
            entry.deliverable_id for entry in proposed if entry.deliverable_id is not None
        )
        by_name = await self.catalog.active_by_name(
            entry.deliverable_name.strip()
            for entry in proposed
            if entry.deliverable_id is None and entry.deliverable_name
        )

        items: List[LineItemInput] = []
        warnings: List[ConsistencyWarning] = []
        seen: set = set()

        for entry in proposed:
            deliverable_id, warning = self._match(entry, by_id, by_name)
            if warning is not None:
                logger.warning(warning.message)
                warnings.append(warning)
                continue

            if deliverable_id in seen:
                warnings.append(
                    ConsistencyWarning(
                        code="duplicate_deliverable",
                        message=f"Deliverable {deliverable_id} was proposed more than once, keeping the first",
                        deliverable_id=deliverable_id,
                        deliverable_name=entry.deliverable_name,
                    )
                )
                continue
            seen.add(deliverable_id)

            quantity = entry.quantity
            if quantity is not None and quantity < 1:
                warnings.append(
                    ConsistencyWarning(
                        code="invalid_quantity",
                        message=f"Quantity {quantity} for deliverable {deliverable_id} replaced with 1",
                        deliverable_id=deliverable_id,
                    )
                )
                quantity = None

            items.append(
                LineItemInput(
                    deliverable_id=deliverable_id,
                    quantity=quantity,
                    complexity_multiplier=entry.complexity_multiplier,
                    note=entry.note,
                    custom_scope=entry.custom_scope,
                )
            )
        return items, warnings

    @staticmethod
    def _match(entry, by_id, by_name) -> Tuple[Optional[int], Optional[ConsistencyWarning]]:
        if entry.deliverable_id is not None:
            deliverable = by_id.get(entry.deliverable_id)
            if deliverable is None or not deliverable.active:
                return None, ConsistencyWarning(
                    code="unknown_deliverable",
                    message=f"Deliverable {entry.deliverable_id} is not an active catalog entry",
                    deliverable_id=entry.deliverable_id,
                    deliverable_name=entry.deliverable_name,
                )
            return deliverable.id, None

        name = (entry.deliverable_name or "").strip()
        if not name:
            return None, ConsistencyWarning(
                code="unresolved_deliverable",
                message="Proposed deliverable has neither id nor name",
            )

        matches = by_name.get(name, [])
        if len(matches) != 1:
            reason = "matches several catalog entries" if matches else "is not in the active catalog"
            return None, ConsistencyWarning(
                code="unresolved_deliverable",
                message=f"Deliverable '{name}' {reason}",
                deliverable_name=name,
            )
        return matches[0].id, None

    async def _package_selection(
        self, package_id: int
    ) -> Tuple[List[LineItemInput], List[ConsistencyWarning], Optional[int]]:
        try:
            package = await self.packages.get_package(package_id)
        except NotFoundError:
            package = None

        if package is None or not package.active:
            return [], [
                ConsistencyWarning(
                    code="unknown_package",
                    message=f"Package {package_id} is not an active package and was ignored",
                )
            ], None

        items = [
            LineItemInput(
                deliverable_id=row.deliverable_id,
                quantity=row.quantity,
                complexity_multiplier=row.complexity_multiplier,
                note=row.note,
                custom_scope=row.custom_scope,
            )
            for row in package.line_items
        ]
        return items, [], package.id
