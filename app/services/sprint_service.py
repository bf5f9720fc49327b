from __future__ import annotations

from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
    TYPE_CHECKING
)
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, desc
from sqlalchemy.orm import selectinload

from ..models.base import is_storable_id, utcnow
from ..models.deliverable import Deliverable
from ..models.line_item import DeliverableSnapshot
from ..models.sprint_draft import SprintDraft, SprintDeliverable, SprintChangelog
from .aggregation import Totals, aggregate
from .catalog_service import CatalogService
from .exceptions import (
    ConsistencyWarning,
    InvalidStatusTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..utils.logging import get_logger
from .line_items import LineItem, LineItemInput, adjusted_points, drop_missing, normalize_line_items
from .pricing import hours_from_points, round_points

if TYPE_CHECKING:
    from ..core.auth import Caller

# Type aliases
SprintId = int
PackageId = int

DEFAULT_WEEKS = 2


# Enums
class SprintStatus(str, Enum):
    DRAFT = "draft"
    NEGOTIATING = "negotiating"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class ContractStatus(str, Enum):
    NOT_LINKED = "not_linked"
    DRAFTED = "drafted"
    SIGNED = "signed"


class SprintSource(str, Enum):
    MANUAL = "manual"
    INGESTION = "ingestion"


@dataclass
class ReplaceResult:
    sprint: SprintDraft
    totals: Totals
    warnings: List[ConsistencyWarning] = field(default_factory=list)


def totals_of(sprint: SprintDraft) -> Totals:
    """Cached totals as stored on the sprint row."""
    return Totals(
        deliverable_count=sprint.deliverable_count or 0,
        total_points=sprint.total_estimate_points or 0.0,
        total_hours=sprint.total_fixed_hours or 0.0,
        total_price=sprint.total_fixed_price or 0,
    )


def normalize_weeks(weeks: Optional[int]) -> int:
    if weeks is None or weeks <= 0:
        return DEFAULT_WEEKS
    return weeks


def coerce_contract_status(value: Optional[str]) -> ContractStatus:
    try:
        return ContractStatus((value or "").strip().lower())
    except ValueError:
        return ContractStatus.NOT_LINKED


class SprintService:
    """
    Sprint draft composer.

    Owns the line item set of each draft and the four cached totals derived
    from it. Every public mutation runs as one transaction: it commits on
    success and rolls back before re-raising on any error.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.catalog = CatalogService(db)
        self._logger = get_logger(__name__)

    async def create_sprint_draft(
        self,
        title: str,
        project_id: Optional[int] = None,
        start_date: Optional[date] = None,
        weeks: Optional[int] = None,
        due_date: Optional[date] = None,
        package_id: Optional[PackageId] = None,
        source: SprintSource = SprintSource.MANUAL,
        actor: Optional[str] = None,
        copy_package_items: bool = True,
        commit: bool = True,
    ) -> ReplaceResult:
        """Create a draft, optionally pre-filled from a package's current line items.

        With ``commit=False`` the draft is only flushed, so the caller can
        finish the transaction together with its own follow-up writes.
        """

        from .package_service import PackageService

        clean_title = (title or "").strip()
        self._logger.info("Creating sprint draft '%s'", clean_title)

        try:
            if not clean_title:
                raise ValidationError("Title is required")

            package = None
            if package_id is not None:
                package = await PackageService(self.db).get_package(package_id)

            sprint = SprintDraft(
                title=clean_title,
                project_id=project_id,
                start_date=start_date,
                weeks=normalize_weeks(weeks),
                due_date=due_date,
                status=SprintStatus.DRAFT.value,
                source=SprintSource(source).value,
                sprint_package_id=package.id if package is not None else None,
                contract_status=ContractStatus.NOT_LINKED.value,
                deliverable_count=0,
                total_estimate_points=0.0,
                total_fixed_hours=0.0,
                total_fixed_price=0,
                line_items=[],
            )
            self.db.add(sprint)
            await self.db.flush()

            totals = Totals()
            warnings: List[ConsistencyWarning] = []
            if package is not None and copy_package_items:
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
                totals, warnings = await self._replace_line_items(sprint, items, strict=False)

            await self._log_change(
                sprint,
                "created",
                f"Sprint draft '{clean_title}' created",
                actor,
                {"package_id": sprint.sprint_package_id, "source": sprint.source},
            )
            if commit:
                await self.db.commit()

            self._logger.info(
                "Created sprint draft %d with %d deliverables (%.1f points)",
                sprint.id, totals.deliverable_count, totals.total_points,
            )
            return ReplaceResult(sprint=sprint, totals=totals, warnings=warnings)

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to create sprint draft: %s", str(e))
            raise

    async def get_sprint(self, sprint_id: SprintId) -> SprintDraft:
        """Get sprint draft by ID, with its line items."""

        if not is_storable_id(sprint_id):
            raise NotFoundError("Sprint draft", sprint_id)

        stmt = (
            select(SprintDraft)
            .options(selectinload(SprintDraft.line_items))
            .where(SprintDraft.id == sprint_id)
        )

        result = await self.db.execute(stmt)
        sprint = result.scalar_one_or_none()

        if sprint is None:
            raise NotFoundError("Sprint draft", sprint_id)

        return sprint

    async def list_sprints(
        self,
        status: Optional[SprintStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[SprintDraft]:
        stmt = select(SprintDraft).options(selectinload(SprintDraft.line_items))

        if status is not None:
            stmt = stmt.where(SprintDraft.status == SprintStatus(status).value)

        stmt = stmt.order_by(desc(SprintDraft.updated_at), desc(SprintDraft.id)).limit(limit).offset(offset)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_changelog(self, sprint_id: SprintId) -> List[SprintChangelog]:
        await self._get_sprint_row(sprint_id)
        stmt = (
            select(SprintChangelog)
            .where(SprintChangelog.sprint_draft_id == sprint_id)
            .order_by(desc(SprintChangelog.id))
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def set_line_items(
        self,
        sprint_id: SprintId,
        items: Iterable[LineItemInput],
        *,
        strict: bool = True,
        actor: Optional[str] = None,
    ) -> ReplaceResult:
        """Replace the whole line item set of a draft and refresh its totals.

        With ``strict`` an unknown deliverable id fails the call; otherwise
        the item is skipped and reported as a warning.
        """

        items = list(items)
        self._logger.info("Replacing deliverables of sprint %d (%d items)", sprint_id, len(items))

        try:
            sprint = await self._lock_sprint(sprint_id)
            totals, warnings = await self._replace_line_items(sprint, items, strict=strict)

            await self._log_change(
                sprint,
                "deliverables",
                f"Deliverables updated: {totals.deliverable_count} items, {totals.total_points:g} points",
                actor,
                {
                    "deliverable_ids": [row.deliverable_id for row in sprint.line_items],
                    "totals": totals.model_dump(),
                    "skipped": [w.deliverable_id for w in warnings],
                },
            )
            await self.db.commit()

            self._logger.info(
                "Sprint %d now has %d deliverables: %.1f points, %.1f hours, %d price",
                sprint_id, totals.deliverable_count, totals.total_points,
                totals.total_hours, totals.total_price,
            )
            return ReplaceResult(sprint=sprint, totals=totals, warnings=warnings)

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to replace deliverables of sprint %d: %s", sprint_id, str(e))
            raise

    async def get_totals(self, sprint_id: SprintId) -> Totals:
        sprint = await self._get_sprint_row(sprint_id)
        return totals_of(sprint)

    async def update_status(
        self,
        sprint_id: SprintId,
        status: SprintStatus,
        actor: Optional[str] = None,
    ) -> SprintDraft:
        """Update sprint status with validation."""

        try:
            try:
                new_status = SprintStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown sprint status: {status}")

            sprint = await self.get_sprint(sprint_id)
            current_status = SprintStatus(sprint.status)

            if current_status == new_status:
                return sprint

            if not self._is_valid_status_transition(current_status, new_status):
                raise InvalidStatusTransitionError(current_status.value, new_status.value)

            sprint.status = new_status.value
            sprint.updated_at = utcnow()
            await self.db.flush()

            await self._log_change(
                sprint,
                "status",
                f"Status changed from {current_status.value} to {new_status.value}",
                actor,
                {"from": current_status.value, "to": new_status.value},
            )
            await self.db.commit()

            self._logger.info("Updated sprint %d status to %s", sprint_id, new_status.value)
            return sprint

        except Exception:
            await self.db.rollback()
            raise

    async def set_contract_url(
        self,
        sprint_id: SprintId,
        url: Optional[str],
        caller: Caller,
    ) -> SprintDraft:
        try:
            self._require_admin(caller, "link contracts")
            sprint = await self.get_sprint(sprint_id)

            clean_url = (url or "").strip() or None
            previous = sprint.contract_url
            if clean_url == previous:
                return sprint

            sprint.contract_url = clean_url
            sprint.updated_at = utcnow()
            await self.db.flush()

            await self._log_change(
                sprint,
                "contract_url",
                "Contract link removed" if clean_url is None else "Contract link updated",
                caller.subject,
                {"from": previous, "to": clean_url},
            )
            await self.db.commit()

            self._logger.info("Updated contract link of sprint %d", sprint_id)
            return sprint

        except Exception:
            await self.db.rollback()
            raise

    async def set_contract_status(
        self,
        sprint_id: SprintId,
        status: Optional[str],
        caller: Caller,
    ) -> SprintDraft:
        try:
            self._require_admin(caller, "change contract status")
            sprint = await self.get_sprint(sprint_id)

            new_status = coerce_contract_status(status)
            previous = sprint.contract_status
            if new_status.value == previous:
                return sprint

            sprint.contract_status = new_status.value
            sprint.updated_at = utcnow()
            await self.db.flush()

            await self._log_change(
                sprint,
                "contract_status",
                f"Contract status changed from {previous} to {new_status.value}",
                caller.subject,
                {"from": previous, "to": new_status.value},
            )
            await self.db.commit()

            self._logger.info("Updated contract status of sprint %d to %s", sprint_id, new_status.value)
            return sprint

        except Exception:
            await self.db.rollback()
            raise

    async def update_overview(
        self,
        sprint_id: SprintId,
        title: Optional[str] = None,
        start_date: Optional[date] = None,
        weeks: Optional[int] = None,
        due_date: Optional[date] = None,
        actor: Optional[str] = None,
    ) -> SprintDraft:
        """Update title and schedule. Fields left as None are unchanged."""

        try:
            sprint = await self.get_sprint(sprint_id)
            changes: Dict[str, Any] = {}

            if title is not None:
                clean_title = title.strip()
                if not clean_title:
                    raise ValidationError("Title cannot be empty")
                changes["title"] = clean_title
            if start_date is not None:
                changes["start_date"] = start_date
            if weeks is not None:
                changes["weeks"] = normalize_weeks(weeks)
            if due_date is not None:
                changes["due_date"] = due_date

            changes = {k: v for k, v in changes.items() if getattr(sprint, k) != v}
            if not changes:
                return sprint

            for key, value in changes.items():
                setattr(sprint, key, value)
            sprint.updated_at = utcnow()
            await self.db.flush()

            await self._log_change(
                sprint,
                "overview",
                "Updated " + ", ".join(sorted(changes)),
                actor,
                {k: (v.isoformat() if isinstance(v, date) else v) for k, v in changes.items()},
            )
            await self.db.commit()
            return sprint

        except Exception:
            await self.db.rollback()
            raise

    async def recalculate_totals(self, sprint_id: SprintId) -> Totals:
        """Recompute cached totals from the stored line items."""

        try:
            sprint = await self._lock_sprint(sprint_id)
            backfilled = await self._backfill_estimates(sprint.line_items)
            totals = self._apply_totals(sprint, sprint.line_items)
            await self.db.flush()

            await self._log_change(
                sprint,
                "recalculate",
                f"Totals recalculated: {totals.total_points:g} points",
                None,
                {"backfilled": backfilled, "totals": totals.model_dump()},
            )
            await self.db.commit()
            return totals

        except Exception:
            await self.db.rollback()
            raise

    async def recalculate_all(self, caller: Caller) -> Dict[str, int]:
        """Backfill missing line item estimates and recompute every draft's totals."""

        try:
            self._require_admin(caller, "recalculate sprints")

            result = await self.db.execute(
                select(SprintDraft).options(selectinload(SprintDraft.line_items)).order_by(SprintDraft.id)
            )
            sprints = list(result.scalars().all())

            backfilled = 0
            for sprint in sprints:
                backfilled += await self._backfill_estimates(sprint.line_items)
                self._apply_totals(sprint, sprint.line_items)

            await self.db.commit()

            self._logger.info("Recalculated %d sprints, backfilled %d line items", len(sprints), backfilled)
            return {"sprints": len(sprints), "recalculated": backfilled}

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Recalculation failed: %s", str(e))
            raise

    # Private methods

    async def _get_sprint_row(self, sprint_id: SprintId) -> SprintDraft:
        sprint = None
        if is_storable_id(sprint_id):
            sprint = await self.db.get(SprintDraft, sprint_id)
        if sprint is None:
            raise NotFoundError("Sprint draft", sprint_id)
        return sprint

    async def _lock_sprint(self, sprint_id: SprintId) -> SprintDraft:
        """Load a draft with its line items and hold its row lock until commit."""

        if not is_storable_id(sprint_id):
            raise NotFoundError("Sprint draft", sprint_id)

        stmt = (
            select(SprintDraft)
            .options(selectinload(SprintDraft.line_items))
            .where(SprintDraft.id == sprint_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        sprint = result.scalar_one_or_none()
        if sprint is None:
            raise NotFoundError("Sprint draft", sprint_id)
        return sprint

    async def _replace_line_items(
        self,
        sprint: SprintDraft,
        items: List[LineItemInput],
        *,
        strict: bool,
    ) -> Tuple[Totals, List[ConsistencyWarning]]:
        normalized = normalize_line_items(items)
        deliverables = await self.catalog.load_by_ids(item.deliverable_id for item in normalized)
        resolved, warnings = drop_missing(normalized, deliverables, strict=strict)
        for warning in warnings:
            self._logger.warning("Skipping unknown deliverable %d", warning.deliverable_id)

        # Old rows must be gone before the new set hits the unique constraint
        sprint.line_items.clear()
        await self.db.flush()

        rows = [self._build_row(item, deliverables[item.deliverable_id]) for item in resolved]
        sprint.line_items.extend(rows)
        await self.db.flush()

        totals = self._apply_totals(sprint, rows)
        return totals, warnings

    def _build_row(self, item: LineItem, deliverable: Deliverable) -> SprintDeliverable:
        if item.custom_estimate_points is not None:
            estimate = float(round_points(item.custom_estimate_points))
        elif deliverable.base_points is not None:
            estimate = float(adjusted_points(deliverable.base_points, item.complexity_multiplier))
        else:
            estimate = None

        return SprintDeliverable(
            deliverable_id=deliverable.id,
            quantity=item.quantity,
            complexity_multiplier=item.complexity_multiplier,
            note=item.note,
            custom_scope=item.custom_scope,
            base_points=deliverable.base_points,
            custom_estimate_points=estimate,
            custom_hours=hours_from_points(estimate) if estimate is not None else None,
            snapshot=DeliverableSnapshot.of(deliverable),
        )

    def _apply_totals(self, sprint: SprintDraft, rows: Iterable[SprintDeliverable]) -> Totals:
        rows = list(rows)
        totals = aggregate(rows, {row.deliverable_id: row.base_points for row in rows})

        sprint.deliverable_count = totals.deliverable_count
        sprint.total_estimate_points = totals.total_points
        sprint.total_fixed_hours = totals.total_hours
        sprint.total_fixed_price = totals.total_price
        sprint.updated_at = utcnow()
        return totals

    async def _backfill_estimates(self, rows: List[SprintDeliverable]) -> int:
        """Fill in estimates for rows stored without one, from the active catalog."""

        pending = [row for row in rows if row.custom_estimate_points is None]
        if not pending:
            return 0

        deliverables = await self.catalog.load_by_ids(row.deliverable_id for row in pending)
        filled = 0
        for row in pending:
            deliverable = deliverables.get(row.deliverable_id)
            if deliverable is None or not deliverable.active or deliverable.base_points is None:
                continue
            row.base_points = deliverable.base_points
            row.custom_estimate_points = float(adjusted_points(deliverable.base_points, row.complexity_multiplier))
            row.custom_hours = hours_from_points(row.custom_estimate_points)
            row.updated_at = utcnow()
            filled += 1
        return filled

    async def _log_change(
        self,
        sprint: SprintDraft,
        action: str,
        summary: str,
        actor: Optional[str],
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append a changelog row. A failed write never fails the mutation."""

        try:
            async with self.db.begin_nested():
                self.db.add(
                    SprintChangelog(
                        sprint_draft_id=sprint.id,
                        actor=actor,
                        action=action,
                        summary=summary,
                        details=details,
                    )
                )
        except SQLAlchemyError as e:
            self._logger.error("Failed to write changelog for sprint %d: %s", sprint.id, str(e))

    def _require_admin(self, caller: Optional[Caller], action: str) -> None:
        if caller is None or not caller.is_admin:
            raise PermissionDeniedError(f"Admin privileges required to {action}")

    def _is_valid_status_transition(self, current: SprintStatus, new: SprintStatus) -> bool:
        """Check if status transition is valid."""

        valid_transitions = {
            SprintStatus.DRAFT: [SprintStatus.NEGOTIATING, SprintStatus.CANCELLED],
            SprintStatus.NEGOTIATING: [SprintStatus.SCHEDULED, SprintStatus.CANCELLED],
            SprintStatus.SCHEDULED: [SprintStatus.IN_PROGRESS],
            SprintStatus.IN_PROGRESS: [SprintStatus.COMPLETE],
            SprintStatus.COMPLETE: [],
            SprintStatus.CANCELLED: [],
        }

        return new in valid_transitions.get(current, [])
