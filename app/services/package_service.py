from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, Union
from dataclasses import dataclass, field
import re

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.orm import selectinload

from ..models.base import is_storable_id, utcnow
from ..models.deliverable import Deliverable
from ..models.line_item import DeliverableSnapshot
from ..models.sprint_package import SprintPackage, SprintPackageDeliverable
from .aggregation import Totals, aggregate
from .catalog_service import CatalogService
from .exceptions import ConflictError, ConsistencyWarning, NotFoundError, ValidationError
from ..utils.logging import get_logger
from .line_items import LineItem, LineItemInput, drop_missing, normalize_line_items

PackageId = int

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    return _SLUG_STRIP.sub("-", value.lower()).strip("-")


def _check_slug(slug: str) -> str:
    # A numeric slug would be read back as a package id
    if not slug:
        raise ValidationError("Slug is required")
    if slug.isdigit():
        raise ValidationError("Slug cannot be all digits", errors=[f"Slug '{slug}' is numeric"])
    return slug


class PackageCreate(BaseModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    tagline: Optional[str] = None
    category: Optional[str] = None
    active: bool = True
    featured: bool = False
    sort_order: int = 0
    deliverables: Optional[List[LineItemInput]] = None


class PackageUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    tagline: Optional[str] = None
    category: Optional[str] = None
    active: Optional[bool] = None
    featured: Optional[bool] = None
    sort_order: Optional[int] = None


class PackageDeliverableRef(BaseModel):
    """A package line item that may name its deliverable instead of its id."""

    deliverable_id: Optional[int] = None
    deliverable_name: Optional[str] = None
    quantity: Optional[int] = None
    complexity_multiplier: Optional[float] = None
    note: Optional[str] = None
    custom_scope: Optional[str] = None


class PackageDefinition(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    tagline: Optional[str] = None
    category: Optional[str] = None
    active: bool = True
    featured: bool = False
    sort_order: int = 0
    deliverables: List[PackageDeliverableRef] = Field(default_factory=list)


@dataclass
class PackageResult:
    package: SprintPackage
    totals: Totals
    warnings: List[ConsistencyWarning] = field(default_factory=list)
    created: bool = False


class PackageService:
    """
    Package template composer.

    Packages never store a price: totals are aggregated from the current
    line items against the current catalog on every read.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.catalog = CatalogService(db)
        self._logger = get_logger(__name__)

    async def create_package(self, data: PackageCreate) -> PackageResult:
        slug = slugify(data.slug or data.name)
        self._logger.info("Creating package '%s'", slug)

        try:
            name = data.name.strip()
            if not name:
                raise ValidationError("Name is required")
            _check_slug(slug)
            if await self._find_by_slug(slug) is not None:
                raise ConflictError(f"Package slug '{slug}' already exists", {"slug": slug})

            package = SprintPackage(
                name=name,
                slug=slug,
                description=data.description,
                tagline=data.tagline,
                category=data.category,
                active=data.active,
                featured=data.featured,
                sort_order=data.sort_order,
                line_items=[],
            )
            self.db.add(package)
            await self.db.flush()

            warnings: List[ConsistencyWarning] = []
            if data.deliverables:
                warnings = await self._replace_line_items(package, data.deliverables, strict=True)

            totals = await self._live_totals(package)
            await self.db.commit()

            self._logger.info("Created package %d '%s'", package.id, slug)
            return PackageResult(package=package, totals=totals, warnings=warnings, created=True)

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to create package '%s': %s", slug, str(e))
            raise

    async def update_package(self, package_id: PackageId, data: PackageUpdate) -> SprintPackage:
        try:
            package = await self.get_package(package_id)
            changes = data.model_dump(exclude_unset=True)

            if "name" in changes:
                name = (changes.pop("name") or "").strip()
                if not name:
                    raise ValidationError("Name cannot be empty")
                package.name = name
            if "slug" in changes:
                slug = _check_slug(slugify(changes.pop("slug") or ""))
                existing = await self._find_by_slug(slug)
                if existing is not None and existing.id != package.id:
                    raise ConflictError(f"Package slug '{slug}' already exists", {"slug": slug})
                package.slug = slug
            for key, value in changes.items():
                if value is None and key in ("active", "featured", "sort_order"):
                    continue
                setattr(package, key, value)

            package.updated_at = utcnow()
            await self.db.commit()

            self._logger.info("Updated package %d", package.id)
            return package

        except Exception:
            await self.db.rollback()
            raise

    async def get_package(self, id_or_slug: Union[PackageId, str]) -> SprintPackage:
        """Get a package with its line items, by numeric id or by slug.

        A string of ASCII digits is tried as an id first and then as a slug.
        """

        package_id: Optional[int] = None
        if isinstance(id_or_slug, int):
            package_id = id_or_slug
        elif id_or_slug.isascii() and id_or_slug.isdecimal():
            package_id = int(id_or_slug)

        package = None
        if package_id is not None and is_storable_id(package_id):
            package = await self._load_one(SprintPackage.id == package_id)
        if package is None and isinstance(id_or_slug, str):
            package = await self._load_one(SprintPackage.slug == id_or_slug)

        if package is None:
            raise NotFoundError("Package", id_or_slug)
        return package

    async def list_packages(self, include_inactive: bool = False) -> List[SprintPackage]:
        stmt = select(SprintPackage).options(selectinload(SprintPackage.line_items))
        if not include_inactive:
            stmt = stmt.where(SprintPackage.active.is_(True))
        stmt = stmt.order_by(desc(SprintPackage.featured), SprintPackage.sort_order, SprintPackage.name)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_package(self, package_id: PackageId) -> None:
        try:
            package = await self.get_package(package_id)
            await self.db.delete(package)
            await self.db.commit()
            self._logger.info("Deleted package %d", package_id)
        except Exception:
            await self.db.rollback()
            raise

    async def set_package_line_items(
        self,
        package_id: PackageId,
        items: Iterable[LineItemInput],
        *,
        strict: bool = True,
    ) -> PackageResult:
        """Replace the line item set of a package. Estimate overrides are rejected."""

        items = list(items)
        self._logger.info("Replacing deliverables of package %d (%d items)", package_id, len(items))

        try:
            package = await self._lock_package(package_id)
            warnings = await self._replace_line_items(package, items, strict=strict)
            package.updated_at = utcnow()

            totals = await self._live_totals(package)
            await self.db.commit()

            return PackageResult(package=package, totals=totals, warnings=warnings)

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to replace deliverables of package %d: %s", package_id, str(e))
            raise

    async def get_package_totals(self, package_id: PackageId) -> Totals:
        package = await self.get_package(package_id)
        return await self._live_totals(package)

    async def list_package_totals(self, include_inactive: bool = True) -> List[Tuple[SprintPackage, Totals]]:
        packages = await self.list_packages(include_inactive=include_inactive)
        lookup = await self.catalog.base_points_lookup(
            row.deliverable_id for package in packages for row in package.line_items
        )
        return [(package, aggregate(package.line_items, lookup)) for package in packages]

    async def upsert_by_slug(self, definition: PackageDefinition) -> PackageResult:
        """Insert or update the package named by ``definition.slug``.

        Its line items are deleted and re-inserted, so running the same
        definition twice leaves one package with the same items.
        """

        try:
            result = await self._upsert(definition)
            await self.db.commit()
            return result
        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to upsert package '%s': %s", definition.slug, str(e))
            raise

    async def seed_packages(self, definitions: Iterable[PackageDefinition]) -> List[PackageResult]:
        """Upsert several packages in one transaction."""

        try:
            results = [await self._upsert(definition) for definition in definitions]
            await self.db.commit()
            self._logger.info(
                "Seeded %d packages (%d new)", len(results), sum(1 for r in results if r.created)
            )
            return results
        except Exception as e:
            await self.db.rollback()
            self._logger.error("Package seeding failed: %s", str(e))
            raise

    # Private methods

    async def _find_by_slug(self, slug: str) -> Optional[SprintPackage]:
        result = await self.db.execute(select(SprintPackage).where(SprintPackage.slug == slug))
        return result.scalar_one_or_none()

    async def _load_one(self, condition) -> Optional[SprintPackage]:
        stmt = select(SprintPackage).options(selectinload(SprintPackage.line_items)).where(condition)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_package(self, package_id: PackageId) -> SprintPackage:
        if not is_storable_id(package_id):
            raise NotFoundError("Package", package_id)

        stmt = (
            select(SprintPackage)
            .options(selectinload(SprintPackage.line_items))
            .where(SprintPackage.id == package_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        package = result.scalar_one_or_none()
        if package is None:
            raise NotFoundError("Package", package_id)
        return package

    async def _upsert(self, definition: PackageDefinition) -> PackageResult:
        slug = _check_slug(slugify(definition.slug))
        name = definition.name.strip()
        if not name:
            raise ValidationError("Name is required")

        existing = await self._find_by_slug(slug)
        created = existing is None
        if created:
            package = SprintPackage(slug=slug, line_items=[])
            self.db.add(package)
        else:
            package = await self._lock_package(existing.id)

        package.name = name
        package.description = definition.description
        package.tagline = definition.tagline
        package.category = definition.category
        package.active = definition.active
        package.featured = definition.featured
        package.sort_order = definition.sort_order
        package.updated_at = utcnow()
        await self.db.flush()

        items, warnings = await self._resolve_refs(definition.deliverables)
        warnings.extend(await self._replace_line_items(package, items, strict=False))
        totals = await self._live_totals(package)

        self._logger.info(
            "%s package '%s' with %d deliverables", "Created" if created else "Updated",
            slug, totals.deliverable_count,
        )
        return PackageResult(package=package, totals=totals, warnings=warnings, created=created)

    async def _resolve_refs(
        self, refs: List[PackageDeliverableRef]
    ) -> Tuple[List[LineItemInput], List[ConsistencyWarning]]:
        """Turn named references into ids against the active catalog."""

        by_name = await self.catalog.active_by_name(
            ref.deliverable_name for ref in refs if ref.deliverable_id is None
        )

        items: List[LineItemInput] = []
        warnings: List[ConsistencyWarning] = []
        seen: set = set()

        for ref in refs:
            deliverable_id = ref.deliverable_id
            if deliverable_id is None:
                matches = by_name.get(ref.deliverable_name or "", [])
                if len(matches) != 1:
                    reason = "is ambiguous" if matches else "was not found"
                    self._logger.warning("Deliverable '%s' %s, skipping", ref.deliverable_name, reason)
                    warnings.append(
                        ConsistencyWarning(
                            code="unresolved_deliverable",
                            message=f"Deliverable '{ref.deliverable_name}' {reason}",
                            deliverable_name=ref.deliverable_name,
                        )
                    )
                    continue
                deliverable_id = matches[0].id

            if deliverable_id in seen:
                warnings.append(
                    ConsistencyWarning(
                        code="duplicate_deliverable",
                        message=f"Deliverable {deliverable_id} is listed more than once, keeping the first",
                        deliverable_id=deliverable_id,
                        deliverable_name=ref.deliverable_name,
                    )
                )
                continue
            seen.add(deliverable_id)

            items.append(
                LineItemInput(
                    deliverable_id=deliverable_id,
                    quantity=ref.quantity,
                    complexity_multiplier=ref.complexity_multiplier,
                    note=ref.note,
                    custom_scope=ref.custom_scope,
                )
            )
        return items, warnings

    async def _replace_line_items(
        self,
        package: SprintPackage,
        items: List[LineItemInput],
        *,
        strict: bool,
    ) -> List[ConsistencyWarning]:
        normalized = normalize_line_items(items, allow_custom_points=False)
        deliverables = await self.catalog.load_by_ids(item.deliverable_id for item in normalized)

        normalized, warnings = drop_missing(normalized, deliverables, strict=strict)
        for warning in warnings:
            self._logger.warning("Skipping unknown deliverable %d", warning.deliverable_id)

        # Old rows must be gone before the new set hits the unique constraint
        package.line_items.clear()
        await self.db.flush()

        package.line_items.extend(
            self._build_row(item, deliverables[item.deliverable_id]) for item in normalized
        )
        await self.db.flush()
        return warnings

    def _build_row(self, item: LineItem, deliverable: Deliverable) -> SprintPackageDeliverable:
        return SprintPackageDeliverable(
            deliverable_id=deliverable.id,
            quantity=item.quantity,
            complexity_multiplier=item.complexity_multiplier,
            sort_order=item.sort_order,
            note=item.note,
            custom_scope=item.custom_scope,
            snapshot=DeliverableSnapshot.of(deliverable),
        )

    async def _live_totals(self, package: SprintPackage) -> Totals:
        lookup = await self.catalog.base_points_lookup(row.deliverable_id for row in package.line_items)
        return aggregate(package.line_items, lookup)
