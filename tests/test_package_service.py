import pytest

from app.models.sprint_package import SprintPackage
from app.services.catalog_service import CatalogService, DeliverableCreate, DeliverableUpdate
from app.services.exceptions import ConflictError, NotFoundError, ValidationError
from app.services.line_items import LineItemInput
from app.services.package_service import (
    PackageCreate,
    PackageDefinition,
    PackageDeliverableRef,
    PackageService,
    PackageUpdate,
)
from app.services.sprint_service import SprintService


def _definitions():
    return [
        PackageDefinition(
            name="Brand Identity Sprint",
            slug="brand-identity-sprint",
            featured=True,
            sort_order=1,
            deliverables=[
                PackageDeliverableRef(deliverable_name="Typography Scale + Wordmark Logo"),
                PackageDeliverableRef(deliverable_name="Brand Style Guide", complexity_multiplier=1.5),
            ],
        ),
        PackageDefinition(
            name="MVP Launch Sprint",
            slug="mvp-launch-sprint",
            sort_order=2,
            deliverables=[
                PackageDeliverableRef(deliverable_name="Landing Page (Marketing)", quantity=2),
                PackageDeliverableRef(deliverable_name="Prototype - Level 1 (Basic)"),
            ],
        ),
    ]


def _line_item_shape(package):
    return [
        (row.deliverable_id, row.quantity, row.complexity_multiplier, row.sort_order)
        for row in sorted(package.line_items, key=lambda row: row.sort_order)
    ]


@pytest.mark.asyncio
async def test_create_package_with_live_totals(db, catalog):
    result = await PackageService(db).create_package(PackageCreate(
        name="Brand Identity Sprint",
        deliverables=[
            LineItemInput(deliverable_id=catalog["logo"], quantity=2),
            LineItemInput(deliverable_id=catalog["guide"], complexity_multiplier=1.5),
        ],
    ))

    assert result.created
    assert result.package.slug == "brand-identity-sprint"
    assert result.package.flat_fee is None
    assert result.totals.total_points == 22.0
    assert result.totals.total_price == 38500


@pytest.mark.asyncio
async def test_package_totals_follow_catalog_changes(db, catalog):
    service = PackageService(db)
    package = (await service.create_package(PackageCreate(
        name="Logo Only",
        deliverables=[LineItemInput(deliverable_id=catalog["logo"])],
    ))).package
    sprint = (await SprintService(db).create_sprint_draft(title="Logo", package_id=package.id)).sprint

    await CatalogService(db).update_deliverable(catalog["logo"], DeliverableUpdate(base_points=6))

    assert (await service.get_package_totals(package.id)).total_points == 6.0
    assert (await SprintService(db).get_totals(sprint.id)).total_points == 5.0


@pytest.mark.asyncio
async def test_package_rejects_estimate_overrides(db, catalog):
    package = (await PackageService(db).create_package(PackageCreate(name="Empty"))).package

    with pytest.raises(ValidationError):
        await PackageService(db).set_package_line_items(
            package.id, [LineItemInput(deliverable_id=catalog["logo"], custom_estimate_points=2)]
        )


@pytest.mark.asyncio
async def test_strict_package_replace_rejects_unknown_deliverable(db, catalog):
    service = PackageService(db)
    package_id = (await service.create_package(PackageCreate(
        name="Logo Only",
        deliverables=[LineItemInput(deliverable_id=catalog["logo"])],
    ))).package.id

    with pytest.raises(ValidationError):
        await service.set_package_line_items(package_id, [LineItemInput(deliverable_id=777)])

    assert (await service.get_package_totals(package_id)).deliverable_count == 1


@pytest.mark.asyncio
async def test_package_sort_order_defaults_to_position(db, catalog):
    service = PackageService(db)
    package_id = (await service.create_package(PackageCreate(name="Ordered"))).package.id

    result = await service.set_package_line_items(package_id, [
        LineItemInput(deliverable_id=catalog["guide"]),
        LineItemInput(deliverable_id=catalog["logo"]),
    ])

    assert _line_item_shape(result.package) == [
        (catalog["guide"], 1, 1.0, 0),
        (catalog["logo"], 1, 1.0, 1),
    ]


@pytest.mark.asyncio
async def test_duplicate_slug_conflicts(db):
    service = PackageService(db)
    await service.create_package(PackageCreate(name="MVP Launch Sprint"))

    with pytest.raises(ConflictError):
        await service.create_package(PackageCreate(name="Another", slug="mvp-launch-sprint"))


@pytest.mark.asyncio
async def test_get_package_by_id_or_slug(db):
    service = PackageService(db)
    package = (await service.create_package(PackageCreate(name="MVP Launch Sprint"))).package

    assert (await service.get_package("mvp-launch-sprint")).id == package.id
    assert (await service.get_package(str(package.id))).id == package.id
    with pytest.raises(NotFoundError):
        await service.get_package("missing")


@pytest.mark.asyncio
async def test_update_package(db):
    service = PackageService(db)
    package_id = (await service.create_package(PackageCreate(name="MVP Launch Sprint"))).package.id
    await service.create_package(PackageCreate(name="Taken"))

    package = await service.update_package(package_id, PackageUpdate(tagline="Ship fast", featured=True))
    assert package.tagline == "Ship fast"
    assert package.featured is True

    with pytest.raises(ConflictError):
        await service.update_package(package_id, PackageUpdate(slug="taken"))


@pytest.mark.asyncio
async def test_list_packages_featured_first(db):
    service = PackageService(db)
    await service.create_package(PackageCreate(name="Zeta", sort_order=0))
    await service.create_package(PackageCreate(name="Alpha", featured=True, sort_order=5))
    await service.create_package(PackageCreate(name="Beta", featured=True, sort_order=1))
    await service.create_package(PackageCreate(name="Hidden", active=False))

    assert [p.name for p in await service.list_packages()] == ["Beta", "Alpha", "Zeta"]
    assert len(await service.list_packages(include_inactive=True)) == 4


@pytest.mark.asyncio
async def test_stored_price_is_refused():
    package = SprintPackage(name="Legacy", slug="legacy")

    package.flat_fee = None
    with pytest.raises(ValueError):
        package.flat_fee = 9000
    with pytest.raises(ValueError):
        package.flat_hours = 40


@pytest.mark.asyncio
async def test_seed_is_idempotent(db, catalog):
    await CatalogService(db).create_deliverable(
        DeliverableCreate(name="Prototype - Level 1 (Basic)", category="Product", base_points=8)
    )
    service = PackageService(db)

    first = await service.seed_packages(_definitions())
    first_shapes = {r.package.slug: _line_item_shape(r.package) for r in first}
    first_totals = {r.package.slug: r.totals for r in first}

    second = await service.seed_packages(_definitions())

    assert [r.created for r in first] == [True, True]
    assert [r.created for r in second] == [False, False]
    assert len(await service.list_packages(include_inactive=True)) == 2
    assert {r.package.slug: _line_item_shape(r.package) for r in second} == first_shapes
    assert {r.package.slug: r.totals for r in second} == first_totals
    assert first_totals["brand-identity-sprint"].total_points == 17.0
    assert first_totals["mvp-launch-sprint"].total_points == 18.0


@pytest.mark.asyncio
async def test_seed_skips_unresolved_names(db, catalog):
    await CatalogService(db).create_deliverable(DeliverableCreate(name="Brand Style Guide", base_points=3))

    results = await PackageService(db).seed_packages(_definitions())

    brand, mvp = results
    assert brand.totals.deliverable_count == 1
    assert [w.code for w in brand.warnings] == ["unresolved_deliverable"]
    assert "ambiguous" in brand.warnings[0].message
    assert mvp.totals.deliverable_count == 1
    assert mvp.warnings[0].deliverable_name == "Prototype - Level 1 (Basic)"


@pytest.mark.asyncio
async def test_upsert_by_slug_updates_in_place(db, catalog):
    service = PackageService(db)
    definition = _definitions()[0]
    created = await service.upsert_by_slug(definition)

    definition.tagline = "Brand foundation"
    definition.deliverables = definition.deliverables[:1]
    updated = await service.upsert_by_slug(definition)

    assert updated.package.id == created.package.id
    assert updated.package.tagline == "Brand foundation"
    assert updated.totals.deliverable_count == 1


@pytest.mark.asyncio
async def test_list_package_totals(db, catalog):
    service = PackageService(db)
    await service.create_package(PackageCreate(
        name="Logo Only", deliverables=[LineItemInput(deliverable_id=catalog["logo"], quantity=3)]
    ))
    await service.create_package(PackageCreate(name="Empty", active=False))

    pairs = await service.list_package_totals()

    totals = {package.name: totals for package, totals in pairs}
    assert totals["Logo Only"].total_price == 26250
    assert totals["Empty"].deliverable_count == 0


@pytest.mark.asyncio
async def test_delete_package(db, catalog):
    service = PackageService(db)
    package_id = (await service.create_package(PackageCreate(
        name="Logo Only", deliverables=[LineItemInput(deliverable_id=catalog["logo"])]
    ))).package.id

    await service.delete_package(package_id)

    with pytest.raises(NotFoundError):
        await service.get_package(package_id)


@pytest.mark.asyncio
async def test_referenced_deliverable_is_deactivated_not_deleted(db, catalog):
    await PackageService(db).create_package(PackageCreate(
        name="Logo Only", deliverables=[LineItemInput(deliverable_id=catalog["logo"])]
    ))
    catalog_service = CatalogService(db)

    assert await catalog_service.delete_deliverable(catalog["logo"]) is False
    assert (await catalog_service.get_deliverable(catalog["logo"])).active is False

    assert await catalog_service.delete_deliverable(catalog["landing"]) is True
    with pytest.raises(NotFoundError):
        await catalog_service.get_deliverable(catalog["landing"])


@pytest.mark.asyncio
async def test_catalog_validates_base_points(db):
    service = CatalogService(db)

    with pytest.raises(ValidationError):
        await service.create_deliverable(DeliverableCreate(name="Broken", base_points=-1))

    deliverable = await service.create_deliverable(DeliverableCreate(name="  Rounded  ", base_points=2.25))
    assert deliverable.name == "Rounded"
    assert deliverable.base_points == 2.3


@pytest.mark.asyncio
async def test_numeric_slugs_are_rejected(db):
    service = PackageService(db)

    with pytest.raises(ValidationError):
        await service.create_package(PackageCreate(name="2024"))

    package_id = (await service.create_package(PackageCreate(name="Sprint 2024"))).package.id
    with pytest.raises(ValidationError):
        await service.update_package(package_id, PackageUpdate(slug="2024"))
    with pytest.raises(ValidationError):
        await service.upsert_by_slug(PackageDefinition(name="Numbers", slug="42"))

    assert (await service.get_package("sprint-2024")).id == package_id


@pytest.mark.asyncio
async def test_get_package_falls_back_to_slug(db):
    db.add(SprintPackage(name="Legacy", slug="2024", line_items=[]))
    await db.commit()
    service = PackageService(db)

    assert (await service.get_package("2024")).name == "Legacy"
    with pytest.raises(NotFoundError):
        await service.get_package("²")
    with pytest.raises(NotFoundError):
        await service.get_package(2**63)


@pytest.mark.asyncio
async def test_upsert_requires_name(db):
    service = PackageService(db)

    with pytest.raises(ValidationError):
        await service.upsert_by_slug(PackageDefinition(name="   ", slug="blank"))

    assert await service.list_packages(include_inactive=True) == []


@pytest.mark.asyncio
async def test_package_replace_out_of_range_id(db, catalog):
    service = PackageService(db)
    package_id = (await service.create_package(PackageCreate(name="Logo Only"))).package.id

    with pytest.raises(ValidationError):
        await service.set_package_line_items(package_id, [LineItemInput(deliverable_id=2**63)])

    result = await service.set_package_line_items(
        package_id,
        [LineItemInput(deliverable_id=catalog["logo"]), LineItemInput(deliverable_id=2**63)],
        strict=False,
    )
    assert result.totals.deliverable_count == 1
    assert [w.code for w in result.warnings] == ["unknown_deliverable"]
