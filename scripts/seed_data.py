#!/usr/bin/env python3
"""
Seed Data Script for the Studio Sprint Estimator

Creates the starter catalog and package templates:
- 10 deliverables (Branding and Product)
- 3 featured sprint packages built from them
- 1 example sprint draft started from the first package

Deliverables are matched by name and packages by slug, so running the
script again updates rows in place instead of duplicating them.

Usage:
    python scripts/seed_data.py              # Add or refresh seed data
    python scripts/seed_data.py --clear      # Clear all data first
"""
import asyncio
import sys
import os
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import async_session, engine
from app.models.base import Base
from app.models.deliverable import Deliverable
from app.models.sprint_draft import SprintDraft
from app.models.sprint_package import SprintPackage
from app.services.catalog_service import CatalogService, DeliverableCreate, DeliverableUpdate
from app.services.package_service import PackageDefinition, PackageDeliverableRef, PackageService
from app.services.pricing import pricing_formula_text
from app.services.sprint_service import SprintService


# ==================== DATA DEFINITIONS ====================

DELIVERABLES_DATA = [
    # Branding
    {"name": "Typography Scale + Wordmark Logo", "category": "Branding", "base_points": 5,
     "description": "Essential branding foundation for startups and new products."},
    {"name": "Brand Style Guide", "category": "Branding", "base_points": 8,
     "description": "Brand identity system for consistent application. Requires an existing logo."},
    {"name": "Pitch Deck Template (Branded)", "category": "Branding", "base_points": 3,
     "description": "Branded slide templates for investor pitches."},
    {"name": "Business Card Design", "category": "Branding", "base_points": 2,
     "description": "Print-ready business cards in the brand identity."},
    {"name": "Social Media Template Kit", "category": "Branding", "base_points": 5,
     "description": "Ready-to-use social templates for a consistent brand presence."},

    # Product
    {"name": "Prototype - Level 1 (Basic)", "category": "Product", "base_points": 8,
     "description": "Static prototype for concept validation and early feedback."},
    {"name": "Prototype - Level 2 (Interactive)", "category": "Product", "base_points": 13,
     "description": "Interactive prototype for usability testing and investor demos."},
    {"name": "Prototype - Level 3 (Production-Ready)", "category": "Product", "base_points": 21,
     "description": "High-fidelity prototype that can evolve into production code."},
    {"name": "Landing Page (Marketing)", "category": "Product", "base_points": 5,
     "description": "High-converting landing page for launches or campaigns."},
    {"name": "UX Audit + Recommendations", "category": "Product", "base_points": 8,
     "description": "Analysis of an existing product with actionable improvements."},
]

PACKAGES_DATA = [
    PackageDefinition(
        name="Brand Identity Sprint",
        slug="brand-identity-sprint",
        description="Logo, typography system and style guide to build a brand consistently.",
        tagline="Complete brand foundation in 2 weeks",
        category="Branding",
        featured=True,
        sort_order=1,
        deliverables=[
            PackageDeliverableRef(deliverable_name="Typography Scale + Wordmark Logo"),
            PackageDeliverableRef(deliverable_name="Brand Style Guide"),
        ],
    ),
    PackageDefinition(
        name="MVP Launch Sprint",
        slug="mvp-launch-sprint",
        description="A landing page and a working prototype to test a product idea with users.",
        tagline="Ship your MVP in 2 weeks",
        category="Product",
        featured=True,
        sort_order=2,
        deliverables=[
            PackageDeliverableRef(deliverable_name="Landing Page (Marketing)"),
            PackageDeliverableRef(deliverable_name="Prototype - Level 1 (Basic)"),
        ],
    ),
    PackageDefinition(
        name="Startup Branding Sprint",
        slug="startup-branding-sprint",
        description="Logo, social presence and pitch materials for an early-stage startup.",
        tagline="Launch-ready brand + pitch deck",
        category="Branding",
        featured=True,
        sort_order=3,
        deliverables=[
            PackageDeliverableRef(deliverable_name="Typography Scale + Wordmark Logo"),
            PackageDeliverableRef(deliverable_name="Social Media Template Kit"),
            PackageDeliverableRef(deliverable_name="Pitch Deck Template (Branded)"),
        ],
    ),
]


# ==================== SEED FUNCTIONS ====================

async def clear_all_data(session: AsyncSession):
    """Clear all data from the database"""
    print("🗑️  Clearing existing data...")

    # Line items and changelog rows cascade from their parents
    await session.execute(delete(SprintDraft))
    await session.execute(delete(SprintPackage))
    await session.execute(delete(Deliverable))

    await session.commit()
    print("✅ All data cleared")


async def seed_deliverables(session: AsyncSession):
    """Create or refresh catalog deliverables, matched by name"""
    print("\n📦 Seeding deliverables...")

    catalog = CatalogService(session)
    existing = await catalog.active_by_name(d["name"] for d in DELIVERABLES_DATA)

    for data in DELIVERABLES_DATA:
        matches = existing.get(data["name"])
        if matches:
            await catalog.update_deliverable(matches[0].id, DeliverableUpdate(**data))
            print(f"  ↻ Updated: {data['name']} ({data['base_points']} pts)")
        else:
            await catalog.create_deliverable(DeliverableCreate(**data))
            print(f"  ✓ Created: {data['name']} ({data['base_points']} pts)")


async def seed_packages(session: AsyncSession):
    """Upsert sprint packages by slug"""
    print("\n🧩 Seeding sprint packages...")

    results = await PackageService(session).seed_packages(PACKAGES_DATA)

    for result in results:
        verb = "Created" if result.created else "Updated"
        print(
            f"  ✓ {verb}: {result.package.name} - {result.totals.deliverable_count} deliverables, "
            f"{result.totals.total_points:g} pts, {result.totals.total_hours:g} h, ${result.totals.total_price:,}"
        )
        for warning in result.warnings:
            print(f"    ⚠️  {warning.message}")

    return results


async def create_example_sprint(session: AsyncSession, package_id: int):
    """Start an example draft from a package"""
    print("\n🏃 Creating example sprint draft...")

    result = await SprintService(session).create_sprint_draft(
        title="Example Brand Sprint",
        package_id=package_id,
        actor="seed",
    )
    print(
        f"  ✓ Created sprint draft {result.sprint.id}: {result.totals.total_points:g} pts, "
        f"${result.totals.total_price:,}"
    )


# ==================== MAIN ====================

async def seed_database(clear_first: bool = False):
    """Main seed function"""
    print("=" * 60)
    print("🌱 Studio Sprint Estimator - Database Seeding")
    print(f"   {pricing_formula_text()}")
    print("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        if clear_first:
            await clear_all_data(session)

        await seed_deliverables(session)
        packages = await seed_packages(session)

        if clear_first and packages:
            await create_example_sprint(session, packages[0].package.id)

    print("\n" + "=" * 60)
    print("✅ Database seeding complete!")
    print("=" * 60)


if __name__ == "__main__":
    clear = "--clear" in sys.argv
    asyncio.run(seed_database(clear_first=clear))
