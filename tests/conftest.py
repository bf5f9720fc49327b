"""
Pytest configuration and fixtures
"""
import os

# Settings are read at import time, so the environment must be set first
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.auth import Caller, create_access_token
from app.database import get_db
from app.main import app
from app.models import Base
from app.services.catalog_service import CatalogService, DeliverableCreate


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(db):
    """Deliverable ids by short key.

    logo = 5 points, guide = 8 points, bespoke has no points, retired is inactive.
    """
    service = CatalogService(db)
    entries = {
        "logo": DeliverableCreate(name="Typography Scale + Wordmark Logo", category="Branding", base_points=5),
        "guide": DeliverableCreate(name="Brand Style Guide", category="Branding", base_points=8),
        "landing": DeliverableCreate(name="Landing Page (Marketing)", category="Product", base_points=5),
        "bespoke": DeliverableCreate(name="Custom Illustration", category="Branding", base_points=None),
        "retired": DeliverableCreate(name="Business Card Design", category="Branding", base_points=2, active=False),
    }
    ids = {}
    for key, data in entries.items():
        deliverable = await service.create_deliverable(data)
        ids[key] = deliverable.id
    return ids


@pytest.fixture
def admin():
    return Caller(subject="admin@studio.test", is_admin=True)


@pytest.fixture
def member():
    return Caller(subject="client@example.com", is_admin=False)


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "admin@studio.test", "is_admin": True})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def member_headers():
    token = create_access_token({"sub": "client@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client against the app with the test database wired in"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
