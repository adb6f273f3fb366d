"""
Test Configuration — Fixtures for async DB, test client, clock, and seeded boards.

Each test gets its own in-memory SQLite database, so app code is free to
commit and roll back for real (the transition retry path depends on it).
"""

import os
from datetime import datetime, timezone

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_clock, get_current_user, get_db
from api.main import app
from core.clock import FixedClock
from db.models import Kanban, KanbanLink, Location
from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test. StaticPool keeps one shared connection."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    """Clock pinned to Monday 2025-01-06 09:00 UTC."""
    return FixedClock(START)


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "auth0|test-user-id",
        "email": "buyer@invenflow.test",
    }


@pytest.fixture
async def client(test_db, mock_user, clock):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    def override_get_clock():
        return clock

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_clock] = override_get_clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def boards(test_db):
    """
    Order board linked to a receive board, plus one storage location.

    Returns a dict with "order", "receive" and "location".
    """
    receive = Kanban(name="Receiving Dock", kind="receive", created_at=START, updated_at=START)
    test_db.add(receive)
    await test_db.flush()

    order = Kanban(
        name="Purchasing",
        kind="order",
        linked_kanban_id=receive.kanban_id,
        threshold_rules=[
            {"id": "warn", "operator": ">", "value": 2, "unit": "hours", "priority": 1, "color": "#f59e0b"},
            {"id": "late", "operator": ">", "value": 1, "unit": "days", "priority": 2, "color": "#ef4444"},
        ],
        created_at=START,
        updated_at=START,
    )
    test_db.add(order)
    await test_db.flush()

    receive.linked_kanban_id = order.kanban_id
    test_db.add(KanbanLink(order_kanban_id=order.kanban_id, receive_kanban_id=receive.kanban_id, created_at=START))

    location = Location(name="Shelf A1", code="A1", area="Warehouse", building="North")
    test_db.add(location)
    await test_db.commit()

    return {"order": order, "receive": receive, "location": location}


@pytest.fixture
def make_product(test_db, clock):
    """Factory creating an item in the first column of the given board."""
    from supply_chain.transfers import create_product

    async def _make(kanban, **fields):
        fields.setdefault("name", "Nitrile Gloves")
        fields.setdefault("sku", "GLV-100")
        fields.setdefault("quantity", 10)
        return await create_product(test_db, kanban.kanban_id, fields, clock=clock)

    return _make
