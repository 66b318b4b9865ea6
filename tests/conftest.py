from collections.abc import Awaitable, Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewardstore.db.database import build_engine, build_session_factory, get_session
from rewardstore.db.operations import create_student, get_student, grant_points, upsert_cosmetic
from rewardstore.main import app
from rewardstore.models.cosmetic import CosmeticItem
from rewardstore.models.db import Base
from rewardstore.services.redemption import RedemptionEngine, get_redemption_engine

CATALOG = [
    CosmeticItem(id="hat-1", name="Red Cap", category="hat", cost=80),
    CosmeticItem(id="hat-2", name="Wizard Hat", category="hat", cost=30),
    CosmeticItem(id="frame-1", name="Gold Frame", category="frame", cost=50),
    CosmeticItem(id="bg-1", name="Sunset", category="background", cost=0),
    CosmeticItem(id="retired-1", name="Old Badge", category="frame", cost=10, active=False),
]

Seeder = Callable[..., Awaitable[None]]


@pytest.fixture
async def async_engine(tmp_path):
    """
    File-backed SQLite engine for testing.

    In-memory SQLite shares one connection across sessions, which hides
    how concurrent transactions interleave.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(async_engine)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory) -> Seeder:
    """
    Seed the catalog, a student and their balance.

    Safe to call more than once; each call adds `balance` points.
    """

    async def _seed(
        student_id: str = "student-1",
        user_id: str | None = "user-1",
        balance: int = 100,
        items: list[CosmeticItem] | None = None,
    ) -> None:
        async with session_factory() as s:
            for item in CATALOG if items is None else items:
                await upsert_cosmetic(s, item)
            if await get_student(s, student_id) is None:
                await create_student(s, student_id, user_id=user_id, name="Test Student")
            if balance:
                await grant_points(s, user_id or student_id, balance, "seed")
            await s.commit()

    return _seed


@pytest.fixture
def redemption(session_factory) -> RedemptionEngine:
    """Redemption engine on the local (same-database) ledger."""
    return RedemptionEngine(session_factory)


@pytest.fixture
async def client(session_factory, redemption):
    """Provide an async test client with overridden database session and engine."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_redemption_engine] = lambda: redemption

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def catalog_items() -> list[CosmeticItem]:
    return list(CATALOG)
