"""API test fixtures — httpx.AsyncClient and dependency overrides.

Provides an async test client that exercises the full FastAPI app with the
database, random source and catalog dependencies overridden.

NOTE: endpoint handlers call db.commit(), so API tests use their own
engine and truncate tables after each test.
"""

from __future__ import annotations

import contextlib
import random

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.api.deps import get_catalog, get_rng
from backend.common.database import get_db
from backend.common.models import Base, PredictorSession
from backend.common.schemas import DifficultyTier, SessionPhase
from backend.main import app
from backend.prediction.catalog import OutcomeCatalog

# ─── API-Test-Specific Database Engine ───


@pytest_asyncio.fixture
async def api_engine():
    """Create a separate in-memory SQLite engine for API tests."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(api_engine):
    """Provide a database session per API test, truncating tables afterwards."""
    session_factory = async_sessionmaker(
        bind=api_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        with contextlib.suppress(Exception):
            await session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            await session.execute(table.delete())
        await session.commit()


# ─── Session Row Factory ───


def make_session_row(
    session_id: str = "test-session",
    usage_count: int = 0,
    usage_limit: int = 15,
    locked: bool = False,
    phase: SessionPhase = SessionPhase.IDLE,
    tier: DifficultyTier = DifficultyTier.EASY,
) -> PredictorSession:
    """Create a PredictorSession ORM row with sensible defaults."""
    return PredictorSession(
        id=session_id,
        usage_count=usage_count,
        usage_limit=usage_limit,
        locked=locked,
        phase=phase,
        tier=tier,
    )


@pytest.fixture
def session_row_factory():
    return make_session_row


# ─── Async Test Client ───


def _override_app(db: AsyncSession, catalog: OutcomeCatalog) -> None:
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_rng] = lambda: random.Random(4321)
    app.dependency_overrides[get_catalog] = lambda: catalog


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncClient:
    """Provide an httpx.AsyncClient wired to the test FastAPI app."""
    _override_app(db, OutcomeCatalog())

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def single_entry_client(db: AsyncSession) -> AsyncClient:
    """Client whose Hardcore tier has exactly one outcome ("3.00x")."""
    _override_app(db, OutcomeCatalog({DifficultyTier.HARDCORE: ["3.00x"]}))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
