"""Root test configuration — shared fixtures for all test modules.

IMPORTANT: Environment variables are set BEFORE any backend imports
so that config.py loads test Settings without a .env file.
"""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")  # In-memory SQLite
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("AFFILIATE_LINK", "https://example.test/?p=TEST")

# Now safe to import backend modules
import random

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.common.config import Settings, get_settings
from backend.common.models import Base
from backend.common.schemas import DifficultyTier, SessionState
from backend.prediction.catalog import OutcomeCatalog
from backend.prediction.engine import PredictionEngine
from backend.prediction.policies import TieredPolicy

# ─── Clear cached settings so test env vars are used ───
get_settings.cache_clear()


# ─── Test Database ───


@pytest_asyncio.fixture
async def engine():
    """Create an async in-memory database engine with all tables."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    """Provide a database session per test. The engine is discarded afterwards."""
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


# ─── Test Settings ───


@pytest.fixture
def test_settings() -> Settings:
    """Settings loaded from the test environment."""
    return get_settings()


# ─── Engine Fixtures ───


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source so draws are reproducible."""
    return random.Random(1234)


@pytest.fixture
def catalog() -> OutcomeCatalog:
    return OutcomeCatalog()


@pytest.fixture
def make_engine(catalog: OutcomeCatalog, rng: random.Random):
    """Factory for engines over the default catalog with a seeded rng.

    Usage:
        engine = make_engine(usage_count=14, tier=DifficultyTier.HARD)
    """

    def _make(
        usage_count: int = 0,
        usage_limit: int = 15,
        locked: bool = False,
        tier: DifficultyTier = DifficultyTier.EASY,
        **overrides,
    ) -> PredictionEngine:
        state = SessionState(
            usage_count=usage_count,
            usage_limit=usage_limit,
            locked=locked,
            tier=tier,
            **overrides,
        )
        return PredictionEngine(state, policy=TieredPolicy(catalog), rng=rng)

    return _make


def play_round(engine: PredictionEngine, tier: DifficultyTier | None = None):
    """Run request → resolve → next_round and return the revealed result."""
    engine.request_prediction(tier)
    result = engine.resolve_prediction()
    engine.next_round()
    return result


@pytest.fixture
def round_runner():
    """Expose play_round to test modules as a fixture."""
    return play_round
