"""Async database engine and session factory.

Uses SQLAlchemy 2.0+ async with aiosqlite by default; any async driver
URL (e.g. postgresql+asyncpg) works through DATABASE_URL.

Usage in FastAPI:
    from backend.common.database import get_db

    @router.get("/example")
    async def example(db: AsyncSession = Depends(get_db)):
        state = await SessionStore(db).load("abc")
        ...
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.common.config import get_settings

# Create engine lazily on first use
_engine = None
_session_factory = None


def _get_engine():
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.db_echo,
            pool_pre_ping=True,
        )
    return _engine


def _get_session_factory():
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=_get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that provides an async database session.

    The session is automatically closed when the request finishes.
    Transactions must be committed explicitly by the caller.
    """
    factory = _get_session_factory()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_tables() -> None:
    """Create all ORM tables if they do not exist yet."""
    from backend.common.models import Base

    async with _get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

