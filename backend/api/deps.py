"""FastAPI dependencies and state-to-schema converters.

Provides dependency injection for the session store, the random source and
the outcome catalog, plus helpers that turn a PredictionEngine into the
SessionView response schema.
"""

from __future__ import annotations

import random
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.response_schemas import DepositPrompt, SessionView
from backend.common.config import Settings, get_settings
from backend.common.database import get_db
from backend.common.schemas import SessionState
from backend.prediction.catalog import OutcomeCatalog
from backend.prediction.engine import PredictionEngine
from backend.prediction.session_store import SessionStore


def get_session_store(db: AsyncSession = Depends(get_db)) -> SessionStore:
    """Provide a SessionStore bound to the request's database session."""
    return SessionStore(db)


@lru_cache
def get_catalog() -> OutcomeCatalog:
    """Shared default catalog. Override in tests for custom tables."""
    return OutcomeCatalog()


def get_rng() -> random.Random:
    """Random source for draws. Override in tests with a seeded instance."""
    return random.Random()


def build_engine(
    state: SessionState,
    settings: Settings,
    catalog: OutcomeCatalog,
    rng: random.Random,
) -> PredictionEngine:
    """Wrap a loaded SessionState in an engine configured from settings."""
    return PredictionEngine.from_settings(settings, state, catalog=catalog, rng=rng)


def engine_to_view(
    session_id: str,
    engine: PredictionEngine,
    settings: Settings | None = None,
) -> SessionView:
    """Convert an engine's current state to a SessionView schema.

    The deposit prompt is attached only while the session is locked.

    Args:
        session_id: Session identity the state belongs to.
        engine: The engine after the transition.
        settings: App settings (defaults to get_settings()).

    Returns:
        A SessionView populated from the engine's state.
    """
    settings = settings or get_settings()
    deposit = None
    if engine.locked:
        deposit = DepositPrompt(
            affiliate_link=settings.affiliate_link,
            usage_limit=engine.usage_limit,
            redeposit_amount_cents=settings.redeposit_amount_cents,
        )

    return SessionView(
        session_id=session_id,
        phase=engine.phase,
        tier=engine.tier,
        usage_count=engine.usage_count,
        usage_limit=engine.usage_limit,
        remaining=engine.remaining,
        locked=engine.locked,
        result=engine.result,
        deposit=deposit,
        reveal_delay_seconds=settings.reveal_delay_seconds,
    )
