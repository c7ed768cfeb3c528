"""Prediction session endpoints.

Each endpoint loads the session's state, drives one PredictionEngine event,
saves the resulting snapshot and returns a SessionView. The caller owns the
suspense delay: it calls /request, waits `reveal_delay_seconds`, then calls
/resolve (or /cancel to abandon the round).
"""

from __future__ import annotations

import random

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import (
    build_engine,
    engine_to_view,
    get_catalog,
    get_rng,
    get_session_store,
)
from backend.api.response_schemas import (
    DepositSignal,
    LockCheckResponse,
    PredictionRequest,
    SessionView,
    TierSelect,
)
from backend.common.config import Settings, get_settings
from backend.common.database import get_db
from backend.common.logging import get_logger
from backend.common.metrics import DEPOSITS_TOTAL
from backend.prediction.catalog import OutcomeCatalog
from backend.prediction.engine import PredictionEngine
from backend.prediction.session_store import SessionStore

logger = get_logger("API")
deposit_logger = get_logger("DEPOSIT")

router = APIRouter()


async def _commit(
    session_id: str,
    engine: PredictionEngine,
    store: SessionStore,
    db: AsyncSession,
) -> None:
    await store.save(session_id, engine.snapshot())
    await db.commit()


@router.get("/{session_id}", response_model=SessionView)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Fetch (or start) a session and return its current view.

    Args:
        session_id: Caller-chosen session identity.

    Returns:
        SessionView with phase, quota, active result and deposit prompt.
    """
    state = await store.get_or_create(session_id, settings.usage_limit)
    engine = build_engine(state, settings, catalog, rng)
    await _commit(session_id, engine, store, db)
    return engine_to_view(session_id, engine, settings)


@router.post("/{session_id}/tier", response_model=SessionView)
async def select_tier(
    session_id: str,
    body: TierSelect,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Change the tier used by the next request."""
    state = await store.get_or_create(session_id, settings.usage_limit)
    engine = build_engine(state, settings, catalog, rng)
    engine.select_tier(body.tier)
    await _commit(session_id, engine, store, db)
    return engine_to_view(session_id, engine, settings)


@router.post("/{session_id}/request", response_model=SessionView)
async def request_prediction(
    session_id: str,
    body: PredictionRequest | None = None,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Gate check. Returns phase Pending when allowed, Locked when the quota is spent.

    A locked response is a normal outcome (200), not an error.
    """
    state = await store.get_or_create(session_id, settings.usage_limit)
    engine = build_engine(state, settings, catalog, rng)
    phase = engine.request_prediction(body.tier if body else None)
    await _commit(session_id, engine, store, db)
    logger.info(
        "Gate check",
        extra={
            "data": {
                "session_id": session_id,
                "phase": phase.value,
                "remaining": engine.remaining,
            }
        },
    )
    return engine_to_view(session_id, engine, settings)


@router.post("/{session_id}/resolve", response_model=SessionView)
async def resolve_prediction(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Draw the pending prediction and reveal it."""
    state = await store.require(session_id)
    engine = build_engine(state, settings, catalog, rng)
    engine.resolve_prediction()
    await _commit(session_id, engine, store, db)
    return engine_to_view(session_id, engine, settings)


@router.post("/{session_id}/next", response_model=SessionView)
async def next_round(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Clear the revealed result and go back to Idle."""
    state = await store.require(session_id)
    engine = build_engine(state, settings, catalog, rng)
    engine.next_round()
    await _commit(session_id, engine, store, db)
    return engine_to_view(session_id, engine, settings)


@router.post("/{session_id}/cancel", response_model=SessionView)
async def cancel_pending(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Abandon a pending request without consuming quota."""
    state = await store.require(session_id)
    engine = build_engine(state, settings, catalog, rng)
    engine.cancel_pending()
    await _commit(session_id, engine, store, db)
    return engine_to_view(session_id, engine, settings)


@router.post("/{session_id}/lock-check", response_model=LockCheckResponse)
async def acknowledge_lock_check(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> LockCheckResponse:
    """Lock the session if its quota is spent."""
    state = await store.require(session_id)
    engine = build_engine(state, settings, catalog, rng)
    locked = engine.acknowledge_lock_check()
    await _commit(session_id, engine, store, db)
    return LockCheckResponse(locked=locked, session=engine_to_view(session_id, engine, settings))


@router.post("/{session_id}/lock", response_model=SessionView)
async def lock_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Lock the session early, before the quota is spent."""
    state = await store.require(session_id)
    engine = build_engine(state, settings, catalog, rng)
    engine.lock()
    await _commit(session_id, engine, store, db)
    return engine_to_view(session_id, engine, settings)


@router.post("/{session_id}/deposit", response_model=SessionView)
async def apply_deposit(
    session_id: str,
    body: DepositSignal,
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    catalog: OutcomeCatalog = Depends(get_catalog),
    rng: random.Random = Depends(get_rng),
) -> SessionView:
    """Apply an external "deposit completed" signal.

    Unlocking and resetting usage are independent: without a usage reset
    the session unlocks, and the next request locks it again if the quota
    is still spent.
    """
    reset_usage = body.reset_usage
    if reset_usage is None:
        reset_usage = settings.deposit_resets_usage

    state = await store.require(session_id)
    engine = build_engine(state, settings, catalog, rng)
    usage_before = engine.usage_count
    engine.unlock()
    if reset_usage:
        engine.reset_usage()

    await store.record_deposit(session_id, body.amount_cents, reset_usage, usage_before)
    await _commit(session_id, engine, store, db)

    DEPOSITS_TOTAL.labels(reset_usage=str(reset_usage).lower()).inc()
    deposit_logger.info(
        "Deposit applied",
        extra={
            "data": {
                "session_id": session_id,
                "amount_cents": body.amount_cents,
                "reset_usage": reset_usage,
                "remaining": engine.remaining,
            }
        },
    )
    return engine_to_view(session_id, engine, settings)
