"""Durable SessionState storage keyed by session identity.

The engine only defines the shape of SessionState; this store maps it onto
the `predictor_sessions` table. Endpoints load a state, drive a
PredictionEngine over it, then save the engine's snapshot back.

Usage:
    from backend.prediction.session_store import SessionStore

    store = SessionStore(db)
    state = await store.get_or_create("browser-abc", usage_limit=15)
    ...
    await store.save("browser-abc", engine.snapshot())
    await db.commit()
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.common.exceptions import SessionConflictError, SessionNotFoundError
from backend.common.logging import get_logger
from backend.common.models import DepositEvent, PredictorSession
from backend.common.schemas import PredictionResult, SessionState

logger = get_logger("SESSION")


def row_to_state(row: PredictorSession) -> SessionState:
    """Convert a PredictorSession row to a SessionState schema.

    The result columns are only read back when all three are present.
    """
    result = None
    if (
        row.result_value is not None
        and row.result_steps is not None
        and row.result_confidence is not None
    ):
        result = PredictionResult(
            value=row.result_value,
            steps=row.result_steps,
            confidence=row.result_confidence,
        )

    return SessionState(
        usage_count=row.usage_count,
        usage_limit=row.usage_limit,
        locked=row.locked,
        last_drawn_value=row.last_drawn_value,
        phase=row.phase,
        tier=row.tier,
        result=result,
    )


def apply_state(row: PredictorSession, state: SessionState) -> None:
    """Copy a SessionState onto a PredictorSession row in place."""
    row.usage_count = state.usage_count
    row.usage_limit = state.usage_limit
    row.locked = state.locked
    row.last_drawn_value = state.last_drawn_value
    row.phase = state.phase
    row.tier = state.tier
    if state.result is None:
        row.result_value = None
        row.result_steps = None
        row.result_confidence = None
    else:
        row.result_value = state.result.value
        row.result_steps = state.result.steps
        row.result_confidence = state.result.confidence


class SessionStore:
    """Loads and saves SessionState rows.

    The store flushes but never commits; the caller owns the transaction.

    Args:
        db: Async SQLAlchemy session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_row(self, session_id: str) -> PredictorSession | None:
        result = await self.db.execute(
            select(PredictorSession).where(PredictorSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def _flush(self, session_id: str) -> None:
        """Flush pending row changes, turning lost races into SessionConflictError.

        A stale version_id (another request saved first) or a duplicate insert
        (another request created the session first) both mean this request
        worked on an outdated state.
        """
        try:
            await self.db.flush()
        except (StaleDataError, IntegrityError) as exc:
            logger.warning(
                "Concurrent session update rejected",
                extra={"data": {"session_id": session_id, "error": type(exc).__name__}},
            )
            raise SessionConflictError(
                "Session was modified by a concurrent request",
                context={"session_id": session_id},
            ) from exc

    async def load(self, session_id: str) -> SessionState | None:
        """Return the stored state, or None if the session is unknown."""
        row = await self._get_row(session_id)
        if row is None:
            return None
        return row_to_state(row)

    async def require(self, session_id: str) -> SessionState:
        """Return the stored state.

        Raises:
            SessionNotFoundError: If the session is unknown.
        """
        state = await self.load(session_id)
        if state is None:
            raise SessionNotFoundError(
                "Session not found",
                context={"session_id": session_id},
            )
        return state

    async def get_or_create(self, session_id: str, usage_limit: int) -> SessionState:
        """Return the stored state, creating a fresh Idle session if needed.

        Args:
            session_id: Session identity (browser session or user ID).
            usage_limit: Quota for a newly created session. Existing
                sessions keep the limit they were created with.
        """
        row = await self._get_row(session_id)
        if row is None:
            state = SessionState(usage_limit=usage_limit)
            row = PredictorSession(id=session_id)
            apply_state(row, state)
            self.db.add(row)
            await self._flush(session_id)
            logger.info(
                "Session created",
                extra={"data": {"session_id": session_id, "usage_limit": usage_limit}},
            )
            return state
        return row_to_state(row)

    async def save(self, session_id: str, state: SessionState) -> None:
        """Persist `state` for `session_id`, inserting the row if missing."""
        row = await self._get_row(session_id)
        if row is None:
            row = PredictorSession(id=session_id)
            self.db.add(row)
        apply_state(row, state)
        await self._flush(session_id)

    async def record_deposit(
        self,
        session_id: str,
        amount_cents: int,
        reset_usage: bool,
        usage_count_before: int,
    ) -> DepositEvent:
        """Append a deposit signal to the audit table."""
        event = DepositEvent(
            session_id=session_id,
            amount_cents=amount_cents,
            reset_usage=reset_usage,
            usage_count_before=usage_count_before,
        )
        self.db.add(event)
        await self.db.flush()
        logger.info(
            "Deposit recorded",
            extra={
                "data": {
                    "session_id": session_id,
                    "amount_cents": amount_cents,
                    "reset_usage": reset_usage,
                }
            },
        )
        return event
