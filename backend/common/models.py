"""SQLAlchemy ORM models.

Session state is stored one row per logical session (browser session or
authenticated user). Deposit signals are appended to an audit table.
Convert rows to the Pydantic SessionState via SessionStore, never by hand
in endpoint code.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from backend.common.schemas import DifficultyTier, SessionPhase


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class PredictorSession(Base):
    """Persisted SessionState for one session identity."""

    __tablename__ = "predictor_sessions"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_limit: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    phase: Mapped[SessionPhase] = mapped_column(
        Enum(SessionPhase), default=SessionPhase.IDLE, nullable=False
    )
    tier: Mapped[DifficultyTier] = mapped_column(
        Enum(DifficultyTier), default=DifficultyTier.EASY, nullable=False
    )
    last_drawn_value: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)

    # Active result, only populated while phase == REVEALED
    result_value: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    result_steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    result_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Bumped on every UPDATE; a save against a stale version fails the flush
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


class DepositEvent(Base):
    """An external "deposit completed" signal applied to a session."""

    __tablename__ = "deposit_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    session_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("predictor_sessions.id"), index=True, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    reset_usage: Mapped[bool] = mapped_column(Boolean, nullable=False)
    usage_count_before: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
