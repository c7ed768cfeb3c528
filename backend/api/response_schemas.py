"""API response and request schemas -- types used only by the REST layer."""

from __future__ import annotations

from pydantic import BaseModel, Field

from backend.common.schemas import (
    DifficultyTier,
    Outcome,
    PredictionResult,
    SessionPhase,
)


class TierSelect(BaseModel):
    """Request body for changing the session's tier."""

    tier: str  # Validated by the catalog so foreign names map to 422


class PredictionRequest(BaseModel):
    """Request body for the gate check. Omitting `tier` keeps the current one."""

    tier: str | None = None


class DepositSignal(BaseModel):
    """External "deposit completed" signal.

    `reset_usage` falls back to the configured product policy when omitted.
    """

    amount_cents: int = Field(gt=0)
    reset_usage: bool | None = None


class DepositPrompt(BaseModel):
    """What a locked session shows to steer the user to the deposit flow."""

    affiliate_link: str
    usage_limit: int
    redeposit_amount_cents: int


class SessionView(BaseModel):
    """Everything a caller reads after each transition."""

    session_id: str
    phase: SessionPhase
    tier: DifficultyTier
    usage_count: int
    usage_limit: int
    remaining: int
    locked: bool
    result: PredictionResult | None = None
    deposit: DepositPrompt | None = None  # Only while locked
    reveal_delay_seconds: float


class LockCheckResponse(BaseModel):
    """Response for an explicit lock check."""

    locked: bool
    session: SessionView


class TierCatalog(BaseModel):
    """One tier's outcome ladder."""

    tier: DifficultyTier
    outcomes: list[Outcome]
