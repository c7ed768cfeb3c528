"""Pydantic schemas — the interface contracts between all modules.

Defines the data shapes that flow between the catalog, the engine, the
session store and the API layer. All cross-module communication uses
these types.

RULES:
- Modules must use these types, never ad-hoc dicts or custom classes.
- If you need a new shared type, add it HERE.
- Multiplier values are Decimals with two fraction digits; the "1.23x"
  rendering is derived, never stored.
"""

from __future__ import annotations

import enum
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, computed_field

# ─── Enumerations ───


class DifficultyTier(str, enum.Enum):
    """Difficulty tiers, in ascending order of risk."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"
    HARDCORE = "Hardcore"


class SessionPhase(str, enum.Enum):
    """Phases of the per-session prediction state machine."""

    IDLE = "Idle"
    PENDING = "Pending"
    REVEALED = "Revealed"
    LOCKED = "Locked"


TIER_ORDER: tuple[DifficultyTier, ...] = tuple(DifficultyTier)

_TWO_PLACES = Decimal("0.01")


# ─── Multiplier helpers ───


def format_multiplier(value: Decimal) -> str:
    """Render a multiplier with two fraction digits and a trailing unit marker.

    >>> format_multiplier(Decimal("1.2"))
    '1.20x'
    """
    return f"{value.quantize(_TWO_PLACES)}x"


def parse_multiplier(text: str) -> Decimal:
    """Parse a "1.23x" style label (the trailing "x" is optional).

    Raises:
        ValueError: If the text is not a positive decimal.
    """
    raw = text.strip().rstrip("xX").strip()
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        msg = f"Not a multiplier: {text!r}"
        raise ValueError(msg) from exc
    if not value.is_finite():
        msg = f"Not a multiplier: {text!r}"
        raise ValueError(msg)
    try:
        value = value.quantize(_TWO_PLACES)
    except InvalidOperation as exc:
        msg = f"Multiplier out of range: {text!r}"
        raise ValueError(msg) from exc
    # Checked after rounding so "0.001" cannot become a zero multiplier
    if value <= 0:
        msg = f"Multiplier must be positive: {text!r}"
        raise ValueError(msg)
    return value


# ─── Catalog Schemas ───


class Outcome(BaseModel):
    """A static candidate result belonging to one tier. Immutable."""

    model_config = ConfigDict(frozen=True)

    value: Decimal = Field(gt=0, decimal_places=2)
    steps: int = Field(ge=1)  # Progression depth, ascending with value
    tier: DifficultyTier

    @computed_field  # type: ignore[prop-decorator]
    @property
    def label(self) -> str:
        return format_multiplier(self.value)


# ─── Engine Schemas ───


class PredictionResult(BaseModel):
    """One revealed prediction. Lives only until the next round starts."""

    model_config = ConfigDict(frozen=True)

    value: Decimal = Field(gt=0)
    steps: int = Field(ge=1)
    confidence: int = Field(ge=0, le=100)  # Percent, 70-99 with default settings

    @computed_field  # type: ignore[prop-decorator]
    @property
    def label(self) -> str:
        return format_multiplier(self.value)


class SessionState(BaseModel):
    """Mutable per-session state owned by the PredictionEngine.

    Persisted by the session store; the engine only defines its shape.
    """

    model_config = ConfigDict(validate_assignment=True)

    usage_count: int = Field(default=0, ge=0)
    usage_limit: int = Field(default=15, ge=1)
    locked: bool = False
    last_drawn_value: Decimal | None = None  # Anti-repeat memory only
    phase: SessionPhase = SessionPhase.IDLE
    tier: DifficultyTier = DifficultyTier.EASY
    result: PredictionResult | None = None
