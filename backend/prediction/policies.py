"""Outcome selection policies and the anti-repeat draw.

Two policies decide which candidate list a draw picks from:

- TieredPolicy (default): the tier's ladder from the OutcomeCatalog.
- RarityPolicy: a flat common/rare split shared by every tier. The rare
  pool is picked with a fixed probability (1/15 by default).

Whatever the policy, the draw itself is the same: pick uniformly, and if
the pick repeats the previous value while an alternative exists, resample.
The resample loop is bounded; when the bound is hit the repeat is accepted.

All randomness goes through an injected random.Random so tests can seed it.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from backend.common.logging import get_logger
from backend.common.metrics import RESAMPLE_EXHAUSTED_TOTAL
from backend.common.schemas import DifficultyTier, Outcome
from backend.prediction.catalog import (
    RARE_CHANCE,
    OutcomeCatalog,
    coerce_tier,
    rarity_pools,
)

logger = get_logger("ENGINE")

DEFAULT_MAX_ATTEMPTS = 50
CONFIDENCE_MIN = 70
CONFIDENCE_MAX = 99


class SelectionPolicy(Protocol):
    """Chooses the candidate list a single draw samples from."""

    name: str

    def candidates_for(self, tier: DifficultyTier, rng: random.Random) -> tuple[Outcome, ...]:
        ...


class TieredPolicy:
    """Candidates are the full ladder of the requested tier."""

    name = "tiered"

    def __init__(self, catalog: OutcomeCatalog | None = None) -> None:
        self.catalog = catalog or OutcomeCatalog()

    def candidates_for(self, tier: DifficultyTier, rng: random.Random) -> tuple[Outcome, ...]:
        return self.catalog.list_for(tier)


class RarityPolicy:
    """Flat common/rare split, identical for every tier.

    A Bernoulli trial with probability `rare_chance` picks the rare pool,
    otherwise the common pool. Steps number the combined ladder, so rare
    outcomes continue where the common ones stop.
    """

    name = "rarity"

    def __init__(self, rare_chance: float = RARE_CHANCE) -> None:
        if not 0.0 <= rare_chance <= 1.0:
            msg = f"rare_chance must be within [0, 1], got {rare_chance}"
            raise ValueError(msg)
        self.rare_chance = rare_chance
        self._common_values, self._rare_values = rarity_pools()

    def pools_for(self, tier: DifficultyTier) -> tuple[tuple[Outcome, ...], tuple[Outcome, ...]]:
        """Return (common, rare) outcomes stamped with `tier`."""
        tier = coerce_tier(tier)
        common = tuple(
            Outcome(value=value, steps=i, tier=tier)
            for i, value in enumerate(self._common_values, start=1)
        )
        offset = len(common)
        rare = tuple(
            Outcome(value=value, steps=offset + i, tier=tier)
            for i, value in enumerate(self._rare_values, start=1)
        )
        return common, rare

    def candidates_for(self, tier: DifficultyTier, rng: random.Random) -> tuple[Outcome, ...]:
        common, rare = self.pools_for(tier)
        return rare if rng.random() < self.rare_chance else common


@dataclass(frozen=True)
class Draw:
    """Outcome of one anti-repeat draw."""

    outcome: Outcome
    candidate_count: int
    attempts: int
    repeated: bool  # True only when the resample bound forced a repeat


def draw_outcome(
    candidates: Sequence[Outcome],
    last_value: Decimal | None,
    rng: random.Random,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Draw:
    """Pick uniformly from `candidates`, resampling immediate repeats.

    Args:
        candidates: Non-empty candidate list.
        last_value: Value of the previous draw, or None.
        rng: Random source.
        max_attempts: Total picks allowed before a repeat is accepted.

    Returns:
        The Draw, flagged `repeated` when the bound was exhausted.

    Raises:
        ValueError: If `candidates` is empty or `max_attempts` < 1.
    """
    if not candidates:
        msg = "Cannot draw from an empty candidate list"
        raise ValueError(msg)
    if max_attempts < 1:
        msg = f"max_attempts must be >= 1, got {max_attempts}"
        raise ValueError(msg)

    selected = rng.choice(candidates)
    attempts = 1
    if len(candidates) == 1:
        return Draw(outcome=selected, candidate_count=1, attempts=attempts, repeated=False)

    while selected.value == last_value and attempts < max_attempts:
        selected = rng.choice(candidates)
        attempts += 1

    repeated = selected.value == last_value
    if repeated:
        RESAMPLE_EXHAUSTED_TOTAL.inc()
        logger.warning(
            "Resample bound hit, accepting repeated value",
            extra={
                "data": {
                    "value": str(selected.value),
                    "attempts": attempts,
                    "candidates": len(candidates),
                }
            },
        )

    return Draw(
        outcome=selected,
        candidate_count=len(candidates),
        attempts=attempts,
        repeated=repeated,
    )


def draw_confidence(
    rng: random.Random,
    low: int = CONFIDENCE_MIN,
    high: int = CONFIDENCE_MAX,
) -> int:
    """Uniform integer confidence in [low, high], independent of the outcome."""
    return rng.randint(low, high)


def build_policy(
    name: str,
    catalog: OutcomeCatalog | None = None,
    rare_chance: float = RARE_CHANCE,
) -> SelectionPolicy:
    """Construct a selection policy by its configured name.

    Raises:
        ValueError: If the name is not "tiered" or "rarity".
    """
    if name == TieredPolicy.name:
        return TieredPolicy(catalog)
    if name == RarityPolicy.name:
        return RarityPolicy(rare_chance)
    msg = f"Unknown selection policy: {name!r}"
    raise ValueError(msg)
