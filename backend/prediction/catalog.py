"""Static outcome reference data, one ascending ladder per difficulty tier.

Each tier maps to an ordered list of multipliers. `steps` is the ladder
position (1-based), so it rises with the value. Tables are validated once on
construction; lookups are pure and return immutable tuples.

Usage:
    from backend.prediction.catalog import OutcomeCatalog

    catalog = OutcomeCatalog()
    easy = catalog.list_for(DifficultyTier.EASY)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal

from backend.common.logging import get_logger
from backend.common.schemas import DifficultyTier, Outcome, parse_multiplier
from backend.prediction.exceptions import CatalogError, UnknownTierError

logger = get_logger("CATALOG")

# ─── Reference Tables ───
# Ascending multiplier ladders. Steps are assigned from position.

DEFAULT_TIER_TABLES: dict[DifficultyTier, tuple[str, ...]] = {
    DifficultyTier.EASY: (
        "1.03x", "1.07x", "1.12x", "1.17x", "1.23x", "1.29x",
        "1.36x", "1.44x", "1.53x", "1.63x", "1.75x",
    ),  # fmt: skip
    DifficultyTier.MEDIUM: ("1.12x", "1.28x", "1.47x", "1.70x", "1.98x", "2.33x", "2.76x"),
    DifficultyTier.HARD: ("1.23x", "1.55x", "1.98x", "2.56x", "3.36x", "4.49x"),
    DifficultyTier.HARDCORE: ("1.63x", "2.80x", "4.95x", "9.08x"),
}

# Flat rarity split (tier-independent): common ladder + rare ladder
COMMON_MULTIPLIERS: tuple[str, ...] = ("1.20x", "1.44x", "1.72x", "2.06x", "2.47x")
RARE_MULTIPLIERS: tuple[str, ...] = ("2.96x", "3.55x", "4.26x", "5.11x")
RARE_CHANCE = 1 / 15


def coerce_tier(tier: object) -> DifficultyTier:
    """Turn caller input into a DifficultyTier.

    Accepts DifficultyTier members and their names as strings
    (case-insensitive), which is what config files and request bodies carry.

    Raises:
        UnknownTierError: For anything else.
    """
    if isinstance(tier, DifficultyTier):
        return tier
    if isinstance(tier, str):
        wanted = tier.strip().lower()
        for member in DifficultyTier:
            if member.value.lower() == wanted:
                return member
    raise UnknownTierError(tier)


def build_ladder(tier: DifficultyTier, labels: Sequence[str | Decimal]) -> tuple[Outcome, ...]:
    """Build a validated outcome ladder from multiplier labels or values.

    Raises:
        CatalogError: If the ladder is empty, not strictly ascending, or
            contains an unparseable or non-positive value.
    """
    if not labels:
        msg = f"Tier {tier.value} has no outcomes"
        raise CatalogError(msg)

    values: list[Decimal] = []
    for raw in labels:
        try:
            # Decimals go through the same checks and rounding as labels
            value = parse_multiplier(str(raw))
        except ValueError as exc:
            msg = f"Tier {tier.value}: {exc}"
            raise CatalogError(msg) from exc
        if values and value <= values[-1]:
            msg = (
                f"Tier {tier.value} values must be strictly ascending, "
                f"got {value} after {values[-1]}"
            )
            raise CatalogError(msg)
        values.append(value)

    return tuple(
        Outcome(value=value, steps=position, tier=tier)
        for position, value in enumerate(values, start=1)
    )


class OutcomeCatalog:
    """Immutable per-tier outcome lists.

    Args:
        tables: Optional replacement tables keyed by tier. Tiers missing
            from the mapping fall back to DEFAULT_TIER_TABLES.
    """

    def __init__(
        self,
        tables: Mapping[DifficultyTier, Sequence[str | Decimal]] | None = None,
    ) -> None:
        merged: dict[DifficultyTier, Sequence[str | Decimal]] = dict(DEFAULT_TIER_TABLES)
        if tables:
            for key, labels in tables.items():
                tier = coerce_tier(key)
                merged[tier] = labels
                logger.info(
                    "Tier table overridden",
                    extra={"data": {"tier": tier.value, "entries": len(labels)}},
                )

        self._ladders: dict[DifficultyTier, tuple[Outcome, ...]] = {
            tier: build_ladder(tier, labels) for tier, labels in merged.items()
        }

    def list_for(self, tier: object) -> tuple[Outcome, ...]:
        """Return the ascending outcome list for a tier.

        Raises:
            UnknownTierError: If `tier` is not one of the four tiers.
        """
        return self._ladders[coerce_tier(tier)]

    def tiers(self) -> tuple[DifficultyTier, ...]:
        """All tiers in ascending difficulty order."""
        return tuple(DifficultyTier)


def rarity_pools() -> tuple[tuple[Decimal, ...], tuple[Decimal, ...]]:
    """Return (common, rare) multiplier values for the flat rarity policy."""
    return (
        tuple(parse_multiplier(label) for label in COMMON_MULTIPLIERS),
        tuple(parse_multiplier(label) for label in RARE_MULTIPLIERS),
    )
