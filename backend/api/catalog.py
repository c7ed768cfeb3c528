"""Outcome catalog endpoints (read-only reference data)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.api.deps import get_catalog
from backend.api.response_schemas import TierCatalog
from backend.prediction.catalog import OutcomeCatalog, coerce_tier

router = APIRouter()


@router.get("", response_model=list[TierCatalog])
async def list_catalog(catalog: OutcomeCatalog = Depends(get_catalog)) -> list[TierCatalog]:
    """All tiers with their outcome ladders, in ascending difficulty."""
    return [
        TierCatalog(tier=tier, outcomes=list(catalog.list_for(tier))) for tier in catalog.tiers()
    ]


@router.get("/{tier}", response_model=TierCatalog)
async def get_tier(tier: str, catalog: OutcomeCatalog = Depends(get_catalog)) -> TierCatalog:
    """One tier's outcome ladder.

    Raises:
        UnknownTierError: Mapped to 422 by the app's exception handlers.
    """
    resolved = coerce_tier(tier)
    return TierCatalog(tier=resolved, outcomes=list(catalog.list_for(resolved)))
