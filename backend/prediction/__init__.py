"""Prediction engine — tiered outcome catalog, anti-repeat draw, and usage gate.

Orchestrates: tier selection → gate check → draw (outcome + confidence) → reveal.
"""

from __future__ import annotations

from backend.prediction.catalog import OutcomeCatalog
from backend.prediction.engine import PredictionEngine

__all__ = ["OutcomeCatalog", "PredictionEngine"]
