"""Prediction-specific exceptions.

These are separate from backend.common.exceptions to keep the prediction module
self-contained. The API layer catches PredictionError subclasses and maps them
to HTTP status codes in backend/main.py.
"""

from __future__ import annotations


class PredictionError(Exception):
    """Base exception for prediction module errors."""


class UnknownTierError(PredictionError):
    """Raised when a catalog lookup is given something that is not a DifficultyTier."""

    def __init__(self, tier: object) -> None:
        super().__init__(f"Unknown difficulty tier: {tier!r}")
        self.tier = tier


class InvalidTransitionError(PredictionError):
    """Raised when a state machine event is issued in a phase that does not accept it.

    The session state is left untouched.
    """

    def __init__(self, event: str, phase: str) -> None:
        super().__init__(f"Event '{event}' is not allowed in phase '{phase}'")
        self.event = event
        self.phase = phase


class CatalogError(PredictionError):
    """Raised when an outcome table violates the catalog shape rules."""
