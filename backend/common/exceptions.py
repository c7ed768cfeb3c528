"""Custom exceptions for the Predictor service.

Service-level modules raise these instead of generic exceptions.
The FastAPI exception handlers in main.py catch PredictorBaseException
and return structured JSON error responses.
"""

from __future__ import annotations

from backend.common.logging import REDACTED, is_secret_key, redact


class PredictorBaseException(Exception):
    """Base exception for all Predictor service errors.

    Args:
        message: Human-readable error description.
        context: Optional dict of structured data for logging/debugging.
    """

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return super().__str__()
        safe_context = {
            k: REDACTED if is_secret_key(k) else v for k, v in self.context.items()
        }
        # Affiliate URLs can show up as plain values
        return redact(f"{super().__str__()} | context={safe_context}")


class SessionNotFoundError(PredictorBaseException):
    """No stored session exists for the requested session ID."""


class SessionConflictError(PredictorBaseException):
    """The stored session changed between load and save (concurrent request)."""
