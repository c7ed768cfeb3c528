"""Tests for the exception hierarchy."""

from __future__ import annotations

from backend.common.exceptions import (
    PredictorBaseException,
    SessionConflictError,
    SessionNotFoundError,
)
from backend.prediction.exceptions import (
    InvalidTransitionError,
    PredictionError,
    UnknownTierError,
)


def test_context_rendered_in_str():
    exc = SessionNotFoundError("Session not found", context={"session_id": "abc"})
    assert str(exc) == "Session not found | context={'session_id': 'abc'}"


def test_secret_context_redacted():
    exc = PredictorBaseException("Deposit failed", context={"partner_token": "t-123"})
    assert "t-123" not in str(exc)
    assert "[REDACTED]" in str(exc)


def test_prediction_errors_share_base():
    assert issubclass(UnknownTierError, PredictionError)
    assert issubclass(InvalidTransitionError, PredictionError)


def test_invalid_transition_carries_event_and_phase():
    exc = InvalidTransitionError("resolve_prediction", "Idle")
    assert exc.event == "resolve_prediction"
    assert exc.phase == "Idle"
    assert "resolve_prediction" in str(exc)


def test_affiliate_code_in_context_redacted():
    exc = PredictorBaseException(
        "Deposit prompt failed", context={"link": "https://1waff.com/?p=ABC123"}
    )
    assert "ABC123" not in str(exc)
    assert "https://1waff.com/?p=[REDACTED]" in str(exc)


def test_conflict_is_service_error():
    assert issubclass(SessionConflictError, PredictorBaseException)
