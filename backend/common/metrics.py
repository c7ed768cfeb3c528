"""Prometheus metrics definitions for the Predictor service.

All metric objects are centralized here as module-level singletons.
Import what you need from anywhere in the codebase:

    from backend.common.metrics import HTTP_REQUESTS_TOTAL, PREDICTIONS_DRAWN_TOTAL

The /metrics endpoint is mounted in backend/main.py via
prometheus_client.make_asgi_app().
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# ─── App Info ───

APP_INFO = Info("app", "Application metadata")

# ─── HTTP Metrics ───

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path_template", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["method", "path_template"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    labelnames=["method"],
)

# ─── Business Metrics: Draws ───

PREDICTIONS_DRAWN_TOTAL = Counter(
    "predictions_drawn_total",
    "Predictions revealed to a session",
    labelnames=["tier", "policy"],
)

RESAMPLE_EXHAUSTED_TOTAL = Counter(
    "resample_exhausted_total",
    "Draws that accepted a repeated value after the resample bound was hit",
)

# ─── Business Metrics: Session Gate ───

SESSION_LOCKS_TOTAL = Counter(
    "session_locks_total",
    "Sessions moved into the Locked phase",
    labelnames=["reason"],
)

INVALID_TRANSITIONS_TOTAL = Counter(
    "invalid_transitions_total",
    "State machine events rejected for the current phase",
    labelnames=["event"],
)

DEPOSITS_TOTAL = Counter(
    "deposits_total",
    "Deposit signals applied to sessions",
    labelnames=["reset_usage"],
)


def set_app_info(version: str, environment: str) -> None:
    """Set the app_info metric values. Called once at startup."""
    APP_INFO.info({"version": version, "environment": environment})
