"""FastAPI application factory for the Predictor service.

Run with: uvicorn backend.main:app --reload
"""

from __future__ import annotations

import traceback
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app as make_metrics_app
from sqlalchemy import text

from backend.api.catalog import router as catalog_router
from backend.api.sessions import router as sessions_router
from backend.common.config import get_settings
from backend.common.exceptions import (
    PredictorBaseException,
    SessionConflictError,
    SessionNotFoundError,
)
from backend.common.logging import get_logger
from backend.common.metrics import set_app_info
from backend.common.middleware import (
    PrometheusMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    request_id_var,
)
from backend.prediction.exceptions import (
    InvalidTransitionError,
    PredictionError,
    UnknownTierError,
)

logger = get_logger("SYSTEM")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables on startup when configured to."""
    settings = get_settings()
    if settings.auto_create_tables:
        from backend.common.database import create_tables

        await create_tables()
        logger.info("Database tables ensured")

    yield

    logger.info("App shutting down")


def _error_body(exc: Exception) -> dict:
    body: dict = {"error": type(exc).__name__, "message": str(exc)}
    rid = request_id_var.get("")
    if rid:
        body["request_id"] = rid
    return body


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Predictor",
        version=VERSION,
        description="Tiered multiplier prediction game with a per-session usage gate",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",  # Vite dev server
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Last added = outermost = runs first on request
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ─── Exception Handlers ───

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(
        request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        """Caller misuse of the state machine: 409, state untouched."""
        logger.warning(
            f"InvalidTransitionError: {exc}",
            extra={"data": {"path": str(request.url), "event": exc.event, "phase": exc.phase}},
        )
        return JSONResponse(status_code=409, content=_error_body(exc))

    @app.exception_handler(UnknownTierError)
    async def unknown_tier_handler(request: Request, exc: UnknownTierError) -> JSONResponse:
        """Foreign tier names from request input: 422."""
        logger.warning(
            f"UnknownTierError: {exc}",
            extra={"data": {"path": str(request.url), "tier": str(exc.tier)}},
        )
        return JSONResponse(status_code=422, content=_error_body(exc))

    @app.exception_handler(PredictionError)
    async def prediction_error_handler(request: Request, exc: PredictionError) -> JSONResponse:
        """Any other prediction module failure: 400."""
        logger.error(
            f"{type(exc).__name__}: {exc}",
            extra={"data": {"path": str(request.url)}},
        )
        return JSONResponse(status_code=400, content=_error_body(exc))

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(
        request: Request, exc: SessionNotFoundError
    ) -> JSONResponse:
        """Unknown session ID: 404."""
        logger.info(
            f"SessionNotFoundError: {exc}",
            extra={"data": {"path": str(request.url), "context": exc.context}},
        )
        return JSONResponse(status_code=404, content=_error_body(exc))

    @app.exception_handler(SessionConflictError)
    async def session_conflict_handler(
        request: Request, exc: SessionConflictError
    ) -> JSONResponse:
        """Lost an optimistic-lock race with a concurrent request: 409, nothing saved."""
        logger.warning(
            f"SessionConflictError: {exc}",
            extra={"data": {"path": str(request.url), "context": exc.context}},
        )
        return JSONResponse(status_code=409, content=_error_body(exc))

    @app.exception_handler(PredictorBaseException)
    async def predictor_exception_handler(
        request: Request, exc: PredictorBaseException
    ) -> JSONResponse:
        """Handle all remaining service exceptions with structured JSON responses."""
        logger.error(
            f"{type(exc).__name__}: {exc}",
            extra={"data": {"path": str(request.url), "context": exc.context}},
        )
        return JSONResponse(status_code=400, content=_error_body(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions — log traceback, return 500."""
        rid = request_id_var.get("")
        logger.error(
            f"Unhandled {type(exc).__name__}: {exc}",
            extra={
                "data": {
                    "path": str(request.url),
                    "request_id": rid,
                    "traceback": traceback.format_exc(),
                }
            },
        )
        body: dict = {
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
        }
        if rid:
            body["request_id"] = rid
        return JSONResponse(status_code=500, content=body)

    # ─── Health / Readiness ───

    @app.get("/health")
    async def health_check() -> dict:
        """Liveness probe — confirms the process is running."""
        return {"status": "ok", "version": VERSION}

    @app.get("/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness probe — checks DB connectivity."""
        checks: dict[str, str] = {}
        all_ok = True

        try:
            from backend.common.database import _get_engine

            engine = _get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as exc:
            checks["database"] = f"error: {type(exc).__name__}"
            all_ok = False

        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={
                "status": "ok" if all_ok else "degraded",
                "version": VERSION,
                "checks": checks,
            },
        )

    # ─── Prometheus Metrics ───

    metrics_app = make_metrics_app()
    app.mount("/metrics", metrics_app)
    settings = get_settings()
    set_app_info(version=VERSION, environment=settings.environment)

    # ─── Router Mounting ───

    app.include_router(sessions_router, prefix="/api/sessions", tags=["sessions"])
    app.include_router(catalog_router, prefix="/api/catalog", tags=["catalog"])

    logger.info(
        "App started",
        extra={
            "data": {
                "version": VERSION,
                "selection_policy": settings.selection_policy,
                "usage_limit": settings.usage_limit,
                "affiliate_link": settings.affiliate_link,
            }
        },
    )

    return app


app = create_app()
