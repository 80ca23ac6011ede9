"""API application factory."""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from conviction.core.config import settings
from conviction.core.exceptions import register_exception_handlers
from conviction.core.logging import get_logger, request_id_var, setup_logging
from conviction.schemas.common import ErrorResponse

from .routes import diagnostics, evaluation, health, outcomes


logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - initialize and cleanup resources."""
    from conviction.database.connection import close_database, init_sqlalchemy_engine
    from conviction.engine.stores import DatabaseLearningStore, get_learning_store

    setup_logging()
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    try:
        await init_sqlalchemy_engine()
        store = get_learning_store()
        if isinstance(store, DatabaseLearningStore):
            await store.ensure_defaults()
    except Exception as e:
        # Evaluations still run on default parameters
        logger.warning(f"Resource initialization failed (may be ok in tests): {e}")

    yield

    try:
        await close_database()
    except Exception as e:
        logger.warning(f"Resource cleanup failed: {e}")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add request ID to all requests for tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()

        response = await call_next(request)

        duration = time.monotonic() - start_time
        path = request.url.path

        logger.info(
            f"{request.method} {path} -> {response.status_code} ({duration:.3f}s)",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": int(duration * 1000),
            },
        )

        return response


def create_api_app() -> FastAPI:
    """Create and configure the API application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Signal consensus, confidence recalibration and trade planning",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse, "description": "Bad Request"},
            404: {"model": ErrorResponse, "description": "Not Found"},
            422: {"model": ErrorResponse, "description": "Validation Error"},
            500: {"model": ErrorResponse, "description": "Internal Server Error"},
            503: {"model": ErrorResponse, "description": "Weight Store Unavailable"},
        },
    )

    # Add middlewares (order matters - first added is outermost)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type", "X-Request-ID"],
            expose_headers=["X-Request-ID"],
            max_age=600,
        )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(evaluation.router, tags=["Evaluation"])
    app.include_router(outcomes.router, tags=["Outcomes"])
    app.include_router(diagnostics.router, prefix="/diagnostics", tags=["Diagnostics"])

    return app
