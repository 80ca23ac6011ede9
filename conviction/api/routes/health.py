"""Health check endpoints."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter
from sqlalchemy import text

from conviction.core.config import settings
from conviction.core.logging import get_logger
from conviction.database.connection import get_session
from conviction.schemas.common import HealthResponse


router = APIRouter(prefix="/health")

logger = get_logger("health")


async def db_healthcheck() -> bool:
    """Check database health."""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database healthcheck failed: {e}")
        return False


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the API and its weight store.",
)
async def health_check() -> HealthResponse:
    """
    Evaluations keep working without the database (fallback state), so a
    failed database check reports ``degraded`` rather than ``unhealthy``.
    """
    checks = {"database": await db_healthcheck()}

    return HealthResponse(
        status="healthy" if all(checks.values()) else "degraded",
        version=settings.app_version,
        timestamp=datetime.now(UTC),
        checks=checks,
    )


@router.get("/live", summary="Liveness check")
async def liveness_check() -> dict:
    return {"status": "alive"}
