"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status.
Used by Docker healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from artisan_escrow import __version__
from artisan_escrow.infrastructure.database.engine import _get_engine
from artisan_escrow.infrastructure.redis_client import is_redis_initialized, ping_redis
from artisan_escrow.logging_config import get_logger
from artisan_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to the database and Redis."""
    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    if not is_redis_initialized():
        redis_status = "not configured"
    elif await ping_redis():
        redis_status = "healthy"
    else:
        redis_status = "unhealthy"
        logger.error("health.redis_check_failed")

    overall = "ok" if db_status == "healthy" and redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        redis=redis_status,
    )
