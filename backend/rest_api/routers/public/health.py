"""
Liveness and dependency health.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from rest_api.services.payments.circuit_breaker import get_all_breaker_stats
from shared.config.settings import settings
from shared.infrastructure.db import SessionLocal
from shared.infrastructure.redis_pool import get_redis_sync_client
from shared.utils.health import HealthStatus, check_dependencies


router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health")
def health():
    """Liveness only; no dependency is touched."""
    return {"status": HealthStatus.HEALTHY.value, "service": "rest-api", "environment": settings.environment}


def ping_database() -> None:
    with SessionLocal() as db:
        db.execute(text("SELECT 1"))


def ping_redis() -> None:
    get_redis_sync_client().ping()


@router.get("/health/detailed")
async def detailed_health():
    """Database, Redis and circuit breakers; 503 when a dependency is down."""
    report = await check_dependencies({"database": ping_database, "redis": ping_redis})
    body = {
        "service": "rest-api",
        "environment": settings.environment,
        "status": report["status"],
        "dependencies": report["components"],
        "circuit_breakers": get_all_breaker_stats(),
    }
    if report["status"] != HealthStatus.HEALTHY.value:
        return JSONResponse(content=body, status_code=503)
    return body
