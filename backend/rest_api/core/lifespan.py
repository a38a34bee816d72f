"""
Startup and shutdown of the REST API process.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from rest_api.models import Base
from rest_api.services.scheduler import start_scheduler, stop_scheduler
from shared.config.logging import rest_api_logger as logger, setup_logging
from shared.config.settings import settings
from shared.infrastructure.db import engine
from shared.infrastructure.redis_pool import close_redis_sync_client


def check_configuration() -> None:
    """
    Log configuration problems; refuse to start production with any.

    Raises:
        RuntimeError: production with weak secrets.
    """
    problems = settings.validate_production_secrets()
    for problem in problems:
        logger.error("Configuration error", error=problem)
    if problems and settings.environment == "production":
        raise RuntimeError("Refusing to start: " + "; ".join(problems))

    if not settings.websrm_enabled:
        logger.warning("WEB-SRM submission disabled, closings get DRYRUN transaction ids")
    if not settings.stripe_secret_key:
        logger.warning("Stripe is not configured, refunds of paid orders will fail")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    check_configuration()
    logger.info("Starting REST API", port=settings.rest_api_port, env=settings.environment)

    Base.metadata.create_all(bind=engine)

    if settings.scheduler_enabled:
        await start_scheduler()
    try:
        yield
    finally:
        logger.info("Shutting down REST API")
        if settings.scheduler_enabled:
            await stop_scheduler()
        close_redis_sync_client()
