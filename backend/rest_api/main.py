"""
REST API main application.
Entry point for the FastAPI REST server.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from rest_api.core import configure_cors, lifespan, register_middlewares
from rest_api.routers.auth import router as auth_router
from rest_api.routers.closing import router as closing_router
from rest_api.routers.jobs import router as jobs_router
from rest_api.routers.orders import router as orders_router
from rest_api.routers.presets import router as presets_router
from rest_api.routers.public import health_router, menu_router
from rest_api.routers.refunds import router as refunds_router
from shared.config.logging import rest_api_logger as logger
from shared.config.settings import settings
from shared.infrastructure.correlation import CorrelationIdMiddleware, get_request_id
from shared.security.rate_limit import limiter, rate_limit_exceeded_handler


app = FastAPI(
    title="Vizion Menu REST API",
    description="Multi-tenant restaurant ordering backend",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything that is not an HTTPException becomes a generic 500."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "request_id": get_request_id() or None},
    )


register_middlewares(app)
configure_cors(app)
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(health_router)
app.include_router(menu_router)
app.include_router(auth_router)
app.include_router(orders_router)
app.include_router(refunds_router)
app.include_router(closing_router)
app.include_router(presets_router)
app.include_router(jobs_router)


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rest_api.main:app",
        host="0.0.0.0",
        port=settings.rest_api_port,
        reload=settings.debug,
    )
