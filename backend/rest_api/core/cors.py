"""
CORS for the two browser clients: the staff dashboard and the customer
web-ordering site.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import settings

LOCAL_CLIENT_PORTS = (3000, 3001, 5173)  # dashboard, web ordering, vite

REQUEST_HEADERS = [
    "Accept",
    "Authorization",
    "Content-Type",
    "Idempotency-Key",
    "X-Request-ID",
]


def get_cors_origins() -> list[str]:
    """ALLOWED_ORIGINS (comma separated) or, when unset, the local dev servers."""
    configured = [origin.strip() for origin in settings.allowed_origins.split(",") if origin.strip()]
    if configured:
        return configured
    return [f"http://{host}:{port}" for port in LOCAL_CLIENT_PORTS for host in ("localhost", "127.0.0.1")]


def configure_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=REQUEST_HEADERS,
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=0 if settings.environment == "development" else 600,
    )
