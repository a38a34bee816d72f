"""
Request correlation ids.

Each request gets an id (the caller's X-Request-ID when it looks sane, a
fresh one otherwise). It is echoed in the response, stamped on every log
line and copied into the envelope of every job the request enqueues.
"""

import re
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"

# Ids end up in logs and in Redis; no control characters or oversized values
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Current request id, empty outside a request."""
    return request_id_var.get()


def accept_request_id(candidate: str | None) -> str:
    if candidate and _SAFE_REQUEST_ID.match(candidate):
        return candidate
    return uuid.uuid4().hex


class CorrelationIdMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = accept_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_var.set(request_id)
        try:
            request.state.request_id = request_id
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class CorrelationIdFilter:
    """Logging filter; sets `record.request_id` ("-" outside a request)."""

    def filter(self, record) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True
