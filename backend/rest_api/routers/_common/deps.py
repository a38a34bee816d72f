"""
Request dependencies shared by the authenticated routers.
"""

from typing import Any

from fastapi import Depends

from rest_api.services.permissions import Principal
from shared.security.auth import current_user_context


def current_principal(claims: dict[str, Any] = Depends(current_user_context)) -> Principal:
    """
    FastAPI dependency: the caller as a Principal.

    Usage:
        @router.get("/orders")
        def list_orders(principal: Principal = Depends(current_principal)):
            ...
    """
    return Principal.from_claims(claims)
