"""
JWT access tokens for branch staff.

Claims: sub (user id as string), email, chain_id, branch_id, branch_name,
role and permissions, plus the registered iss/aud/iat/exp/jti and a
`type` of "access".
"""

import time
import uuid
from typing import Any

import jwt
from fastapi import Header

from shared.config.constants import Roles
from shared.config.logging import get_logger
from shared.config.settings import JWT_AUDIENCE, JWT_ISSUER, JWT_SECRET, settings
from shared.utils.exceptions import UnauthorizedError

logger = get_logger(__name__)

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ("sub", "chain_id", "role")


def sign_jwt(payload: dict[str, Any], ttl_seconds: int | None = None, token_type: str = "access") -> str:
    if ttl_seconds is None:
        ttl_seconds = settings.jwt_access_token_expire_minutes * 60
    issued_at = int(time.time())
    claims = {
        **payload,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
        "type": token_type,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=ALGORITHM)


def verify_jwt(token: str) -> dict[str, Any]:
    """
    Decode an access token and check the claims the permission layer relies on.

    Raises:
        UnauthorizedError: bad signature, expired, wrong type, or a missing or
            malformed sub/chain_id/role claim.
    """
    try:
        claims = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("JWT rejected", error=str(e))
        raise UnauthorizedError("Invalid token")

    missing = [name for name in REQUIRED_CLAIMS if name not in claims]
    if missing:
        raise UnauthorizedError(f"Invalid token: missing {missing[0]} claim")
    if claims.get("type") != "access":
        raise UnauthorizedError("Invalid token: not an access token")
    if not str(claims["sub"]).isdigit() or not isinstance(claims["chain_id"], int):
        raise UnauthorizedError("Invalid token: malformed identity claims")
    if claims["role"] not in Roles.ALL:
        raise UnauthorizedError("Invalid token: unknown role")
    return claims


def get_bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")
    if scheme != "Bearer" or not token.strip():
        raise UnauthorizedError("Expected Authorization: Bearer <token>")
    return token.strip()


def current_user_context(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    """FastAPI dependency: verified claims of the caller."""
    return verify_jwt(get_bearer_token(authorization))
