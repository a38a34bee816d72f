"""
Security module: Authentication, password hashing, request signing, rate limiting.
"""

from shared.security.auth import (
    sign_jwt,
    verify_jwt,
    get_bearer_token,
    current_user_context,
)
from shared.security.password import hash_password, verify_password
from shared.security.request_signing import RequestSigner, canonical_json
from shared.security.rate_limit import limiter, rate_limit_exceeded_handler

__all__ = [
    # auth
    "sign_jwt",
    "verify_jwt",
    "get_bearer_token",
    "current_user_context",
    # password
    "hash_password",
    "verify_password",
    # signing
    "RequestSigner",
    "canonical_json",
    # rate limiting
    "limiter",
    "rate_limit_exceeded_handler",
]
