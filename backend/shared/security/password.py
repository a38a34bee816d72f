"""
Password hashing utilities using bcrypt.
"""

import bcrypt

from shared.config.logging import get_logger

logger = get_logger(__name__)

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Returns:
        Hashed password string (includes salt and algorithm info), e.g. "$2b$12$...".
    """
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its bcrypt hash.

    Non-bcrypt hashes never match.
    """
    if not hashed_password.startswith(("$2a$", "$2b$", "$2y$")):
        logger.warning("SECURITY: non-bcrypt password hash rejected")
        return False

    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
