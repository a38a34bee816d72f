"""
Utilities module: Exceptions, validators, currency helpers.
"""

from shared.utils.exceptions import (
    NotFoundError,
    ForbiddenError,
    ValidationError,
    ConflictError,
)
from shared.utils.validators import (
    parse_hhmm,
    escape_like_pattern,
    validate_quantity,
)
from shared.utils.money import round_money, to_cents, to_decimal

__all__ = [
    # exceptions
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "ConflictError",
    # validators
    "parse_hhmm",
    "escape_like_pattern",
    "validate_quantity",
    # money
    "round_money",
    "to_cents",
    "to_decimal",
]
