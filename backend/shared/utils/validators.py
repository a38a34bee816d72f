"""
Shared validators for request input.
"""

import re
from datetime import time

from shared.config.constants import Limits
from shared.utils.exceptions import ValidationError

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str, field: str = "time") -> time:
    """
    Parse a wall-clock "HH:MM" string (24h).

    Raises:
        ValidationError: If the value is not a valid HH:MM time.
    """
    match = HHMM_PATTERN.match(value or "")
    if not match:
        raise ValidationError(f"{field} must use HH:MM format", field=field, value=value)
    return time(int(match.group(1)), int(match.group(2)))


def validate_quantity(quantity: int, field: str = "quantity") -> int:
    """Validate an order line quantity against Limits."""
    if quantity < Limits.MIN_QUANTITY or quantity > Limits.MAX_QUANTITY:
        raise ValidationError(
            f"{field} must be between {Limits.MIN_QUANTITY} and {Limits.MAX_QUANTITY}",
            field=field,
            value=quantity,
        )
    return quantity


def escape_like_pattern(value: str) -> str:
    """Escape %, _ and \\ for use in a SQL LIKE pattern."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
