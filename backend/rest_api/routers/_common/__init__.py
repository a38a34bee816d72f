"""
Common utilities shared across routers.
"""

from .deps import current_principal
from .pagination import Pagination, get_pagination

__all__ = [
    "current_principal",
    "Pagination",
    "get_pagination",
]
