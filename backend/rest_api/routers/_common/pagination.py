"""
page/limit query parameters for list endpoints.

    @router.get("/orders")
    def list_orders(pagination: Pagination = Depends(get_pagination), ...):
        items, total = service.list_orders(principal, page=pagination.page, limit=pagination.limit)
        return pagination.page_of(items, total)
"""

from dataclasses import dataclass
from typing import Any, Sequence

from fastapi import Query

from shared.config.constants import Limits


@dataclass
class Pagination:
    page: int
    limit: int

    def __post_init__(self):
        self.page = max(1, self.page)
        self.limit = min(max(1, self.limit), Limits.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def page_of(self, items: Sequence[Any], total: int) -> dict[str, Any]:
        """Body for a Page[...] response model."""
        return {"items": list(items), "total": total, "page": self.page, "limit": self.limit}


def get_pagination(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=Limits.DEFAULT_PAGE_SIZE, ge=1, le=Limits.MAX_PAGE_SIZE),
) -> Pagination:
    return Pagination(page=page, limit=limit)
