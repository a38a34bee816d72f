"""
Tenant-isolated data access.

Branch-owned rows (orders, refunds, closings, presets) are only reachable
through a BranchScope, which always filters on chain_id and, for everyone
but chain owners, on the caller's branch.

Usage:
    orders = BranchRepository(Order, db)
    order = orders.find_in_scope(order_id, BranchScope.for_principal(principal), for_update=True)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from rest_api.models import Base, Branch
from shared.utils.exceptions import BranchAccessError, NotFoundError

if TYPE_CHECKING:
    from rest_api.services.permissions import Principal

ModelT = TypeVar("ModelT", bound=Base)


@dataclass(frozen=True)
class BranchScope:
    """Branches a caller may see; `branch_ids=None` is the whole chain."""

    chain_id: int
    branch_ids: frozenset[int] | None

    @classmethod
    def for_principal(cls, principal: "Principal") -> "BranchScope":
        if principal.is_chain_owner:
            return cls(principal.chain_id, None)
        own = frozenset() if principal.branch_id is None else frozenset({principal.branch_id})
        return cls(principal.chain_id, own)

    def allows(self, branch_id: int) -> bool:
        return self.branch_ids is None or branch_id in self.branch_ids


class BranchRepository(Generic[ModelT]):
    """Queries over a model with `chain_id` and `branch_id` columns."""

    def __init__(self, model: type[ModelT], session: Session):
        for column in ("chain_id", "branch_id"):
            if not hasattr(model, column):
                raise AttributeError(f"{model.__name__} has no {column} column")
        self._model = model
        self._session = session

    def _active(self, query: Select, include_inactive: bool = False) -> Select:
        if hasattr(self._model, "is_active") and not include_inactive:
            query = query.where(self._model.is_active.is_(True))
        return query

    def scoped_select(self, scope: BranchScope, branch_id: int | None = None) -> Select:
        """Active rows of the scope, narrowed to one branch when given."""
        query = select(self._model).where(self._model.chain_id == scope.chain_id)
        if scope.branch_ids is not None:
            query = query.where(self._model.branch_id.in_(scope.branch_ids))
        if branch_id is not None:
            query = query.where(self._model.branch_id == branch_id)
        return self._active(query)

    def find_in_scope(
        self,
        entity_id: int,
        scope: BranchScope,
        *,
        options: list[Any] | None = None,
        include_inactive: bool = False,
        for_update: bool = False,
    ) -> ModelT | None:
        """The row, or None when it is missing or outside the scope."""
        query = select(self._model).where(
            self._model.id == entity_id, self._model.chain_id == scope.chain_id
        )
        if scope.branch_ids is not None:
            query = query.where(self._model.branch_id.in_(scope.branch_ids))
        query = self._active(query, include_inactive)
        if options:
            query = query.options(*options)
        if for_update:
            query = query.with_for_update()
        return self._session.scalar(query)

    def find_by_branch(
        self,
        branch_id: int,
        scope: BranchScope,
        *,
        order_by: Any | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Sequence[ModelT]:
        query = self.scoped_select(scope, branch_id)
        if order_by is not None:
            query = query.order_by(order_by)
        return self._session.scalars(query.offset(offset).limit(limit)).all()

    def count(self, query: Select) -> int:
        counted = select(func.count()).select_from(query.order_by(None).subquery())
        return self._session.scalar(counted) or 0


def resolve_branch(db: Session, principal: "Principal", branch_id: int | None = None) -> Branch:
    """
    The branch an operation targets.

    Non-owners act on their own branch; naming another one is a 403. Chain
    owners may name any branch of their chain; another chain's branch is a 404.
    """
    target_id = principal.branch_id if branch_id is None else branch_id
    if target_id is None:
        raise NotFoundError("Branch")
    if not BranchScope.for_principal(principal).allows(target_id):
        raise BranchAccessError(target_id, user_id=principal.user_id)

    branch = db.scalar(
        select(Branch).where(
            Branch.id == target_id,
            Branch.chain_id == principal.chain_id,
            Branch.is_active.is_(True),
        )
    )
    if branch is None:
        raise NotFoundError("Branch", target_id, chain_id=principal.chain_id)
    return branch
