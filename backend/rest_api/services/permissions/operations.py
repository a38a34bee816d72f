"""
Operation authorization table.

Each service operation has a name and the set of roles allowed to run it.
The check runs before the service touches any data.

Usage:
    authorize(principal, Operations.CLOSING_CANCEL, branch_id=branch.id)
"""

from typing import Final

from shared.config.constants import ALL_BRANCH_ROLES, MANAGEMENT_ROLES, Roles
from shared.config.logging import get_logger
from shared.utils.exceptions import BranchAccessError, InsufficientRoleError

from .context import Principal

logger = get_logger(__name__)


class Operations:
    """Operation names checked by authorize()."""

    ORDERS_READ: Final[str] = "orders.read"
    ORDERS_UPDATE_STATUS: Final[str] = "orders.update_status"
    ORDERS_ADJUST_TIMING: Final[str] = "orders.adjust_timing"
    ORDERS_EDIT_ITEMS: Final[str] = "orders.edit_items"
    ORDERS_AUTO_COMPLETE: Final[str] = "orders.auto_complete"

    REFUNDS_READ: Final[str] = "refunds.read"
    REFUNDS_PROCESS: Final[str] = "refunds.process"

    CLOSING_READ: Final[str] = "daily_closing.read"
    CLOSING_START: Final[str] = "daily_closing.start"
    CLOSING_COMPLETE: Final[str] = "daily_closing.complete"
    CLOSING_CANCEL: Final[str] = "daily_closing.cancel"

    PRESETS_READ: Final[str] = "menu_presets.read"
    PRESETS_WRITE: Final[str] = "menu_presets.write"
    PRESETS_APPLY: Final[str] = "menu_presets.apply"

    JOBS_STATS: Final[str] = "jobs.stats"


REPORT_ROLES: Final[frozenset[str]] = frozenset(
    {Roles.CHAIN_OWNER, Roles.BRANCH_MANAGER, Roles.BRANCH_STAFF}
)
REFUND_ROLES: Final[frozenset[str]] = frozenset(
    {Roles.CHAIN_OWNER, Roles.BRANCH_MANAGER, Roles.BRANCH_CASHIER}
)

OPERATION_ROLES: Final[dict[str, frozenset[str]]] = {
    Operations.ORDERS_READ: ALL_BRANCH_ROLES,
    Operations.ORDERS_UPDATE_STATUS: ALL_BRANCH_ROLES,
    Operations.ORDERS_ADJUST_TIMING: ALL_BRANCH_ROLES,
    Operations.ORDERS_EDIT_ITEMS: ALL_BRANCH_ROLES,
    Operations.ORDERS_AUTO_COMPLETE: ALL_BRANCH_ROLES,
    Operations.REFUNDS_READ: ALL_BRANCH_ROLES,
    Operations.REFUNDS_PROCESS: REFUND_ROLES,
    Operations.CLOSING_READ: REPORT_ROLES,
    Operations.CLOSING_START: MANAGEMENT_ROLES,
    Operations.CLOSING_COMPLETE: MANAGEMENT_ROLES,
    Operations.CLOSING_CANCEL: MANAGEMENT_ROLES,
    Operations.PRESETS_READ: ALL_BRANCH_ROLES,
    Operations.PRESETS_WRITE: MANAGEMENT_ROLES,
    Operations.PRESETS_APPLY: MANAGEMENT_ROLES,
    Operations.JOBS_STATS: MANAGEMENT_ROLES,
}


def authorize(principal: Principal, operation: str, branch_id: int | None = None) -> None:
    """
    Check that the principal may run the operation on the given branch.

    Chain owners pass every role check and may act on any branch of their
    chain (the branch itself is resolved chain-scoped by the caller).
    Unknown operations are denied.

    Raises:
        InsufficientRoleError: Role not allowed for the operation.
        BranchAccessError: Non-owner acting outside their branch.
    """
    allowed = OPERATION_ROLES.get(operation)
    if allowed is None:
        logger.error("Authorization requested for unknown operation", operation=operation)
        raise InsufficientRoleError([], operation=operation, user_id=principal.user_id)

    if principal.is_chain_owner:
        return

    if principal.role not in allowed:
        raise InsufficientRoleError(
            sorted(allowed),
            operation=operation,
            user_id=principal.user_id,
            role=principal.role,
        )

    if branch_id is not None and branch_id != principal.branch_id:
        raise BranchAccessError(branch_id, user_id=principal.user_id, operation=operation)
