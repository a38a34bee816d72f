"""
Role-based access control.

Usage:
    from rest_api.services.permissions import Principal, Operations, authorize

    authorize(principal, Operations.REFUNDS_PROCESS, branch_id=order.branch_id)
"""

from .context import Principal
from .operations import OPERATION_ROLES, Operations, authorize

__all__ = [
    "Principal",
    "Operations",
    "OPERATION_ROLES",
    "authorize",
]
