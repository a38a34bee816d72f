"""
Tenant-isolated data access.
"""

from .repository import BranchRepository, BranchScope, resolve_branch

__all__ = [
    "BranchRepository",
    "BranchScope",
    "resolve_branch",
]
