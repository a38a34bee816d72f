"""
Permission Context - the authenticated caller, passed explicitly to services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from shared.config.constants import ROLE_HIERARCHY, ROLE_PERMISSIONS, Roles


@dataclass(frozen=True)
class Principal:
    """
    Immutable identity of the caller, built from verified JWT claims.

    Every service operation takes a Principal instead of reading a
    request-global user.

    Usage:
        principal = Principal.from_claims(claims)
        if principal.has_permission("orders:write"):
            ...
    """

    user_id: int
    email: str
    chain_id: int
    branch_id: int | None
    role: str
    permissions: tuple[str, ...] = field(default_factory=tuple)
    branch_name: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Principal":
        role = claims["role"]
        permissions = claims.get("permissions") or ROLE_PERMISSIONS.get(role, [])
        branch_id = claims.get("branch_id")
        return cls(
            user_id=int(claims["sub"]),
            email=claims.get("email", ""),
            chain_id=int(claims["chain_id"]),
            branch_id=int(branch_id) if branch_id is not None else None,
            role=role,
            permissions=tuple(permissions),
            branch_name=claims.get("branch_name"),
        )

    def to_claims(self) -> dict[str, Any]:
        """JWT payload for this principal (sign with shared.security.auth.sign_jwt)."""
        return {
            "sub": str(self.user_id),
            "email": self.email,
            "chain_id": self.chain_id,
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "role": self.role,
            "permissions": list(self.permissions),
        }

    @property
    def is_chain_owner(self) -> bool:
        return self.role == Roles.CHAIN_OWNER

    @property
    def level(self) -> int:
        """Position in the role hierarchy (higher = more privilege)."""
        return ROLE_HIERARCHY.get(self.role, -1)

    def has_permission(self, permission: str) -> bool:
        return "*" in self.permissions or permission in self.permissions
