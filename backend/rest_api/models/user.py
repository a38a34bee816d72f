"""
User and Authentication Models.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .tenant import Branch


class User(AuditMixin, Base):
    """
    A staff member. Their role is held per branch in BranchUser.
    """

    __tablename__ = "app_user"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    password: Mapped[str] = mapped_column(Text, nullable=False)  # bcrypt hash
    full_name: Mapped[Optional[str]] = mapped_column(Text)

    branch_roles: Mapped[list["BranchUser"]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class BranchUser(AuditMixin, Base):
    """
    Role assignment of a user in a branch.
    A chain owner has a row for their home branch and sees all chain branches.
    """

    __tablename__ = "branch_user"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(Text, nullable=False)  # chain_owner, branch_manager, ...

    user: Mapped["User"] = relationship(back_populates="branch_roles")
    branch: Mapped["Branch"] = relationship(back_populates="branch_users")

    __table_args__ = (
        UniqueConstraint("user_id", "branch_id", name="uq_branch_user"),
    )

    def __repr__(self) -> str:
        return f"<BranchUser(user_id={self.user_id}, branch_id={self.branch_id}, role='{self.role}')>"
