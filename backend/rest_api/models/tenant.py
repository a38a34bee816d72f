"""
Multi-Tenancy Models: Chain and Branch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .user import BranchUser


class Chain(AuditMixin, Base):
    """
    A restaurant chain (top-level tenant).
    Every branch-scoped row carries its chain_id for isolation.
    """

    __tablename__ = "chain"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, unique=True, nullable=False)

    branches: Mapped[list["Branch"]] = relationship(back_populates="chain")

    def __repr__(self) -> str:
        return f"<Chain(id={self.id}, name='{self.name}', slug='{self.slug}')>"


class Branch(AuditMixin, Base):
    """
    A physical restaurant location.

    Holds the kitchen timing settings used for prep-time targets and the
    tax registration numbers reported to WEB-SRM.
    """

    __tablename__ = "branch"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(Text)
    timezone: Mapped[str] = mapped_column(Text, default="America/Toronto", nullable=False)

    # Kitchen timing (minutes)
    base_delay: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    temporary_base_delay: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delivery_delay: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    temporary_delivery_delay: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    auto_ready: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Tax registration (GST/HST and QST numbers)
    gst_number: Mapped[Optional[str]] = mapped_column(Text)
    qst_number: Mapped[Optional[str]] = mapped_column(Text)

    chain: Mapped["Chain"] = relationship(back_populates="branches")
    branch_users: Mapped[list["BranchUser"]] = relationship(back_populates="branch")

    __table_args__ = (
        UniqueConstraint("chain_id", "slug", name="uq_branch_chain_slug"),
    )

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, name='{self.name}', chain_id={self.chain_id})>"
