"""
Menu Models: MenuCategory, MenuItem, MenuPreset.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import AuditMixin, Base, BigIntPK, Money


class MenuCategory(AuditMixin, Base):
    """A section of a branch menu (Starters, Mains, ...)."""

    __tablename__ = "menu_category"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    items: Mapped[list["MenuItem"]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<MenuCategory(id={self.id}, name='{self.name}', branch_id={self.branch_id})>"


class MenuItem(AuditMixin, Base):
    """A sellable menu item."""

    __tablename__ = "menu_item"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("menu_category.id"), index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Optional["MenuCategory"]] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<MenuItem(id={self.id}, name='{self.name}', price={self.price})>"


class MenuPreset(AuditMixin, Base):
    """
    A saved menu configuration that can be applied manually or on a schedule.

    schedule_type:
    - one_time: applied between scheduled_start and scheduled_end (absolute UTC)
    - daily: applied every day between daily_start_time and daily_end_time
      ("HH:MM", branch local time)

    Only one preset per branch has is_applied=True.
    """

    __tablename__ = "menu_preset"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # {"categories": [...], "items": [...]} snapshot of the captured menu
    menu_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    selected_category_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    selected_item_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)

    schedule_type: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    scheduled_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    daily_start_time: Mapped[Optional[str]] = mapped_column(Text)
    daily_end_time: Mapped[Optional[str]] = mapped_column(Text)
    auto_apply: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_applied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Set on apply, cleared once the third-party menu sync job is queued
    menu_sync_pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("branch_id", "name", name="uq_menu_preset_branch_name"),
        Index("ix_menu_preset_branch_applied", "branch_id", "is_applied"),
    )

    def __repr__(self) -> str:
        return f"<MenuPreset(id={self.id}, name='{self.name}', applied={self.is_applied})>"
