"""
Daily Closing Model (Quebec FER - end-of-day fiscal report).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import AuditMixin, Base, BigIntPK, Money


class DailyClosing(AuditMixin, Base):
    """
    End-of-day closing for a branch.

    draft -> completed (submitted to WEB-SRM, irreversible)
    draft -> cancelled (reason recorded in the audit log)

    At most one non-cancelled closing per (branch, closing_date), enforced
    by the partial unique index below.
    """

    __tablename__ = "daily_closing"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    closing_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft")

    # Summary (frozen on completion)
    total_sales: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_refunds: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    net_sales: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gst_collected: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    qst_collected: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    cash_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    card_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    online_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_by: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("app_user.id"))
    completed_by: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("app_user.id"))
    cancelled_by: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("app_user.id"))

    websrm_transaction_id: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_daily_closing_branch_date", "branch_id", "closing_date"),
        Index(
            "uq_daily_closing_active_branch_date",
            "branch_id",
            "closing_date",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<DailyClosing(id={self.id}, branch_id={self.branch_id}, date={self.closing_date}, status='{self.status}')>"
