"""
Order Models: Order, OrderItem, RemovedItem, OrderRefund.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import AuditMixin, Base, BigIntPK, Money


class Order(AuditMixin, Base):
    """
    A customer order.

    Amounts are Decimal dollars. total_refunded never exceeds total_amount.
    Orders are never hard-deleted; cancellation and rejection are statuses.
    """

    __tablename__ = "customer_order"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    order_number: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    source: Mapped[str] = mapped_column(Text, nullable=False)  # web, qr_code, phone, uber_eats, ...
    order_type: Mapped[str] = mapped_column(Text, nullable=False, default="takeaway")

    customer_name: Mapped[Optional[str]] = mapped_column(Text)
    customer_email: Mapped[Optional[str]] = mapped_column(Text)
    customer_phone: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Pricing
    items_subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    gst_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    qst_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # Payment
    payment_method: Mapped[str] = mapped_column(Text, nullable=False)  # online, cash, card
    payment_status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    payment_intent_id: Mapped[Optional[str]] = mapped_column(Text)

    # Refund bookkeeping
    total_refunded: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    refund_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_refund_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Idempotency key of the compensating refund issued on rejection
    rejection_refund_key: Mapped[Optional[str]] = mapped_column(Text, unique=True)

    # Timing
    individual_timing_adjustment: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date)
    scheduled_time: Mapped[Optional[str]] = mapped_column(Text)  # "HH:MM"
    preparing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", order_by="OrderItem.id"
    )
    refunds: Mapped[list["OrderRefund"]] = relationship(
        back_populates="order", order_by="OrderRefund.id"
    )
    removed_items: Mapped[list["RemovedItem"]] = relationship(
        back_populates="order", order_by="RemovedItem.id"
    )

    __table_args__ = (
        Index("ix_order_branch_status", "branch_id", "status"),
        Index("ix_order_branch_created", "branch_id", "created_at"),
        CheckConstraint("total_refunded <= total_amount", name="chk_order_refund_le_total"),
        CheckConstraint("total_refunded >= 0", name="chk_order_refund_non_negative"),
    )

    @property
    def refundable_amount(self) -> Decimal:
        """Amount still refundable on this order."""
        return Decimal(self.total_amount or 0) - Decimal(self.total_refunded or 0)

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, number='{self.order_number}', status='{self.status}')>"


class OrderItem(AuditMixin, Base):
    """
    A line of an order. Name, price and options are snapshots taken when
    the order was placed so later menu edits don't rewrite history.
    """

    __tablename__ = "order_item"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer_order.id"), nullable=False, index=True
    )
    menu_item_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("menu_item.id"), index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    refunded_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    variants: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    modifiers: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_order_item_qty_positive"),
        CheckConstraint(
            "refunded_quantity >= 0 AND refunded_quantity <= quantity",
            name="chk_order_item_refunded_qty",
        ),
    )

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - (self.refunded_quantity or 0)

    def __repr__(self) -> str:
        return f"<OrderItem(id={self.id}, name='{self.name}', qty={self.quantity})>"


class RemovedItem(Base):
    """
    Append-only log of order line edits made before payment.
    """

    __tablename__ = "removed_item"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer_order.id"), nullable=False, index=True
    )
    order_item_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    item_name: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # quantity delta (absolute)
    reason: Mapped[str] = mapped_column(Text, nullable=False)  # removed, quantity_increased, quantity_decreased
    removed_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    removed_by_email: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    order: Mapped["Order"] = relationship(back_populates="removed_items")


class OrderRefund(AuditMixin, Base):
    """
    A refund of an order payment. Online refunds carry the processor ids;
    counter refunds (cash, card) have none.
    idempotency_key is unique, so a replayed request can never record twice.
    """

    __tablename__ = "order_refund"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chain.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer_order.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    items_subtotal: Mapped[Optional[Decimal]] = mapped_column(Money)
    gst_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    qst_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    mode: Mapped[str] = mapped_column(Text, nullable=False)  # items, custom, rejection
    # [{"order_item_id": 1, "quantity": 2}, ...]
    refunded_items: Mapped[list[dict[str, int]]] = mapped_column(JSON, default=list, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    payment_method: Mapped[str] = mapped_column(Text, default="online", nullable=False)  # online, cash, card
    processor_refund_id: Mapped[Optional[str]] = mapped_column(Text)
    processor_status: Mapped[Optional[str]] = mapped_column(Text)

    order: Mapped["Order"] = relationship(back_populates="refunds")

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_order_refund_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<OrderRefund(id={self.id}, order_id={self.order_id}, amount={self.amount})>"
