"""
Refund Domain Service.

Item-based and custom-amount refunds, plus the compensating full refund
issued when an order is rejected. Online payments are refunded through
the payment processor; cash and card payments taken at the counter are
refunded by staff and only recorded here.

Invariants kept here:
- total_refunded never exceeds total_amount
- refunded_quantity never exceeds quantity
- a processor failure leaves no local change
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from rest_api.models import Order, OrderRefund
from rest_api.services.audit import log_change
from rest_api.services.crud.repository import BranchRepository, BranchScope, resolve_branch
from rest_api.services.payments import PaymentGateway, RefundResult
from rest_api.services.permissions import Operations, Principal, authorize
from shared.config.constants import (
    AuditAction,
    Limits,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundMode,
    RefundReason,
)
from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.utils.clock import ensure_utc, utcnow
from shared.utils.exceptions import (
    ConflictError,
    OperationFailedError,
    OrderNotFoundError,
    RefundNotAllowedError,
    ValidationError,
)
from shared.utils.money import ZERO, round_money, to_decimal
from shared.utils.schemas import (
    RefundAnalytics,
    RefundableItem,
    RefundEligibility,
    RefundItemSelection,
    RefundRequest,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemRefundBreakdown:
    """Amounts of an item-based refund, before capping."""
    items_subtotal: Decimal
    gst_amount: Decimal
    qst_amount: Decimal
    amount: Decimal
    refunded_items: list[dict[str, int]]


def calculate_item_refund(order: Order, selections: Sequence[RefundItemSelection]) -> ItemRefundBreakdown:
    """
    Refund for a set of order lines.

    Taxes are prorated on the share of the item subtotal being refunded:
    gst = round(gst_amount * ratio), qst = round(qst_amount * ratio).

    Raises:
        ValidationError: unknown line, duplicate line, or quantity above
            what is still refundable on that line.
    """
    items_by_id = {item.id: item for item in order.items}
    seen: set[int] = set()
    subtotal = ZERO
    refunded_items: list[dict[str, int]] = []

    for selection in selections:
        item = items_by_id.get(selection.order_item_id)
        if item is None:
            raise ValidationError(
                f"Item {selection.order_item_id} does not belong to order {order.id}",
                order_id=order.id,
            )
        if item.id in seen:
            raise ValidationError(f"Item {item.id} is selected more than once", order_id=order.id)
        seen.add(item.id)

        if selection.quantity < 1 or selection.quantity > item.refundable_quantity:
            raise ValidationError(
                f"Quantity for '{item.name}' must be between 1 and {item.refundable_quantity}",
                order_id=order.id,
                order_item_id=item.id,
                requested=selection.quantity,
            )

        subtotal += to_decimal(item.unit_price) * selection.quantity
        refunded_items.append({"order_item_id": item.id, "quantity": selection.quantity})

    subtotal = round_money(subtotal)
    order_subtotal = to_decimal(order.items_subtotal)
    ratio = subtotal / order_subtotal if order_subtotal > 0 else Decimal(0)
    gst = round_money(to_decimal(order.gst_amount) * ratio)
    qst = round_money(to_decimal(order.qst_amount) * ratio)

    return ItemRefundBreakdown(
        items_subtotal=subtotal,
        gst_amount=gst,
        qst_amount=qst,
        amount=round_money(subtotal + gst + qst),
        refunded_items=refunded_items,
    )


def rejection_refund_key(order_id: int) -> str:
    return f"order-{order_id}-rejection"


def counter_payment_collected(order: Order) -> bool:
    """Cash and card orders are paid at pickup; a completed order has been paid."""
    if order.payment_status in PaymentStatus.CAPTURED:
        return True
    return order.payment_status == PaymentStatus.PENDING and order.status == OrderStatus.COMPLETED


class RefundService:
    """
    Domain service for refunds.

    The payment gateway is injected so tests can record calls.
    """

    def __init__(self, db: Session, payments: PaymentGateway):
        self._db = db
        self._payments = payments
        self._orders = BranchRepository(Order, db)
        self._refunds = BranchRepository(OrderRefund, db)

    # =========================================================================
    # Eligibility
    # =========================================================================

    def _load_order(self, principal: Principal, order_id: int, for_update: bool = False) -> Order:
        order = self._orders.find_in_scope(
            order_id,
            BranchScope.for_principal(principal),
            options=[selectinload(Order.items)],
            for_update=for_update,
        )
        if order is None:
            raise OrderNotFoundError(order_id, chain_id=principal.chain_id)
        return order

    def refund_deadline(self, order: Order) -> datetime:
        return ensure_utc(order.created_at) + timedelta(days=settings.refund_window_days)

    def eligibility_problem(self, order: Order, now: Optional[datetime] = None) -> Optional[str]:
        """Why the order can't be refunded, or None when it can."""
        now = now or utcnow()
        if order.payment_method in PaymentMethod.COUNTER:
            if not counter_payment_collected(order):
                return f"the {order.payment_method} payment has not been collected"
        elif order.payment_status not in PaymentStatus.REFUNDABLE:
            return f"payment status is '{order.payment_status}'"
        elif not order.payment_intent_id:
            return "the online payment has no payment intent"
        if now > self.refund_deadline(order):
            return f"the {settings.refund_window_days}-day refund window has expired"
        if order.refundable_amount <= 0:
            return "the order is already fully refunded"
        return None

    def check_eligibility(
        self, principal: Principal, order_id: int, now: Optional[datetime] = None
    ) -> RefundEligibility:
        authorize(principal, Operations.REFUNDS_READ)
        order = self._load_order(principal, order_id)
        problem = self.eligibility_problem(order, now)

        return RefundEligibility(
            order_id=order.id,
            eligible=problem is None,
            reason=problem,
            refundable_amount=round_money(order.refundable_amount),
            refund_deadline=self.refund_deadline(order),
            items=[
                RefundableItem(
                    order_item_id=item.id,
                    name=item.name,
                    unit_price=round_money(item.unit_price),
                    quantity=item.quantity,
                    refunded_quantity=item.refunded_quantity,
                    refundable_quantity=item.refundable_quantity,
                )
                for item in order.items
            ],
        )

    # =========================================================================
    # Processing
    # =========================================================================

    def process_refund(
        self,
        principal: Principal,
        order_id: int,
        request: RefundRequest,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderRefund:
        """
        Refund part or all of an order's payment.

        Online payments go through the processor. Cash and card payments
        are handed back at the counter, so the refund is only recorded.
        A replayed idempotency key returns the refund already recorded for
        the same order.

        Raises:
            ValidationError: bad reason, both/neither mode, bad amount or items
            ConflictError: the idempotency key belongs to another order
            RefundNotAllowedError: order not eligible
            PaymentProcessorError: processor failure (no local change)
        """
        authorize(principal, Operations.REFUNDS_PROCESS)

        if request.reason not in RefundReason.ALL:
            raise ValidationError(
                f"Refund reason must be one of: {', '.join(RefundReason.ALL)}",
                reason=request.reason,
            )
        has_items = bool(request.items)
        has_amount = request.amount is not None
        if has_items == has_amount:
            raise ValidationError("Provide either items or a custom amount, not both")

        if idempotency_key:
            existing = self._db.scalar(
                select(OrderRefund).where(
                    OrderRefund.idempotency_key == idempotency_key,
                    OrderRefund.chain_id == principal.chain_id,
                )
            )
            if existing is not None and existing.order_id != order_id:
                raise ConflictError(
                    "Idempotency key was already used for another order",
                    order_id=order_id,
                    idempotency_key=idempotency_key,
                )
            if existing is not None and not BranchScope.for_principal(principal).allows(existing.branch_id):
                raise OrderNotFoundError(order_id, chain_id=principal.chain_id)
            if existing is not None:
                logger.info("Refund replayed", refund_id=existing.id, idempotency_key=idempotency_key)
                return existing

        order = self._load_order(principal, order_id, for_update=True)
        problem = self.eligibility_problem(order, now)
        if problem:
            raise RefundNotAllowedError(order.id, problem)

        refundable = round_money(order.refundable_amount)
        breakdown: Optional[ItemRefundBreakdown] = None
        if has_items:
            breakdown = calculate_item_refund(order, request.items)
            amount = min(breakdown.amount, refundable)
            mode = RefundMode.ITEMS
        else:
            amount = round_money(request.amount)
            if amount <= 0 or amount > refundable:
                raise ValidationError(
                    f"Refund amount must be greater than 0 and at most {refundable}",
                    order_id=order.id,
                    amount=str(amount),
                )
            mode = RefundMode.CUSTOM

        key = idempotency_key or f"order-{order.id}-refund-{uuid.uuid4().hex}"
        result: Optional[RefundResult] = None
        if order.payment_method not in PaymentMethod.COUNTER:
            result = self._call_processor(order, amount, request.reason, key, principal)

        refund = self._record_refund(
            principal,
            order,
            amount=amount,
            reason=request.reason,
            mode=mode,
            key=key,
            result=result,
            breakdown=breakdown,
            now=now,
        )
        logger.info(
            "Refund processed",
            order_id=order.id,
            refund_id=refund.id,
            amount=str(amount),
            mode=mode,
            payment_method=order.payment_method,
            user_id=principal.user_id,
        )
        return refund

    def refund_rejected_order(self, principal: Principal, order_id: int) -> Optional[OrderRefund]:
        """
        Issue the compensating full refund for a rejected order.

        The key stored on the order at rejection time is sent to the
        processor, so concurrent or repeated calls produce one refund.
        Returns None when the order needs no refund.
        """
        order = self._load_order(principal, order_id, for_update=True)
        key = order.rejection_refund_key
        if not key:
            self._db.rollback()
            return None

        existing = self._db.scalar(select(OrderRefund).where(OrderRefund.idempotency_key == key))
        if existing is not None:
            self._db.rollback()
            return existing

        amount = round_money(order.refundable_amount)
        if amount <= 0:
            self._db.rollback()
            return None

        result = self._call_processor(order, amount, RefundReason.REQUESTED_BY_CUSTOMER, key, principal)
        return self._record_refund(
            principal,
            order,
            amount=amount,
            reason=RefundReason.REQUESTED_BY_CUSTOMER,
            mode=RefundMode.REJECTION,
            key=key,
            result=result,
        )

    def _call_processor(
        self, order: Order, amount: Decimal, reason: str, key: str, principal: Principal
    ) -> RefundResult:
        try:
            return self._payments.refund(
                payment_intent_id=order.payment_intent_id,
                amount=amount,
                reason=reason,
                idempotency_key=key,
                metadata={
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "branch_id": str(order.branch_id),
                    "initiated_by": str(principal.user_id),
                },
            )
        except Exception:
            # Release the row lock; nothing was written
            self._db.rollback()
            raise

    def _record_refund(
        self,
        principal: Principal,
        order: Order,
        *,
        amount: Decimal,
        reason: str,
        mode: str,
        key: str,
        result: Optional[RefundResult],
        breakdown: Optional[ItemRefundBreakdown] = None,
        now: Optional[datetime] = None,
    ) -> OrderRefund:
        now = now or utcnow()
        old_values = {
            "total_refunded": str(order.total_refunded),
            "payment_status": order.payment_status,
        }

        if breakdown is not None:
            quantities = {entry["order_item_id"]: entry["quantity"] for entry in breakdown.refunded_items}
            for item in order.items:
                if item.id in quantities:
                    item.refunded_quantity += quantities[item.id]
                    item.set_updated_by(principal.user_id, principal.email)

        order.total_refunded = round_money(to_decimal(order.total_refunded) + amount)
        order.refund_count = (order.refund_count or 0) + 1
        order.last_refund_at = now
        order.payment_status = (
            PaymentStatus.REFUNDED
            if order.total_refunded >= round_money(order.total_amount)
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        order.set_updated_by(principal.user_id, principal.email)

        refund = OrderRefund(
            chain_id=order.chain_id,
            branch_id=order.branch_id,
            order_id=order.id,
            amount=amount,
            items_subtotal=breakdown.items_subtotal if breakdown else None,
            gst_amount=breakdown.gst_amount if breakdown else None,
            qst_amount=breakdown.qst_amount if breakdown else None,
            reason=reason,
            mode=mode,
            refunded_items=breakdown.refunded_items if breakdown else [],
            idempotency_key=key,
            payment_method=order.payment_method,
            processor_refund_id=result.refund_id if result else None,
            processor_status=result.status if result else None,
        )
        refund.set_created_by(principal.user_id, principal.email)
        self._db.add(refund)
        self._db.flush()

        log_change(
            self._db,
            chain_id=order.chain_id,
            branch_id=order.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="order",
            entity_id=order.id,
            action=AuditAction.REFUND,
            old_values=old_values,
            new_values={
                "total_refunded": str(order.total_refunded),
                "payment_status": order.payment_status,
                "refund_id": refund.id,
                "amount": str(amount),
                "mode": mode,
                "payment_method": order.payment_method,
            },
        )

        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            if result is not None:
                # The processor already refunded; retrying with the same key is safe
                logger.critical(
                    "Refund succeeded at processor but was not recorded",
                    order_id=order.id,
                    idempotency_key=key,
                    processor_refund_id=result.refund_id,
                    error=str(e),
                )
            raise OperationFailedError("record the refund", order_id=order.id) from e

        self._db.refresh(refund)
        return refund

    # =========================================================================
    # History and reporting
    # =========================================================================

    def list_order_refunds(self, principal: Principal, order_id: int) -> Sequence[OrderRefund]:
        authorize(principal, Operations.REFUNDS_READ)
        order = self._load_order(principal, order_id)
        return list(order.refunds)

    def list_refunds(
        self,
        principal: Principal,
        branch_id: Optional[int] = None,
        page: int = 1,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
    ) -> tuple[Sequence[OrderRefund], int]:
        """Refund history of one branch, newest first."""
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.REFUNDS_READ, branch_id=branch.id)

        query = self._refunds.scoped_select(BranchScope.for_principal(principal), branch.id)
        total = self._refunds.count(query)
        items = self._db.scalars(
            query.order_by(OrderRefund.created_at.desc(), OrderRefund.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return items, total

    def get_analytics(
        self,
        principal: Principal,
        branch_id: Optional[int] = None,
        days: int = Limits.DEFAULT_ANALYTICS_DAYS,
        now: Optional[datetime] = None,
    ) -> RefundAnalytics:
        """Refund totals over the last N days."""
        if days < 1 or days > Limits.MAX_ANALYTICS_DAYS:
            raise ValidationError(f"days must be between 1 and {Limits.MAX_ANALYTICS_DAYS}")
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.REFUNDS_READ, branch_id=branch.id)

        since = (now or utcnow()) - timedelta(days=days)
        rows = self._db.execute(
            select(OrderRefund.reason, func.count(OrderRefund.id), func.sum(OrderRefund.amount))
            .where(
                OrderRefund.chain_id == principal.chain_id,
                OrderRefund.branch_id == branch.id,
                OrderRefund.is_active.is_(True),
                OrderRefund.created_at >= since,
            )
            .group_by(OrderRefund.reason)
        ).all()

        by_reason = {reason: round_money(total or 0) for reason, _, total in rows}
        count = sum(row[1] for row in rows)
        total = round_money(sum(by_reason.values(), ZERO))
        average = round_money(total / count) if count else ZERO

        return RefundAnalytics(
            branch_id=branch.id,
            days=days,
            total_refunded=total,
            refund_count=count,
            average_refund=average,
            by_reason=by_reason,
        )

    def list_eligible_orders(
        self,
        principal: Principal,
        branch_id: Optional[int] = None,
        page: int = 1,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        now: Optional[datetime] = None,
    ) -> tuple[Sequence[Order], int]:
        """Paid orders still inside the refund window with money left to refund."""
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.REFUNDS_READ, branch_id=branch.id)

        since = (now or utcnow()) - timedelta(days=settings.refund_window_days)
        query = (
            self._orders.scoped_select(BranchScope.for_principal(principal), branch.id)
            .where(
                or_(
                    and_(
                        Order.payment_method == PaymentMethod.ONLINE,
                        Order.payment_intent_id.is_not(None),
                        Order.payment_status.in_(PaymentStatus.REFUNDABLE),
                    ),
                    and_(
                        Order.payment_method.in_(PaymentMethod.COUNTER),
                        or_(
                            Order.payment_status.in_(PaymentStatus.REFUNDABLE),
                            and_(
                                Order.payment_status == PaymentStatus.PENDING,
                                Order.status == OrderStatus.COMPLETED,
                            ),
                        ),
                    ),
                ),
                Order.total_refunded < Order.total_amount,
                Order.created_at >= since,
            )
        )
        total = self._orders.count(query)
        items = self._db.scalars(
            query.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return items, total
