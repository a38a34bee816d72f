"""
Order Domain Service.

Order lifecycle:
    scheduled -> preparing -> ready -> completed
    scheduled / preparing -> rejected (compensating refund when paid online)
    ready -> cancelled

Also handles kitchen timing adjustments, the auto-complete sweep and
item edits made before payment.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from rest_api.models import Branch, MenuItem, Order, OrderItem, OrderRefund, RemovedItem
from rest_api.services.audit import log_change
from rest_api.services.crud.repository import BranchRepository, BranchScope, resolve_branch
from rest_api.services.jobs import JobQueue, OrderConfirmationPayload, OrderStatusUpdatePayload
from rest_api.services.payments import PaymentGateway
from rest_api.services.permissions import Operations, Principal, authorize
from shared.config.constants import (
    ORDER_TRANSITIONS,
    AuditAction,
    JobTypes,
    Limits,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RemovedItemReason,
)
from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.utils.clock import ensure_utc, utcnow
from shared.utils.exceptions import (
    AppException,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    OperationFailedError,
    OrderNotFoundError,
    ValidationError,
)
from shared.utils.money import CENT, ZERO, round_money, to_decimal
from shared.utils.schemas import (
    AutoCompleteEntry,
    AutoCompleteReport,
    CreateOrderRequest,
    EditItemsRequest,
)
from shared.utils.validators import parse_hhmm

from .refund_service import RefundService, rejection_refund_key

logger = get_logger(__name__)

STATUS_TIMESTAMPS = {
    OrderStatus.PREPARING: "preparing_started_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.REJECTED: "rejected_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


@dataclass
class RejectionOutcome:
    """Result of a reject: the refund is attempted after the rejection commits."""
    order: Order
    refund: Optional[OrderRefund] = None
    refund_error: Optional[str] = None


def compute_totals(subtotal: Decimal) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    """(subtotal, gst, qst, total) at the configured Quebec tax rates."""
    subtotal = round_money(subtotal)
    gst = round_money(subtotal * to_decimal(settings.gst_rate))
    qst = round_money(subtotal * to_decimal(settings.qst_rate))
    return subtotal, gst, qst, round_money(subtotal + gst + qst)


def check_supplied_totals(request: CreateOrderRequest, computed: Sequence[Decimal]) -> None:
    """
    Totals sent by the client are only a cross-check of the menu prices;
    each one given must agree with the server's figure to the cent.
    """
    fields = ("items_subtotal", "gst_amount", "qst_amount", "total_amount")
    for name, expected in zip(fields, computed):
        supplied = getattr(request, name)
        if supplied is not None and abs(to_decimal(supplied) - expected) > CENT:
            raise ValidationError(
                f"{name} does not match the order items (expected {expected})",
                field=name,
                supplied=str(supplied),
            )


def auto_complete_target(order: Order, branch: Branch) -> Optional[datetime]:
    """When a preparing order is due: start + base delays + the order's own adjustment."""
    started = ensure_utc(order.preparing_started_at)
    if started is None:
        return None
    minutes = (
        (branch.base_delay or 0)
        + (branch.temporary_base_delay or 0)
        + (order.individual_timing_adjustment or 0)
    )
    return started + timedelta(minutes=minutes)


def _needs_rejection_refund(order: Order) -> bool:
    return (
        order.payment_method == PaymentMethod.ONLINE
        and order.payment_status in PaymentStatus.REFUNDABLE
        and bool(order.payment_intent_id)
        and order.refundable_amount > 0
    )


class OrderService:
    """
    Domain service for orders.

    Job queue and payment gateway are injected so tests can use fakes.
    """

    def __init__(self, db: Session, jobs: JobQueue, payments: PaymentGateway):
        self._db = db
        self._jobs = jobs
        self._payments = payments
        self._orders = BranchRepository(Order, db)

    # =========================================================================
    # Queries
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

    def get_order(self, principal: Principal, order_id: int) -> Order:
        authorize(principal, Operations.ORDERS_READ)
        return self._load_order(principal, order_id)

    def list_orders(
        self,
        principal: Principal,
        branch_id: Optional[int] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
    ) -> tuple[Sequence[Order], int]:
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.ORDERS_READ, branch_id=branch.id)
        if status is not None and status not in OrderStatus.ALL:
            raise ValidationError(f"Unknown order status: {status}")

        query = self._orders.scoped_select(BranchScope.for_principal(principal), branch.id)
        if status is not None:
            query = query.where(Order.status == status)
        total = self._orders.count(query)
        items = self._db.scalars(
            query.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return items, total

    # =========================================================================
    # Creation (public channels)
    # =========================================================================

    def create_order(self, branch_id: int, request: CreateOrderRequest) -> Order:
        """
        Place an order from the web menu or a table QR code.

        Pre-orders start `scheduled`; everything else goes straight to the
        kitchen as `preparing`. Totals are always computed from the menu
        prices. Online orders start `pending` and are marked paid once the
        processor reports the payment intent succeeded.
        """
        branch = self._db.scalar(
            select(Branch).where(Branch.id == branch_id, Branch.is_active.is_(True))
        )
        if branch is None:
            raise NotFoundError("Branch", branch_id)

        if request.source not in OrderSource.PUBLIC:
            raise ValidationError(f"Orders from '{request.source}' cannot be placed here")

        if (request.scheduled_date is None) != (request.scheduled_time is None):
            raise ValidationError("scheduled_date and scheduled_time must be given together")
        if request.scheduled_time is not None:
            parse_hhmm(request.scheduled_time, "scheduled_time")

        if request.payment_method == PaymentMethod.ONLINE and not request.payment_intent_id:
            raise ValidationError("Online payments require a payment_intent_id")

        menu_ids = {line.menu_item_id for line in request.items}
        menu_items = {
            item.id: item
            for item in self._db.scalars(
                select(MenuItem).where(
                    MenuItem.id.in_(menu_ids),
                    MenuItem.branch_id == branch.id,
                    MenuItem.is_active.is_(True),
                    MenuItem.is_available.is_(True),
                )
            )
        }
        missing = sorted(menu_ids - menu_items.keys())
        if missing:
            raise ValidationError(
                f"Menu items not available: {', '.join(str(i) for i in missing)}",
                branch_id=branch.id,
            )

        now = utcnow()
        lines = []
        subtotal = ZERO
        for line in request.items:
            menu_item = menu_items[line.menu_item_id]
            subtotal += to_decimal(menu_item.price) * line.quantity
            lines.append(
                OrderItem(
                    menu_item_id=menu_item.id,
                    name=menu_item.name,
                    unit_price=menu_item.price,
                    quantity=line.quantity,
                    variants=line.variants,
                    modifiers=line.modifiers,
                    notes=line.notes,
                )
            )

        items_subtotal, gst, qst, total = compute_totals(subtotal)
        check_supplied_totals(request, (items_subtotal, gst, qst, total))

        is_preorder = request.scheduled_date is not None
        order = Order(
            chain_id=branch.chain_id,
            branch_id=branch.id,
            order_number=f"{now:%y%m%d}-{secrets.token_hex(3).upper()}",
            status=OrderStatus.SCHEDULED if is_preorder else OrderStatus.PREPARING,
            source=request.source,
            order_type=request.order_type,
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            customer_phone=request.customer_phone,
            notes=request.notes,
            items_subtotal=items_subtotal,
            gst_amount=gst,
            qst_amount=qst,
            total_amount=total,
            payment_method=request.payment_method,
            payment_status=PaymentStatus.PENDING,
            payment_intent_id=request.payment_intent_id,
            scheduled_date=request.scheduled_date,
            scheduled_time=request.scheduled_time,
            preparing_started_at=None if is_preorder else now,
            items=lines,
        )
        self._db.add(order)

        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("create the order", branch_id=branch.id) from e
        self._db.refresh(order)

        logger.info(
            "Order created",
            order_id=order.id,
            order_number=order.order_number,
            branch_id=branch.id,
            status=order.status,
            source=order.source,
        )

        if order.payment_method == PaymentMethod.ONLINE:
            try:
                self._confirm_payment(order)
            except AppException as e:
                # Stays pending until confirm_payment succeeds
                logger.warning("Online payment not confirmed yet", order_id=order.id, error=e.detail)

        if order.customer_email:
            self._jobs.enqueue_best_effort(
                JobTypes.SEND_ORDER_CONFIRMATION,
                OrderConfirmationPayload(
                    order_id=order.id,
                    order_number=order.order_number,
                    customer_email=order.customer_email,
                    customer_name=order.customer_name,
                    restaurant_name=branch.name,
                    total_amount=str(round_money(order.total_amount)),
                    items=[
                        {"name": item.name, "quantity": item.quantity, "unit_price": str(round_money(item.unit_price))}
                        for item in order.items
                    ],
                ),
            )
        return order

    # =========================================================================
    # Online payment confirmation
    # =========================================================================

    def _confirm_payment(self, order: Order) -> bool:
        """
        Mark the order paid when its payment intent succeeded for at least
        the order total. Returns False while the payment is still open.
        """
        try:
            intent = self._payments.retrieve_payment(order.payment_intent_id)
        except AppException:
            self._db.rollback()
            raise

        if not intent.succeeded:
            self._db.rollback()
            return False
        if intent.amount_received < round_money(order.total_amount):
            self._db.rollback()
            raise ConflictError(
                "Payment amount does not cover the order total",
                order_id=order.id,
                payment_intent_id=order.payment_intent_id,
                amount_received=str(intent.amount_received),
            )

        order.payment_status = PaymentStatus.SUCCEEDED
        log_change(
            self._db,
            chain_id=order.chain_id,
            branch_id=order.branch_id,
            user_id=None,
            user_email=None,
            entity_type="order",
            entity_id=order.id,
            action=AuditAction.STATUS_CHANGE,
            old_values={"payment_status": PaymentStatus.PENDING},
            new_values={"payment_status": PaymentStatus.SUCCEEDED},
            reason="payment confirmed",
        )
        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("confirm the payment", order_id=order.id) from e
        self._db.refresh(order)

        logger.info("Online payment confirmed", order_id=order.id, payment_intent_id=order.payment_intent_id)
        return True

    def confirm_payment(self, branch_id: int, order_id: int) -> Order:
        """
        Check an online order's payment with the processor.

        Safe to call repeatedly; an order already paid is returned as is.

        Raises:
            ValidationError: not an online order
            ConflictError: the order was cancelled or rejected, or the
                captured amount is below the total
        """
        order = self._db.scalar(
            select(Order)
            .where(Order.id == order_id, Order.branch_id == branch_id, Order.is_active.is_(True))
            .options(selectinload(Order.items))
            .with_for_update()
        )
        if order is None:
            raise OrderNotFoundError(order_id, branch_id=branch_id)
        if order.payment_method != PaymentMethod.ONLINE:
            self._db.rollback()
            raise ValidationError("Only online payments are confirmed with the processor", order_id=order.id)
        if order.payment_status != PaymentStatus.PENDING:
            self._db.rollback()
            return order
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REJECTED):
            self._db.rollback()
            raise ConflictError(f"Order is {order.status}; its payment cannot be confirmed", order_id=order.id)

        self._confirm_payment(order)
        return order

    # =========================================================================
    # Status transitions
    # =========================================================================

    def _apply_status(self, order: Order, to_status: str, now: datetime) -> None:
        order.status = to_status
        setattr(order, STATUS_TIMESTAMPS[to_status], now)
        if to_status == OrderStatus.REJECTED and _needs_rejection_refund(order):
            # Persisted with the rejection; the refund reuses it as its processor key
            order.rejection_refund_key = rejection_refund_key(order.id)

    def _transition(
        self,
        principal: Principal,
        order_id: int,
        to_status: str,
        reason: Optional[str] = None,
    ) -> Order:
        authorize(principal, Operations.ORDERS_UPDATE_STATUS)
        order = self._load_order(principal, order_id, for_update=True)

        from_status = order.status
        if to_status not in ORDER_TRANSITIONS.get(from_status, []):
            self._db.rollback()
            raise InvalidTransitionError(
                "order", from_status, to_status, order_id=order.id, user_id=principal.user_id
            )

        self._apply_status(order, to_status, utcnow())
        order.set_updated_by(principal.user_id, principal.email)
        log_change(
            self._db,
            chain_id=order.chain_id,
            branch_id=order.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="order",
            entity_id=order.id,
            action=AuditAction.STATUS_CHANGE,
            old_values={"status": from_status},
            new_values={"status": to_status},
            reason=reason,
        )

        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError(f"move the order to {to_status}", order_id=order.id) from e
        self._db.refresh(order)

        logger.info(
            "Order status changed",
            order_id=order.id,
            from_status=from_status,
            to_status=to_status,
            user_id=principal.user_id,
        )
        self._notify_status(order)
        return order

    def _notify_status(self, order: Order) -> None:
        """Customer status email; skipped when the queue is down."""
        if not order.customer_email:
            return
        branch = self._db.get(Branch, order.branch_id)
        self._jobs.enqueue_best_effort(
            JobTypes.SEND_ORDER_STATUS_UPDATE,
            OrderStatusUpdatePayload(
                order_id=order.id,
                order_number=order.order_number,
                customer_email=order.customer_email,
                customer_name=order.customer_name,
                restaurant_name=branch.name if branch else "",
                status=order.status,
            ),
        )

    def start_preparing(self, principal: Principal, order_id: int) -> Order:
        return self._transition(principal, order_id, OrderStatus.PREPARING)

    def mark_ready(self, principal: Principal, order_id: int) -> Order:
        return self._transition(principal, order_id, OrderStatus.READY)

    def complete(self, principal: Principal, order_id: int) -> Order:
        return self._transition(principal, order_id, OrderStatus.COMPLETED)

    def cancel(self, principal: Principal, order_id: int, reason: Optional[str] = None) -> Order:
        return self._transition(principal, order_id, OrderStatus.CANCELLED, reason=reason)

    def reject(self, principal: Principal, order_id: int, reason: Optional[str] = None) -> RejectionOutcome:
        """
        Reject the order, then refund it in full when it was paid online.

        The rejection is committed first and stays even if the refund fails;
        the failure is returned in refund_error.
        """
        order = self._transition(principal, order_id, OrderStatus.REJECTED, reason=reason)
        outcome = RejectionOutcome(order=order)
        if not order.rejection_refund_key:
            return outcome

        try:
            outcome.refund = RefundService(self._db, self._payments).refund_rejected_order(principal, order.id)
        except AppException as e:
            outcome.refund_error = e.detail
            logger.error(
                "Compensating refund failed for rejected order",
                order_id=order.id,
                idempotency_key=order.rejection_refund_key,
                error=e.detail,
            )
        self._db.refresh(order)
        return outcome

    # =========================================================================
    # Timing
    # =========================================================================

    def adjust_timing(self, principal: Principal, order_id: int, minutes: int) -> Order:
        """
        Shift a preparing order's due time.

        Both the delta and the resulting cumulative adjustment must stay
        within the configured bounds.
        """
        authorize(principal, Operations.ORDERS_ADJUST_TIMING)
        low = settings.timing_adjustment_min_minutes
        high = settings.timing_adjustment_max_minutes
        if minutes == 0 or not low <= minutes <= high:
            raise ValidationError(
                f"Adjustment must be a non-zero number of minutes between {low} and {high}",
                minutes=minutes,
            )

        order = self._load_order(principal, order_id, for_update=True)
        if order.status != OrderStatus.PREPARING:
            self._db.rollback()
            raise ConflictError(
                "Timing can only be adjusted for orders in preparation",
                order_id=order.id,
                status=order.status,
            )

        previous = order.individual_timing_adjustment or 0
        adjusted = previous + minutes
        if not low <= adjusted <= high:
            self._db.rollback()
            raise ValidationError(
                f"Total adjustment must stay between {low} and {high} minutes (currently {previous})",
                order_id=order.id,
                requested=minutes,
            )

        order.individual_timing_adjustment = adjusted
        order.set_updated_by(principal.user_id, principal.email)
        log_change(
            self._db,
            chain_id=order.chain_id,
            branch_id=order.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="order",
            entity_id=order.id,
            action=AuditAction.UPDATE,
            old_values={"individual_timing_adjustment": previous},
            new_values={"individual_timing_adjustment": adjusted},
        )
        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("adjust the order timing", order_id=order.id) from e
        self._db.refresh(order)
        return order

    def auto_complete_due_orders(
        self,
        branch_id: Optional[int] = None,
        now: Optional[datetime] = None,
        principal: Optional[Principal] = None,
    ) -> AutoCompleteReport:
        """
        Complete preparing orders whose timer ran out.

        Runs from the maintenance scheduler (no principal) or on demand by
        branch staff. Only branches with auto_ready enabled are swept, and
        phone or marketplace orders are always left for staff.
        """
        now = now or utcnow()
        if principal is not None:
            branch = resolve_branch(self._db, principal, branch_id)
            authorize(principal, Operations.ORDERS_AUTO_COMPLETE, branch_id=branch.id)
        else:
            branch = self._db.get(Branch, branch_id)
            if branch is None or not branch.is_active:
                raise NotFoundError("Branch", branch_id)

        report = AutoCompleteReport(branch_id=branch.id, enabled=bool(branch.auto_ready), checked_at=now)
        if not branch.auto_ready:
            return report

        grace = timedelta(seconds=settings.auto_complete_grace_seconds)
        orders = self._db.scalars(
            select(Order)
            .where(
                Order.chain_id == branch.chain_id,
                Order.branch_id == branch.id,
                Order.status == OrderStatus.PREPARING,
                Order.is_active.is_(True),
            )
            .order_by(Order.id)
            .with_for_update(skip_locked=True)
        ).all()

        completed: list[Order] = []
        for order in orders:
            target = auto_complete_target(order, branch)
            entry = AutoCompleteEntry(
                order_id=order.id,
                order_number=order.order_number,
                target_at=target,
                completed=False,
            )
            if order.source in OrderSource.MANUAL_COMPLETION:
                entry.skipped_reason = "manual_completion_source"
            elif target is None:
                entry.skipped_reason = "not_started"
            elif now < target + grace:
                entry.skipped_reason = "not_due"
            else:
                self._apply_status(order, OrderStatus.COMPLETED, now)
                order.set_updated_by(principal.user_id if principal else None, principal.email if principal else None)
                log_change(
                    self._db,
                    chain_id=order.chain_id,
                    branch_id=order.branch_id,
                    user_id=principal.user_id if principal else None,
                    user_email=principal.email if principal else None,
                    entity_type="order",
                    entity_id=order.id,
                    action=AuditAction.STATUS_CHANGE,
                    old_values={"status": OrderStatus.PREPARING},
                    new_values={"status": OrderStatus.COMPLETED},
                    reason="auto-complete",
                )
                entry.completed = True
                completed.append(order)
            report.orders.append(entry)

        if not completed:
            self._db.rollback()
            return report

        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("auto-complete orders", branch_id=branch.id) from e

        report.completed_count = len(completed)
        logger.info(
            "Auto-completed orders",
            branch_id=branch.id,
            completed=[order.id for order in completed],
        )
        for order in completed:
            self._notify_status(order)
        return report

    # =========================================================================
    # Pre-payment item edits
    # =========================================================================

    def edit_items(self, principal: Principal, order_id: int, request: EditItemsRequest) -> Order:
        """
        Remove lines or change quantities before the order is paid.

        Each change is logged as a RemovedItem row and totals are
        recomputed at the configured tax rates.
        """
        authorize(principal, Operations.ORDERS_EDIT_ITEMS)
        order = self._load_order(principal, order_id, for_update=True)

        if order.payment_status != PaymentStatus.PENDING or order.status in OrderStatus.TERMINAL:
            self._db.rollback()
            raise ConflictError(
                "Items can only be edited on unpaid, active orders",
                order_id=order.id,
                status=order.status,
                payment_status=order.payment_status,
            )

        items_by_id = {item.id: item for item in order.items}
        new_quantities: dict[int, int] = {}
        for edit in request.edits:
            if edit.order_item_id not in items_by_id:
                self._db.rollback()
                raise ValidationError(
                    f"Item {edit.order_item_id} does not belong to order {order.id}",
                    order_id=order.id,
                )
            if edit.order_item_id in new_quantities:
                self._db.rollback()
                raise ValidationError(f"Item {edit.order_item_id} is edited more than once")
            new_quantities[edit.order_item_id] = edit.quantity

        remaining = [
            item for item in order.items if new_quantities.get(item.id, item.quantity) > 0
        ]
        if not remaining:
            self._db.rollback()
            raise ValidationError("An order must keep at least one item", order_id=order.id)

        old_totals = {
            "items_subtotal": str(order.items_subtotal),
            "total_amount": str(order.total_amount),
        }
        now = utcnow()
        subtotal = ZERO
        for item in list(order.items):
            new_quantity = new_quantities.get(item.id, item.quantity)
            if new_quantity != item.quantity:
                if new_quantity == 0:
                    reason, delta = RemovedItemReason.REMOVED, item.quantity
                elif new_quantity > item.quantity:
                    reason, delta = RemovedItemReason.QUANTITY_INCREASED, new_quantity - item.quantity
                else:
                    reason, delta = RemovedItemReason.QUANTITY_DECREASED, item.quantity - new_quantity
                self._db.add(
                    RemovedItem(
                        order_id=order.id,
                        order_item_id=item.id,
                        item_name=item.name,
                        unit_price=item.unit_price,
                        quantity=delta,
                        reason=reason,
                        removed_by_id=principal.user_id,
                        removed_by_email=principal.email,
                        created_at=now,
                    )
                )
                if new_quantity == 0:
                    self._db.delete(item)
                    continue
                item.quantity = new_quantity
                item.set_updated_by(principal.user_id, principal.email)
            subtotal += to_decimal(item.unit_price) * item.quantity

        order.items_subtotal, order.gst_amount, order.qst_amount, order.total_amount = compute_totals(subtotal)
        order.set_updated_by(principal.user_id, principal.email)
        log_change(
            self._db,
            chain_id=order.chain_id,
            branch_id=order.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="order",
            entity_id=order.id,
            action=AuditAction.UPDATE,
            old_values=old_totals,
            new_values={
                "items_subtotal": str(order.items_subtotal),
                "total_amount": str(order.total_amount),
            },
            reason="items edited",
        )

        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("edit the order items", order_id=order.id) from e
        self._db.expire(order)
        return self._load_order(principal, order.id)
