"""
Tests for OrderService: lifecycle, rejection refunds, timing, item edits
and the auto-complete sweep.
"""

import json
import re
from datetime import date, timedelta
from decimal import Decimal

import pytest
import redis
from sqlalchemy import select

from rest_api.models import AuditLog, Order, OrderRefund, RemovedItem
from rest_api.services.domain import OrderService
from shared.config.constants import (
    AuditAction,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RemovedItemReason,
)
from shared.utils.clock import utcnow
from shared.utils.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotFoundError,
    PaymentProcessorError,
    ValidationError,
)
from shared.utils.schemas import CreateOrderRequest, EditItemsRequest, ItemEdit, OrderItemInput


@pytest.fixture
def service(db_session, jobs, payments):
    return OrderService(db_session, jobs, payments)


def _pushed_jobs(redis_client):
    return [json.loads(call.args[1]) for call in redis_client.lpush.call_args_list]


class TestCreateOrder:
    """Orders placed from the public channels."""

    def test_cash_order_starts_preparing_with_computed_taxes(self, service, seed_branch, seed_menu):
        """Totals use GST 5% and QST 9.975%, rounded half-up to cents."""
        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="cash",
                items=[OrderItemInput(menu_item_id=seed_menu.burger.id, quantity=2)],
            ),
        )

        assert order.status == OrderStatus.PREPARING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.preparing_started_at is not None
        assert order.items_subtotal == Decimal("50.00")
        assert order.gst_amount == Decimal("2.50")
        assert order.qst_amount == Decimal("4.99")
        assert order.total_amount == Decimal("57.49")
        assert re.fullmatch(r"\d{6}-[0-9A-F]{6}", order.order_number)

    def test_online_order_requires_payment_intent(self, service, seed_branch, seed_menu):
        """Online payments must reference the captured payment."""
        with pytest.raises(ValidationError):
            service.create_order(
                seed_branch.id,
                CreateOrderRequest(
                    payment_method="online",
                    items=[OrderItemInput(menu_item_id=seed_menu.soda.id, quantity=1)],
                ),
            )

    def test_online_order_waits_for_its_payment(self, service, seed_branch, seed_menu):
        """An unverified payment intent leaves the order pending."""
        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="online",
                payment_intent_id="pi_abc",
                items=[OrderItemInput(menu_item_id=seed_menu.soda.id, quantity=1)],
            ),
        )
        assert order.payment_status == PaymentStatus.PENDING

    def test_online_order_is_paid_when_processor_agrees(self, service, payments, seed_branch, seed_menu):
        payments.mark_paid("pi_abc", "2.88")

        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="online",
                payment_intent_id="pi_abc",
                items=[OrderItemInput(menu_item_id=seed_menu.soda.id, quantity=1)],
            ),
        )
        assert order.payment_status == PaymentStatus.SUCCEEDED

    def test_short_payment_stays_pending(self, service, payments, seed_branch, seed_menu):
        """A payment below the computed total does not pay the order."""
        payments.mark_paid("pi_abc", "1.00")

        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="online",
                payment_intent_id="pi_abc",
                items=[OrderItemInput(menu_item_id=seed_menu.soda.id, quantity=1)],
            ),
        )
        assert order.payment_status == PaymentStatus.PENDING

    def test_processor_outage_keeps_the_order(self, service, payments, seed_branch, seed_menu):
        payments.error = PaymentProcessorError("timeout")

        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="online",
                payment_intent_id="pi_abc",
                items=[OrderItemInput(menu_item_id=seed_menu.soda.id, quantity=1)],
            ),
        )
        assert order.id is not None
        assert order.payment_status == PaymentStatus.PENDING

    def test_supplied_totals_must_match_the_items(self, db_session, service, seed_branch, seed_menu):
        """Client totals cannot lower the price."""
        with pytest.raises(ValidationError):
            service.create_order(
                seed_branch.id,
                CreateOrderRequest(
                    payment_method="cash",
                    items=[OrderItemInput(menu_item_id=seed_menu.burger.id, quantity=2)],
                    items_subtotal=Decimal("50.00"),
                    gst_amount=Decimal("2.50"),
                    qst_amount=Decimal("4.99"),
                    total_amount=Decimal("1.00"),
                ),
            )
        assert db_session.scalars(select(Order)).all() == []

    def test_supplied_totals_within_a_cent_are_accepted(self, service, seed_branch, seed_menu):
        """The stored totals are the computed ones."""
        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="cash",
                items=[OrderItemInput(menu_item_id=seed_menu.burger.id, quantity=2)],
                total_amount=Decimal("57.48"),
            ),
        )
        assert order.total_amount == Decimal("57.49")

    def test_preorder_starts_scheduled(self, service, seed_branch, seed_menu):
        """Orders with a pickup date wait in scheduled."""
        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="cash",
                scheduled_date=date.today() + timedelta(days=1),
                scheduled_time="12:30",
                items=[OrderItemInput(menu_item_id=seed_menu.fries.id, quantity=1)],
            ),
        )
        assert order.status == OrderStatus.SCHEDULED
        assert order.preparing_started_at is None

    def test_unavailable_item_is_rejected(self, db_session, service, seed_branch, seed_menu):
        """Items switched off on the live menu cannot be ordered."""
        seed_menu.soda.is_available = False
        db_session.commit()

        with pytest.raises(ValidationError):
            service.create_order(
                seed_branch.id,
                CreateOrderRequest(
                    payment_method="cash",
                    items=[OrderItemInput(menu_item_id=seed_menu.soda.id, quantity=1)],
                ),
            )

    def test_unknown_branch(self, service, seed_menu):
        """Ordering from a branch that does not exist is a 404."""
        with pytest.raises(NotFoundError):
            service.create_order(
                9999,
                CreateOrderRequest(
                    payment_method="cash",
                    items=[OrderItemInput(menu_item_id=seed_menu.soda.id, quantity=1)],
                ),
            )

    def test_confirmation_email_is_queued(self, service, redis_client, seed_branch, seed_menu):
        """A customer email triggers the confirmation job on the email queue."""
        order = service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="cash",
                customer_email="camille@client.ca",
                items=[OrderItemInput(menu_item_id=seed_menu.burger.id, quantity=1)],
            ),
        )

        redis_client.lpush.assert_called_once()
        key = redis_client.lpush.call_args.args[0]
        job = _pushed_jobs(redis_client)[0]
        assert key == "queue:email-queue:wait"
        assert job["name"] == "send-order-confirmation"
        assert job["data"]["order_id"] == order.id
        assert job["data"]["restaurant_name"] == seed_branch.name


class TestConfirmPayment:
    """Online orders become paid only once the processor says so."""

    @pytest.fixture
    def pending_order(self, service, seed_branch, seed_menu):
        return service.create_order(
            seed_branch.id,
            CreateOrderRequest(
                payment_method="online",
                payment_intent_id="pi_later",
                items=[OrderItemInput(menu_item_id=seed_menu.burger.id, quantity=2)],
            ),
        )

    def test_confirm_after_payment_succeeds(self, db_session, service, payments, seed_branch, pending_order):
        assert service.confirm_payment(seed_branch.id, pending_order.id).payment_status == PaymentStatus.PENDING

        payments.mark_paid("pi_later", "57.49")
        order = service.confirm_payment(seed_branch.id, pending_order.id)
        again = service.confirm_payment(seed_branch.id, pending_order.id)

        assert order.payment_status == PaymentStatus.SUCCEEDED
        assert again.payment_status == PaymentStatus.SUCCEEDED
        audits = db_session.scalars(
            select(AuditLog).where(AuditLog.entity_id == pending_order.id, AuditLog.reason == "payment confirmed")
        ).all()
        assert len(audits) == 1

    def test_pending_online_order_is_not_refundable(self, db_session, service, payments, staff, pending_order):
        """Rejecting an unpaid online order issues no refund."""
        outcome = service.reject(staff, pending_order.id)

        assert outcome.refund is None
        assert payments.calls == []
        assert db_session.scalars(select(OrderRefund)).all() == []

    def test_rejected_order_cannot_be_confirmed(self, service, payments, staff, seed_branch, pending_order):
        service.reject(staff, pending_order.id)
        payments.mark_paid("pi_later", "57.49")

        with pytest.raises(ConflictError):
            service.confirm_payment(seed_branch.id, pending_order.id)

    def test_cash_order_cannot_be_confirmed(self, service, seed_branch, seed_menu, order_factory):
        order = order_factory(seed_branch, [(seed_menu.burger, 1)], payment_method=PaymentMethod.CASH)

        with pytest.raises(ValidationError):
            service.confirm_payment(seed_branch.id, order.id)

    def test_other_branch_is_not_found(self, service, other_branch, pending_order):
        with pytest.raises(OrderNotFoundError):
            service.confirm_payment(other_branch.id, pending_order.id)


class TestOrderTransitions:
    """Status changes driven by branch staff."""

    def test_full_lifecycle(self, db_session, service, staff, seed_branch, seed_menu, order_factory):
        """preparing -> ready -> completed stamps each step and audits it."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)])

        service.mark_ready(staff, order.id)
        completed = service.complete(staff, order.id)

        assert completed.status == OrderStatus.COMPLETED
        assert completed.ready_at is not None
        assert completed.completed_at is not None

        audits = db_session.scalars(
            select(AuditLog).where(AuditLog.entity_type == "order", AuditLog.entity_id == order.id)
        ).all()
        assert [a.action for a in audits] == [AuditAction.STATUS_CHANGE, AuditAction.STATUS_CHANGE]

    def test_scheduled_order_cannot_skip_to_ready(self, service, staff, seed_branch, seed_menu, order_factory):
        """scheduled must go through preparing."""
        order = order_factory(seed_branch, [(seed_menu.fries, 1)], status=OrderStatus.SCHEDULED)

        with pytest.raises(InvalidTransitionError):
            service.mark_ready(staff, order.id)

        started = service.start_preparing(staff, order.id)
        assert started.status == OrderStatus.PREPARING
        assert started.preparing_started_at is not None

    def test_completed_is_terminal(self, service, staff, seed_branch, seed_menu, order_factory):
        """Nothing leaves completed."""
        order = order_factory(seed_branch, [(seed_menu.fries, 1)], status=OrderStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            service.cancel(staff, order.id)

    def test_cancel_ready_order_records_reason(self, db_session, service, manager, seed_branch, seed_menu, order_factory):
        """Cancellation is allowed once ready and keeps the reason."""
        order = order_factory(seed_branch, [(seed_menu.fries, 1)], status=OrderStatus.READY)

        cancelled = service.cancel(manager, order.id, reason="Customer never showed up")

        assert cancelled.status == OrderStatus.CANCELLED
        audit = db_session.scalar(select(AuditLog).where(AuditLog.entity_id == order.id))
        assert audit.reason == "Customer never showed up"

    def test_other_branch_order_is_not_found(self, service, other_manager, seed_branch, seed_menu, order_factory):
        """Orders of another branch are invisible to its staff."""
        order = order_factory(seed_branch, [(seed_menu.fries, 1)])

        with pytest.raises(OrderNotFoundError):
            service.mark_ready(other_manager, order.id)

    def test_status_email_is_best_effort(self, service, redis_client, staff, seed_branch, seed_menu, order_factory):
        """A Redis outage does not undo the status change."""
        redis_client.lpush.side_effect = redis.ConnectionError("down")
        order = order_factory(seed_branch, [(seed_menu.fries, 1)], customer_email="camille@client.ca")

        ready = service.mark_ready(staff, order.id)

        assert ready.status == OrderStatus.READY
        redis_client.lpush.assert_called_once()


class TestRejectOrder:
    """Rejection and its compensating refund."""

    def test_reject_paid_online_order_refunds_in_full(self, db_session, service, payments, staff, seed_branch, seed_menu, order_factory):
        """The full remaining amount is refunded under the rejection key."""
        order = order_factory(seed_branch, [(seed_menu.burger, 2)])

        outcome = service.reject(staff, order.id, reason="Kitchen closed")

        assert outcome.order.status == OrderStatus.REJECTED
        assert outcome.refund is not None
        assert outcome.refund_error is None
        assert outcome.refund.amount == order.total_amount
        assert outcome.order.payment_status == PaymentStatus.REFUNDED
        assert outcome.order.total_refunded == order.total_amount
        assert len(payments.calls) == 1
        assert payments.calls[0]["idempotency_key"] == f"order-{order.id}-rejection"
        assert payments.calls[0]["amount"] == Decimal("57.49")

    def test_reject_cash_order_has_no_refund(self, service, payments, staff, seed_branch, seed_menu, order_factory):
        """Nothing was captured, so nothing is refunded."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)], payment_method=PaymentMethod.CASH)

        outcome = service.reject(staff, order.id)

        assert outcome.order.status == OrderStatus.REJECTED
        assert outcome.refund is None
        assert outcome.order.rejection_refund_key is None
        assert payments.calls == []

    def test_refund_failure_keeps_rejection(self, db_session, service, payments, staff, seed_branch, seed_menu, order_factory):
        """The rejection stands; the error is reported and can be retried."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)])
        payments.error = PaymentProcessorError("card_declined")

        outcome = service.reject(staff, order.id)

        assert outcome.order.status == OrderStatus.REJECTED
        assert outcome.refund is None
        assert "card_declined" in outcome.refund_error
        assert outcome.order.payment_status == PaymentStatus.SUCCEEDED
        assert db_session.scalars(select(OrderRefund)).all() == []

    def test_cannot_start_preparing_after_reject(self, service, staff, seed_branch, seed_menu, order_factory):
        """Rejected is terminal."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)], status=OrderStatus.SCHEDULED)
        service.reject(staff, order.id)

        with pytest.raises(InvalidTransitionError):
            service.start_preparing(staff, order.id)

    def test_double_reject_refunds_once(self, db_session, service, payments, staff, seed_branch, seed_menu, order_factory):
        """A second reject is refused and no second refund is issued."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)])
        service.reject(staff, order.id)

        with pytest.raises(InvalidTransitionError):
            service.reject(staff, order.id)

        assert len(payments.calls) == 1
        assert len(db_session.scalars(select(OrderRefund)).all()) == 1


class TestAdjustTiming:
    """Per-order timing adjustments."""

    def test_adjustments_accumulate(self, service, staff, seed_branch, seed_menu, order_factory):
        """Successive deltas add up."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)], preparing_started_at=utcnow())

        service.adjust_timing(staff, order.id, 10)
        adjusted = service.adjust_timing(staff, order.id, -5)

        assert adjusted.individual_timing_adjustment == 5

    @pytest.mark.parametrize("minutes", [0, -31, 61])
    def test_delta_out_of_bounds(self, service, staff, seed_branch, seed_menu, order_factory, minutes):
        """Zero and out-of-range deltas are rejected."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)])

        with pytest.raises(ValidationError):
            service.adjust_timing(staff, order.id, minutes)

    def test_cumulative_total_is_bounded(self, service, staff, seed_branch, seed_menu, order_factory):
        """The running total cannot exceed 60 minutes."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)])
        service.adjust_timing(staff, order.id, 50)

        with pytest.raises(ValidationError):
            service.adjust_timing(staff, order.id, 20)

    def test_only_preparing_orders(self, service, staff, seed_branch, seed_menu, order_factory):
        """Ready orders have no timer left to adjust."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)], status=OrderStatus.READY)

        with pytest.raises(ConflictError):
            service.adjust_timing(staff, order.id, 5)


class TestEditItems:
    """Line edits on unpaid orders."""

    def test_edits_are_logged_and_totals_recomputed(self, db_session, service, cashier, seed_branch, seed_menu, order_factory):
        """Removed and resized lines land in the removed-items log."""
        order = order_factory(
            seed_branch,
            [(seed_menu.burger, 2), (seed_menu.fries, 1)],
            payment_method=PaymentMethod.CASH,
        )
        burger_line, fries_line = order.items

        edited = service.edit_items(
            cashier,
            order.id,
            EditItemsRequest(edits=[
                ItemEdit(order_item_id=fries_line.id, quantity=0),
                ItemEdit(order_item_id=burger_line.id, quantity=3),
            ]),
        )

        assert [item.quantity for item in edited.items] == [3]
        assert edited.items_subtotal == Decimal("75.00")
        assert edited.gst_amount == Decimal("3.75")
        assert edited.qst_amount == Decimal("7.48")
        assert edited.total_amount == Decimal("86.23")

        removed = db_session.scalars(select(RemovedItem).order_by(RemovedItem.id)).all()
        assert {(r.item_name, r.quantity, r.reason) for r in removed} == {
            ("Fries", 1, RemovedItemReason.REMOVED),
            ("Burger", 1, RemovedItemReason.QUANTITY_INCREASED),
        }
        assert all(r.removed_by_email == cashier.email for r in removed)

    def test_paid_orders_cannot_be_edited(self, service, cashier, seed_branch, seed_menu, order_factory):
        """Once the payment is captured the lines are frozen."""
        order = order_factory(seed_branch, [(seed_menu.burger, 2)])

        with pytest.raises(ConflictError):
            service.edit_items(
                cashier,
                order.id,
                EditItemsRequest(edits=[ItemEdit(order_item_id=order.items[0].id, quantity=1)]),
            )

    def test_cannot_remove_every_line(self, service, cashier, seed_branch, seed_menu, order_factory):
        """An order keeps at least one item."""
        order = order_factory(seed_branch, [(seed_menu.burger, 1)], payment_method=PaymentMethod.CASH)

        with pytest.raises(ValidationError):
            service.edit_items(
                cashier,
                order.id,
                EditItemsRequest(edits=[ItemEdit(order_item_id=order.items[0].id, quantity=0)]),
            )


class TestAutoComplete:
    """Sweep of preparing orders whose timer ran out."""

    def test_due_orders_are_completed(self, db_session, service, seed_branch, seed_menu, order_factory):
        """Orders past base delay plus grace are completed; others are skipped with a reason."""
        now = utcnow()
        due = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=now - timedelta(minutes=30)
        )
        fresh = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=now - timedelta(minutes=5)
        )
        phone = order_factory(
            seed_branch,
            [(seed_menu.burger, 1)],
            source="phone",
            preparing_started_at=now - timedelta(minutes=45),
        )

        report = service.auto_complete_due_orders(seed_branch.id, now=now)

        assert report.enabled is True
        assert report.completed_count == 1
        reasons = {entry.order_id: entry.skipped_reason for entry in report.orders}
        assert reasons == {due.id: None, fresh.id: "not_due", phone.id: "manual_completion_source"}

        db_session.refresh(due)
        assert due.status == OrderStatus.COMPLETED

    @pytest.mark.parametrize("source", OrderSource.MANUAL_COMPLETION)
    def test_manual_sources_are_never_completed(self, db_session, service, seed_branch, seed_menu, order_factory, source):
        """Phone and marketplace orders are always left for staff."""
        now = utcnow()
        order = order_factory(
            seed_branch,
            [(seed_menu.burger, 1)],
            source=source,
            preparing_started_at=now - timedelta(hours=1),
        )

        report = service.auto_complete_due_orders(seed_branch.id, now=now)

        assert report.completed_count == 0
        assert [(e.order_id, e.skipped_reason) for e in report.orders] == [(order.id, "manual_completion_source")]
        db_session.refresh(order)
        assert order.status == OrderStatus.PREPARING

    def test_grace_period(self, db_session, service, seed_branch, seed_menu, order_factory):
        """The target is only acted on 10 seconds after it passes."""
        now = utcnow()
        order = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=now - timedelta(minutes=20)
        )

        early = service.auto_complete_due_orders(seed_branch.id, now=now + timedelta(seconds=5))
        late = service.auto_complete_due_orders(seed_branch.id, now=now + timedelta(seconds=10))

        assert early.completed_count == 0
        assert late.completed_count == 1

    def test_individual_adjustment_moves_target(self, service, staff, seed_branch, seed_menu, order_factory):
        """A +15 minute adjustment pushes the target back."""
        now = utcnow()
        order = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=now - timedelta(minutes=30)
        )
        service.adjust_timing(staff, order.id, 15)

        report = service.auto_complete_due_orders(seed_branch.id, now=now)

        assert report.completed_count == 0
        assert report.orders[0].skipped_reason == "not_due"

    def test_disabled_branch_is_left_alone(self, db_session, service, seed_branch, seed_menu, order_factory):
        """Branches without auto_ready are never swept."""
        seed_branch.auto_ready = False
        db_session.commit()
        order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=utcnow() - timedelta(hours=2)
        )

        report = service.auto_complete_due_orders(seed_branch.id)

        assert report.enabled is False
        assert report.orders == []
