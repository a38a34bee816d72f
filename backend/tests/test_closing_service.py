"""
Tests for ClosingService: daily summary and the closing lifecycle.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from rest_api.models import AuditLog
from rest_api.services.domain import ClosingService, RefundService, local_day_bounds
from shared.config.constants import (
    DEFAULT_CANCELLATION_REASON,
    AuditAction,
    ClosingStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from shared.utils.exceptions import (
    ClosingNotFoundError,
    DuplicateClosingError,
    FiscalSubmissionError,
    InsufficientRoleError,
    InvalidTransitionError,
)
from shared.utils.schemas import RefundRequest


CLOSING_DATE = date(2026, 10, 16)


@pytest.fixture
def service(db_session, fiscal):
    return ClosingService(db_session, fiscal)


@pytest.fixture
def day_orders(db_session, seed_branch, seed_menu, order_factory):
    """
    Orders around 2026-10-16 in Montreal (UTC-4):
    two completed sales, one partly refunded, one rejected but still
    charged, and one from the previous local day.
    """
    online = order_factory(
        seed_branch,
        [(seed_menu.burger, 2)],
        status=OrderStatus.COMPLETED,
        created_at=datetime(2026, 10, 16, 16, 0, tzinfo=timezone.utc),
    )
    online.total_refunded = Decimal("10.00")
    online.payment_status = PaymentStatus.PARTIALLY_REFUNDED

    # 23:00 local, still the 16th
    order_factory(
        seed_branch,
        [(seed_menu.fries, 1)],
        status=OrderStatus.COMPLETED,
        payment_method=PaymentMethod.CASH,
        payment_status=PaymentStatus.SUCCEEDED,
        created_at=datetime(2026, 10, 17, 3, 0, tzinfo=timezone.utc),
    )
    order_factory(
        seed_branch,
        [(seed_menu.soda, 1)],
        status=OrderStatus.REJECTED,
        created_at=datetime(2026, 10, 16, 18, 0, tzinfo=timezone.utc),
    )
    # 23:00 local on the 15th
    order_factory(
        seed_branch,
        [(seed_menu.burger, 1)],
        status=OrderStatus.COMPLETED,
        created_at=datetime(2026, 10, 16, 3, 0, tzinfo=timezone.utc),
    )
    db_session.commit()


class TestLocalDayBounds:

    def test_bounds_follow_branch_timezone(self):
        start, end = local_day_bounds(CLOSING_DATE, "America/Toronto")

        assert start == datetime(2026, 10, 16, 4, 0, tzinfo=timezone.utc)
        assert end == datetime(2026, 10, 17, 4, 0, tzinfo=timezone.utc)


class TestDailySummary:
    """Aggregation of a branch's local day."""

    def test_summary_totals(self, service, manager, day_orders):
        """Completed orders are sales; refunds include what rejected orders still hold."""
        summary = service.get_daily_summary(manager, CLOSING_DATE)

        assert summary.transaction_count == 2
        assert summary.total_sales == Decimal("63.24")
        assert summary.total_refunds == Decimal("12.88")
        assert summary.net_sales == Decimal("50.36")
        assert summary.gst_collected == Decimal("2.75")
        assert summary.qst_collected == Decimal("5.49")
        assert summary.cash_total == Decimal("5.75")
        assert summary.card_total == Decimal("0.00")
        assert summary.online_total == Decimal("57.49")

    def test_empty_day(self, service, manager, seed_branch):
        summary = service.get_daily_summary(manager, CLOSING_DATE)

        assert summary.transaction_count == 0
        assert summary.net_sales == Decimal("0.00")

    def test_rejected_orders_count_their_full_total_once(self, db_session, service, manager, seed_branch, seed_menu, order_factory):
        """A charged rejection counts the same whether its refund failed, went partly or fully through."""
        noon = datetime(2026, 10, 16, 16, 0, tzinfo=timezone.utc)
        still_held = order_factory(seed_branch, [(seed_menu.soda, 1)], status=OrderStatus.REJECTED, created_at=noon)
        partly = order_factory(seed_branch, [(seed_menu.soda, 1)], status=OrderStatus.REJECTED, created_at=noon)
        partly.total_refunded = Decimal("1.00")
        partly.payment_status = PaymentStatus.PARTIALLY_REFUNDED
        fully = order_factory(seed_branch, [(seed_menu.soda, 1)], status=OrderStatus.CANCELLED, created_at=noon)
        fully.total_refunded = fully.total_amount
        fully.payment_status = PaymentStatus.REFUNDED
        # Never paid, nothing to give back
        order_factory(
            seed_branch, [(seed_menu.soda, 1)],
            status=OrderStatus.CANCELLED, payment_method=PaymentMethod.CASH, created_at=noon,
        )
        db_session.commit()

        summary = service.get_daily_summary(manager, CLOSING_DATE)

        assert still_held.payment_status == PaymentStatus.SUCCEEDED
        assert summary.total_refunds == Decimal("8.64")
        assert summary.total_sales == Decimal("0.00")
        assert summary.net_sales == Decimal("-8.64")

    def test_counter_refunds_are_included(self, db_session, service, payments, manager, seed_branch, seed_menu, order_factory):
        order = order_factory(
            seed_branch,
            [(seed_menu.burger, 1)],
            status=OrderStatus.COMPLETED,
            payment_method=PaymentMethod.CASH,
            created_at=datetime(2026, 10, 16, 16, 0, tzinfo=timezone.utc),
        )
        db_session.commit()

        RefundService(db_session, payments).process_refund(
            manager,
            order.id,
            RefundRequest(reason="requested_by_customer", amount=Decimal("5.00")),
            now=datetime(2026, 10, 16, 20, 0, tzinfo=timezone.utc),
        )
        summary = service.get_daily_summary(manager, CLOSING_DATE)

        assert payments.calls == []
        assert summary.cash_total == Decimal("28.74")
        assert summary.total_refunds == Decimal("5.00")
        assert summary.net_sales == Decimal("23.74")

    def test_cashier_cannot_read_closings(self, service, cashier):
        with pytest.raises(InsufficientRoleError):
            service.get_daily_summary(cashier, CLOSING_DATE)


class TestClosingLifecycle:
    """draft -> completed | cancelled."""

    def test_start_freezes_summary_in_draft(self, db_session, service, manager, day_orders):
        closing = service.start_closing(manager, CLOSING_DATE)

        assert closing.status == ClosingStatus.DRAFT
        assert closing.net_sales == Decimal("50.36")
        assert closing.created_by == manager.user_id
        audit = db_session.scalar(select(AuditLog).where(AuditLog.entity_type == "daily_closing"))
        assert audit.action == AuditAction.CREATE

    def test_duplicate_start_is_refused(self, service, manager, seed_branch):
        """One draft or completed closing per branch and date."""
        service.start_closing(manager, CLOSING_DATE)

        with pytest.raises(DuplicateClosingError):
            service.start_closing(manager, CLOSING_DATE)

    def test_cancel_then_restart(self, db_session, service, manager, seed_branch):
        """A cancelled closing frees the date and leaves one audit row."""
        first = service.start_closing(manager, CLOSING_DATE)

        cancelled = service.cancel_closing(manager, first.id, reason="Counted the wrong drawer")
        second = service.start_closing(manager, CLOSING_DATE)

        assert cancelled.status == ClosingStatus.CANCELLED
        assert cancelled.cancelled_by == manager.user_id
        assert cancelled.cancellation_reason == "Counted the wrong drawer"
        assert second.id != first.id
        assert second.status == ClosingStatus.DRAFT

        cancel_audits = db_session.scalars(
            select(AuditLog).where(AuditLog.action == AuditAction.CANCEL)
        ).all()
        assert len(cancel_audits) == 1
        assert cancel_audits[0].entity_id == first.id
        assert cancel_audits[0].reason == "Counted the wrong drawer"

    def test_cancel_without_reason(self, service, manager, seed_branch):
        closing = service.start_closing(manager, CLOSING_DATE)

        cancelled = service.cancel_closing(manager, closing.id, reason="   ")

        assert cancelled.cancellation_reason == DEFAULT_CANCELLATION_REASON

    def test_complete_submits_to_websrm(self, service, fiscal, manager, day_orders):
        closing = service.start_closing(manager, CLOSING_DATE)

        completed = service.complete_closing(manager, closing.id)

        assert completed.status == ClosingStatus.COMPLETED
        assert completed.websrm_transaction_id == "FER-TX-0001"
        assert completed.completed_by == manager.user_id
        assert completed.completed_at is not None
        assert fiscal.submissions == [{"closing_id": closing.id, "net_sales": Decimal("50.36")}]

    def test_completed_is_irreversible(self, service, manager, seed_branch):
        closing = service.start_closing(manager, CLOSING_DATE)
        service.complete_closing(manager, closing.id)

        with pytest.raises(InvalidTransitionError):
            service.cancel_closing(manager, closing.id)
        with pytest.raises(InvalidTransitionError):
            service.complete_closing(manager, closing.id)
        with pytest.raises(DuplicateClosingError):
            service.start_closing(manager, CLOSING_DATE)

    def test_fiscal_failure_keeps_draft(self, db_session, service, fiscal, manager, seed_branch):
        """No automatic retry: the closing waits in draft for another attempt."""
        closing = service.start_closing(manager, CLOSING_DATE)
        fiscal.error = FiscalSubmissionError("service unreachable")

        with pytest.raises(FiscalSubmissionError):
            service.complete_closing(manager, closing.id)

        db_session.refresh(closing)
        assert closing.status == ClosingStatus.DRAFT
        assert closing.websrm_transaction_id is None

        fiscal.error = None
        completed = service.complete_closing(manager, closing.id)
        assert completed.status == ClosingStatus.COMPLETED

    def test_draft_reflects_later_orders(self, service, manager, seed_branch, seed_menu, order_factory):
        """Reading a draft recomputes its figures."""
        closing = service.start_closing(manager, CLOSING_DATE)
        order_factory(
            seed_branch,
            [(seed_menu.fries, 1)],
            status=OrderStatus.COMPLETED,
            payment_method=PaymentMethod.CARD,
            created_at=datetime(2026, 10, 16, 20, 0, tzinfo=timezone.utc),
        )

        refreshed = service.get_closing(manager, closing.id)

        assert refreshed.card_total == Decimal("5.75")
        assert refreshed.transaction_count == 1

    def test_staff_cannot_start(self, service, staff, seed_branch):
        with pytest.raises(InsufficientRoleError):
            service.start_closing(staff, CLOSING_DATE)

    def test_other_branch_closing_is_hidden(self, service, manager, other_manager, seed_branch):
        closing = service.start_closing(manager, CLOSING_DATE)

        with pytest.raises(ClosingNotFoundError):
            service.get_closing(other_manager, closing.id)

    def test_owner_works_across_branches(self, service, owner, other_branch):
        """Chain owners pick the branch explicitly."""
        closing = service.start_closing(owner, CLOSING_DATE, branch_id=other_branch.id)

        assert closing.branch_id == other_branch.id

    def test_list_filters(self, service, manager, seed_branch):
        first = service.start_closing(manager, date(2026, 10, 14))
        service.cancel_closing(manager, first.id)
        service.start_closing(manager, date(2026, 10, 15))

        drafts, total = service.list_closings(manager, status=ClosingStatus.DRAFT)
        ranged, ranged_total = service.list_closings(
            manager, date_from=date(2026, 10, 15), date_to=date(2026, 10, 31)
        )

        assert total == 1
        assert drafts[0].closing_date == date(2026, 10, 15)
        assert ranged_total == 1
