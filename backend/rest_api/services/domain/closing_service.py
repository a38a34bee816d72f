"""
Daily Closing Domain Service (Quebec FER).

draft -> completed: summary frozen and submitted to WEB-SRM; irreversible.
draft -> cancelled: reason recorded in the audit log; the date can be
started again.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rest_api.models import Branch, DailyClosing, Order
from rest_api.services.audit import log_change
from rest_api.services.crud.repository import BranchRepository, BranchScope, resolve_branch
from rest_api.services.fiscal import FiscalClient
from rest_api.services.permissions import Operations, Principal, authorize
from shared.config.constants import (
    CLOSING_TRANSITIONS,
    DEFAULT_CANCELLATION_REASON,
    AuditAction,
    ClosingStatus,
    Limits,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from shared.config.logging import get_logger
from shared.infrastructure.db import safe_commit
from shared.utils.clock import utcnow
from shared.utils.exceptions import (
    AppException,
    ClosingNotFoundError,
    DuplicateClosingError,
    InvalidTransitionError,
    OperationFailedError,
    ValidationError,
)
from shared.utils.money import ZERO, round_money, to_decimal
from shared.utils.schemas import DailySummary

logger = get_logger(__name__)

SUMMARY_FIELDS = (
    "total_sales",
    "total_refunds",
    "net_sales",
    "transaction_count",
    "gst_collected",
    "qst_collected",
    "cash_total",
    "card_total",
    "online_total",
)


def local_day_bounds(closing_date: date, tz_name: str) -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day in the branch timezone."""
    start = datetime.combine(closing_date, time.min, tzinfo=ZoneInfo(tz_name))
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


class ClosingService:
    """
    Domain service for daily closings.

    The fiscal client is injected so tests can simulate WEB-SRM outcomes.
    """

    def __init__(self, db: Session, fiscal: FiscalClient):
        self._db = db
        self._fiscal = fiscal
        self._closings = BranchRepository(DailyClosing, db)

    # =========================================================================
    # Summary
    # =========================================================================

    def compute_summary(self, branch: Branch, closing_date: date) -> DailySummary:
        """
        Totals of the orders placed on the branch's local calendar day.

        Completed orders count as sales. Refunds are everything already
        refunded on that day's orders, through the processor or at the
        counter. A cancelled or rejected order whose payment was captured
        counts its full total once, whether or not its refund went through.
        """
        start, end = local_day_bounds(closing_date, branch.timezone)
        orders = self._db.scalars(
            select(Order).where(
                Order.chain_id == branch.chain_id,
                Order.branch_id == branch.id,
                Order.is_active.is_(True),
                Order.created_at >= start,
                Order.created_at < end,
            )
        ).all()

        totals = {name: ZERO for name in SUMMARY_FIELDS if name != "transaction_count"}
        count = 0
        channel_field = {
            PaymentMethod.CASH: "cash_total",
            PaymentMethod.CARD: "card_total",
            PaymentMethod.ONLINE: "online_total",
        }

        for order in orders:
            amount = to_decimal(order.total_amount)
            refunded = to_decimal(order.total_refunded)

            if (
                order.status in (OrderStatus.CANCELLED, OrderStatus.REJECTED)
                and order.payment_status in PaymentStatus.CAPTURED
            ):
                # Refunded part plus what is still held
                totals["total_refunds"] += amount
                continue

            totals["total_refunds"] += refunded
            if order.status == OrderStatus.COMPLETED:
                totals["total_sales"] += amount
                totals["gst_collected"] += to_decimal(order.gst_amount)
                totals["qst_collected"] += to_decimal(order.qst_amount)
                count += 1
                field = channel_field.get(order.payment_method)
                if field:
                    totals[field] += amount

        totals["net_sales"] = totals["total_sales"] - totals["total_refunds"]
        return DailySummary(
            closing_date=closing_date,
            transaction_count=count,
            **{name: round_money(value) for name, value in totals.items()},
        )

    def get_daily_summary(
        self, principal: Principal, closing_date: date, branch_id: Optional[int] = None
    ) -> DailySummary:
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.CLOSING_READ, branch_id=branch.id)
        return self.compute_summary(branch, closing_date)

    def _apply_summary(self, closing: DailyClosing, summary: DailySummary) -> None:
        for name in SUMMARY_FIELDS:
            setattr(closing, name, getattr(summary, name))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _load_closing(self, principal: Principal, closing_id: int, for_update: bool = False) -> DailyClosing:
        closing = self._closings.find_in_scope(
            closing_id, BranchScope.for_principal(principal), for_update=for_update
        )
        if closing is None:
            raise ClosingNotFoundError(closing_id, chain_id=principal.chain_id)
        return closing

    def _check_transition(self, closing: DailyClosing, to_status: str, principal: Principal) -> None:
        if to_status not in CLOSING_TRANSITIONS.get(closing.status, []):
            self._db.rollback()
            raise InvalidTransitionError(
                "daily closing",
                closing.status,
                to_status,
                closing_id=closing.id,
                user_id=principal.user_id,
            )

    def start_closing(
        self, principal: Principal, closing_date: date, branch_id: Optional[int] = None
    ) -> DailyClosing:
        """
        Open a draft closing with the current summary.

        Raises:
            DuplicateClosingError: a draft or completed closing exists for the date
        """
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.CLOSING_START, branch_id=branch.id)

        existing = self._db.scalar(
            select(DailyClosing).where(
                DailyClosing.branch_id == branch.id,
                DailyClosing.closing_date == closing_date,
                DailyClosing.status.in_(ClosingStatus.BLOCKING),
            )
        )
        if existing is not None:
            raise DuplicateClosingError(branch.id, closing_date.isoformat(), existing_id=existing.id)

        closing = DailyClosing(
            chain_id=branch.chain_id,
            branch_id=branch.id,
            closing_date=closing_date,
            status=ClosingStatus.DRAFT,
            started_at=utcnow(),
            created_by=principal.user_id,
        )
        self._apply_summary(closing, self.compute_summary(branch, closing_date))
        closing.set_created_by(principal.user_id, principal.email)
        self._db.add(closing)

        try:
            self._db.flush()
            log_change(
                self._db,
                chain_id=branch.chain_id,
                branch_id=branch.id,
                user_id=principal.user_id,
                user_email=principal.email,
                entity_type="daily_closing",
                entity_id=closing.id,
                action=AuditAction.CREATE,
                new_values={"closing_date": closing_date, "status": ClosingStatus.DRAFT},
            )
            safe_commit(self._db)
        except IntegrityError as e:
            # Lost a race against a concurrent start for the same date
            self._db.rollback()
            raise DuplicateClosingError(branch.id, closing_date.isoformat()) from e
        except SQLAlchemyError as e:
            self._db.rollback()
            raise OperationFailedError("start the daily closing", branch_id=branch.id) from e

        self._db.refresh(closing)
        logger.info(
            "Daily closing started",
            closing_id=closing.id,
            branch_id=branch.id,
            closing_date=closing_date.isoformat(),
            user_id=principal.user_id,
        )
        return closing

    def get_closing(self, principal: Principal, closing_id: int) -> DailyClosing:
        """
        A draft reflects orders edited since it was started; completed and
        cancelled closings keep their frozen figures.
        """
        authorize(principal, Operations.CLOSING_READ)
        closing = self._load_closing(principal, closing_id)
        if closing.status == ClosingStatus.DRAFT:
            branch = self._db.get(Branch, closing.branch_id)
            self._apply_summary(closing, self.compute_summary(branch, closing.closing_date))
        return closing

    def complete_closing(self, principal: Principal, closing_id: int) -> DailyClosing:
        """
        Freeze the summary and submit the FER transaction.

        The closing stays draft when WEB-SRM fails; there is no automatic
        retry, the user completes again.

        Raises:
            InvalidTransitionError: closing is not a draft
            FiscalSubmissionError: WEB-SRM rejected or could not be reached
        """
        authorize(principal, Operations.CLOSING_COMPLETE)
        closing = self._load_closing(principal, closing_id, for_update=True)
        authorize(principal, Operations.CLOSING_COMPLETE, branch_id=closing.branch_id)
        self._check_transition(closing, ClosingStatus.COMPLETED, principal)

        branch = self._db.get(Branch, closing.branch_id)
        self._apply_summary(closing, self.compute_summary(branch, closing.closing_date))
        closing.completed_by = principal.user_id

        try:
            transaction_id = self._fiscal.submit_closing(closing, branch)
        except AppException:
            self._db.rollback()
            logger.warning(
                "Daily closing left in draft after failed submission",
                closing_id=closing_id,
                user_id=principal.user_id,
            )
            raise

        closing.status = ClosingStatus.COMPLETED
        closing.completed_at = utcnow()
        closing.websrm_transaction_id = transaction_id
        closing.set_updated_by(principal.user_id, principal.email)
        log_change(
            self._db,
            chain_id=closing.chain_id,
            branch_id=closing.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="daily_closing",
            entity_id=closing.id,
            action=AuditAction.COMPLETE,
            old_values={"status": ClosingStatus.DRAFT},
            new_values={
                "status": ClosingStatus.COMPLETED,
                "net_sales": closing.net_sales,
                "websrm_transaction_id": transaction_id,
            },
        )

        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            logger.critical(
                "FER submitted but closing not saved",
                closing_id=closing_id,
                websrm_transaction_id=transaction_id,
                error=str(e),
            )
            raise OperationFailedError("complete the daily closing", closing_id=closing_id) from e

        self._db.refresh(closing)
        logger.info(
            "Daily closing completed",
            closing_id=closing.id,
            branch_id=closing.branch_id,
            websrm_transaction_id=transaction_id,
        )
        return closing

    def cancel_closing(
        self, principal: Principal, closing_id: int, reason: Optional[str] = None
    ) -> DailyClosing:
        """Cancel a draft; writes one audit row with who, when and why."""
        authorize(principal, Operations.CLOSING_CANCEL)
        closing = self._load_closing(principal, closing_id, for_update=True)
        authorize(principal, Operations.CLOSING_CANCEL, branch_id=closing.branch_id)
        self._check_transition(closing, ClosingStatus.CANCELLED, principal)

        reason = (reason or "").strip() or DEFAULT_CANCELLATION_REASON
        closing.status = ClosingStatus.CANCELLED
        closing.cancelled_at = utcnow()
        closing.cancelled_by = principal.user_id
        closing.cancellation_reason = reason
        closing.set_updated_by(principal.user_id, principal.email)

        log_change(
            self._db,
            chain_id=closing.chain_id,
            branch_id=closing.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="daily_closing",
            entity_id=closing.id,
            action=AuditAction.CANCEL,
            old_values={"status": ClosingStatus.DRAFT},
            new_values={"status": ClosingStatus.CANCELLED, "cancelled_at": closing.cancelled_at},
            reason=reason,
        )

        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("cancel the daily closing", closing_id=closing_id) from e

        self._db.refresh(closing)
        logger.info(
            "Daily closing cancelled",
            closing_id=closing.id,
            branch_id=closing.branch_id,
            user_id=principal.user_id,
        )
        return closing

    def list_closings(
        self,
        principal: Principal,
        branch_id: Optional[int] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
    ) -> tuple[Sequence[DailyClosing], int]:
        """Closings of one branch, newest date first."""
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if limit < 1 or limit > Limits.MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {Limits.MAX_PAGE_SIZE}")
        if status is not None and status not in ClosingStatus.ALL:
            raise ValidationError(f"Unknown closing status: {status}")

        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.CLOSING_READ, branch_id=branch.id)

        query = self._closings.scoped_select(BranchScope.for_principal(principal), branch.id)
        if status is not None:
            query = query.where(DailyClosing.status == status)
        if date_from is not None:
            query = query.where(DailyClosing.closing_date >= date_from)
        if date_to is not None:
            query = query.where(DailyClosing.closing_date <= date_to)

        total = self._closings.count(query)
        items = self._db.scalars(
            query.order_by(DailyClosing.closing_date.desc(), DailyClosing.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return items, total
