"""
Refund endpoints.

POST /api/v1/orders/{id}/refunds accepts an optional Idempotency-Key header;
replaying the same key returns the refund already recorded.
"""

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session

from rest_api.routers._common import Pagination, current_principal, get_pagination
from rest_api.services.domain import RefundService
from rest_api.services.payments import PaymentGateway, get_payment_gateway
from rest_api.services.permissions import Principal
from shared.config.constants import Limits
from shared.infrastructure.db import get_db
from shared.utils.money import round_money
from shared.utils.schemas import (
    OrderOutput,
    Page,
    RefundAnalytics,
    RefundEligibility,
    RefundOutput,
    RefundRequest,
    RefundResultOutput,
)


router = APIRouter(prefix="/api/v1", tags=["refunds"])


def get_refund_service(
    db: Session = Depends(get_db),
    payments: PaymentGateway = Depends(get_payment_gateway),
) -> RefundService:
    return RefundService(db, payments)


@router.get("/orders/{order_id}/refund-eligibility", response_model=RefundEligibility)
def check_refund_eligibility(
    order_id: int,
    principal: Principal = Depends(current_principal),
    service: RefundService = Depends(get_refund_service),
) -> RefundEligibility:
    """Whether the order can be refunded, how much and which lines."""
    return service.check_eligibility(principal, order_id)


@router.post(
    "/orders/{order_id}/refunds",
    response_model=RefundResultOutput,
    status_code=status.HTTP_201_CREATED,
)
def process_refund(
    order_id: int,
    body: RefundRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    principal: Principal = Depends(current_principal),
    service: RefundService = Depends(get_refund_service),
) -> RefundResultOutput:
    """Refund selected items or a custom amount; cash and card refunds are recorded only."""
    refund = service.process_refund(principal, order_id, body, idempotency_key=idempotency_key)
    order = refund.order
    return RefundResultOutput(
        refund=RefundOutput.model_validate(refund),
        order_total_refunded=round_money(order.total_refunded),
        order_payment_status=order.payment_status,
        remaining_refundable=round_money(order.refundable_amount),
    )


@router.get("/orders/{order_id}/refunds", response_model=list[RefundOutput])
def list_order_refunds(
    order_id: int,
    principal: Principal = Depends(current_principal),
    service: RefundService = Depends(get_refund_service),
) -> list[RefundOutput]:
    return [RefundOutput.model_validate(r) for r in service.list_order_refunds(principal, order_id)]


@router.get("/refunds", response_model=Page[RefundOutput])
def list_refunds(
    branch_id: int | None = None,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(current_principal),
    service: RefundService = Depends(get_refund_service),
) -> dict:
    items, total = service.list_refunds(
        principal, branch_id=branch_id, page=pagination.page, limit=pagination.limit
    )
    return pagination.page_of([RefundOutput.model_validate(r) for r in items], total)


@router.get("/refunds/analytics", response_model=RefundAnalytics)
def refund_analytics(
    branch_id: int | None = None,
    days: int = Query(default=Limits.DEFAULT_ANALYTICS_DAYS),
    principal: Principal = Depends(current_principal),
    service: RefundService = Depends(get_refund_service),
) -> RefundAnalytics:
    return service.get_analytics(principal, branch_id=branch_id, days=days)


@router.get("/refunds/eligible-orders", response_model=Page[OrderOutput])
def list_eligible_orders(
    branch_id: int | None = None,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(current_principal),
    service: RefundService = Depends(get_refund_service),
) -> dict:
    """Orders that can still be refunded."""
    items, total = service.list_eligible_orders(
        principal, branch_id=branch_id, page=pagination.page, limit=pagination.limit
    )
    return pagination.page_of([OrderOutput.model_validate(o) for o in items], total)
