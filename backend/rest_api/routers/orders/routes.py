"""
Order endpoints for branch staff.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rest_api.routers._common import Pagination, current_principal, get_pagination
from rest_api.services.domain import OrderService
from rest_api.services.jobs import JobQueue, get_job_queue
from rest_api.services.payments import PaymentGateway, get_payment_gateway
from rest_api.services.permissions import Principal
from shared.infrastructure.db import get_db
from shared.utils.schemas import (
    AdjustTimingRequest,
    AutoCompleteReport,
    EditItemsRequest,
    OrderOutput,
    OrderStatusChangeRequest,
    Page,
    RefundOutput,
    RejectOrderResponse,
    RemovedItemOutput,
)


router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


def get_order_service(
    db: Session = Depends(get_db),
    jobs: JobQueue = Depends(get_job_queue),
    payments: PaymentGateway = Depends(get_payment_gateway),
) -> OrderService:
    return OrderService(db, jobs, payments)


@router.get("", response_model=Page[OrderOutput])
def list_orders(
    branch_id: int | None = None,
    status: str | None = None,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> dict:
    """Orders of a branch, newest first, optionally filtered by status."""
    items, total = service.list_orders(
        principal, branch_id=branch_id, status=status, page=pagination.page, limit=pagination.limit
    )
    return pagination.page_of([OrderOutput.model_validate(o) for o in items], total)


@router.post("/auto-complete", response_model=AutoCompleteReport)
def auto_complete_orders(
    branch_id: int | None = Query(default=None),
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> AutoCompleteReport:
    """Run the auto-complete sweep for one branch now."""
    return service.auto_complete_due_orders(branch_id, principal=principal)


@router.get("/{order_id}", response_model=OrderOutput)
def get_order(
    order_id: int,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> OrderOutput:
    return OrderOutput.model_validate(service.get_order(principal, order_id))


@router.get("/{order_id}/removed-items", response_model=list[RemovedItemOutput])
def list_removed_items(
    order_id: int,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> list[RemovedItemOutput]:
    """Lines removed or re-quantified before payment."""
    order = service.get_order(principal, order_id)
    return [RemovedItemOutput.model_validate(r) for r in order.removed_items]


@router.post("/{order_id}/start-preparing", response_model=OrderOutput)
def start_preparing(
    order_id: int,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> OrderOutput:
    return OrderOutput.model_validate(service.start_preparing(principal, order_id))


@router.post("/{order_id}/ready", response_model=OrderOutput)
def mark_ready(
    order_id: int,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> OrderOutput:
    return OrderOutput.model_validate(service.mark_ready(principal, order_id))


@router.post("/{order_id}/complete", response_model=OrderOutput)
def complete_order(
    order_id: int,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> OrderOutput:
    return OrderOutput.model_validate(service.complete(principal, order_id))


@router.post("/{order_id}/cancel", response_model=OrderOutput)
def cancel_order(
    order_id: int,
    body: OrderStatusChangeRequest | None = None,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> OrderOutput:
    reason = body.reason if body else None
    return OrderOutput.model_validate(service.cancel(principal, order_id, reason=reason))


@router.post("/{order_id}/reject", response_model=RejectOrderResponse)
def reject_order(
    order_id: int,
    body: OrderStatusChangeRequest | None = None,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> RejectOrderResponse:
    """
    Reject the order. Online-paid orders are refunded in full; a refund
    failure is reported in refund_error and the order stays rejected.
    """
    outcome = service.reject(principal, order_id, reason=body.reason if body else None)
    return RejectOrderResponse(
        order=OrderOutput.model_validate(outcome.order),
        refund=RefundOutput.model_validate(outcome.refund) if outcome.refund else None,
        refund_error=outcome.refund_error,
    )


@router.post("/{order_id}/timing", response_model=OrderOutput)
def adjust_timing(
    order_id: int,
    body: AdjustTimingRequest,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> OrderOutput:
    return OrderOutput.model_validate(service.adjust_timing(principal, order_id, body.minutes))


@router.patch("/{order_id}/items", response_model=OrderOutput)
def edit_items(
    order_id: int,
    body: EditItemsRequest,
    principal: Principal = Depends(current_principal),
    service: OrderService = Depends(get_order_service),
) -> OrderOutput:
    return OrderOutput.model_validate(service.edit_items(principal, order_id, body))
