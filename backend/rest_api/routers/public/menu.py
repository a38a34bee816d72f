"""
Public menu and ordering endpoints (no authentication).
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from rest_api.services.domain import MenuService, OrderService
from rest_api.services.jobs import JobQueue, get_job_queue
from rest_api.services.payments import PaymentGateway, get_payment_gateway
from shared.infrastructure.db import get_db
from shared.security.rate_limit import limiter
from shared.utils.schemas import CreateOrderRequest, OrderOutput, PublicMenu


router = APIRouter(prefix="/api/v1/public", tags=["public"])


@router.get("/branches/{branch_id}/menu", response_model=PublicMenu)
def get_menu(branch_id: int, db: Session = Depends(get_db)) -> PublicMenu:
    """What customers can order from the branch right now."""
    return MenuService(db).get_public_menu(branch_id)


@router.post(
    "/branches/{branch_id}/orders",
    response_model=OrderOutput,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_order(
    request: Request,
    branch_id: int,
    body: CreateOrderRequest,
    db: Session = Depends(get_db),
    jobs: JobQueue = Depends(get_job_queue),
    payments: PaymentGateway = Depends(get_payment_gateway),
) -> OrderOutput:
    """Place an order from the web menu or a table QR code."""
    order = OrderService(db, jobs, payments).create_order(branch_id, body)
    return OrderOutput.model_validate(order)


@router.post("/branches/{branch_id}/orders/{order_id}/confirm-payment", response_model=OrderOutput)
@limiter.limit("30/minute")
def confirm_payment(
    request: Request,
    branch_id: int,
    order_id: int,
    db: Session = Depends(get_db),
    jobs: JobQueue = Depends(get_job_queue),
    payments: PaymentGateway = Depends(get_payment_gateway),
) -> OrderOutput:
    """Mark an online order paid once the processor reports the payment succeeded."""
    order = OrderService(db, jobs, payments).confirm_payment(branch_id, order_id)
    return OrderOutput.model_validate(order)
