"""
Daily closing endpoints.

draft -> completed (submitted to WEB-SRM, irreversible)
draft -> cancelled (audit-logged; the date can be closed again)
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from rest_api.routers._common import Pagination, current_principal, get_pagination
from rest_api.services.domain import ClosingService
from rest_api.services.fiscal import FiscalClient, get_fiscal_client
from rest_api.services.permissions import Principal
from shared.infrastructure.db import get_db
from shared.utils.schemas import (
    CancelClosingRequest,
    ClosingOutput,
    DailySummary,
    Page,
    StartClosingRequest,
)


router = APIRouter(prefix="/api/v1/daily-closings", tags=["daily-closing"])


def get_closing_service(
    db: Session = Depends(get_db),
    fiscal: FiscalClient = Depends(get_fiscal_client),
) -> ClosingService:
    return ClosingService(db, fiscal)


@router.get("/summary", response_model=DailySummary)
def get_daily_summary(
    closing_date: date = Query(...),
    branch_id: int | None = None,
    principal: Principal = Depends(current_principal),
    service: ClosingService = Depends(get_closing_service),
) -> DailySummary:
    """Live figures for a branch-local calendar day."""
    return service.get_daily_summary(principal, closing_date, branch_id=branch_id)


@router.post("", response_model=ClosingOutput, status_code=status.HTTP_201_CREATED)
def start_closing(
    body: StartClosingRequest,
    principal: Principal = Depends(current_principal),
    service: ClosingService = Depends(get_closing_service),
) -> ClosingOutput:
    closing = service.start_closing(principal, body.closing_date, branch_id=body.branch_id)
    return ClosingOutput.model_validate(closing)


@router.get("", response_model=Page[ClosingOutput])
def list_closings(
    branch_id: int | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    date_from: date | None = None,
    date_to: date | None = None,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(current_principal),
    service: ClosingService = Depends(get_closing_service),
) -> dict:
    items, total = service.list_closings(
        principal,
        branch_id=branch_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        page=pagination.page,
        limit=pagination.limit,
    )
    return pagination.page_of([ClosingOutput.model_validate(c) for c in items], total)


@router.get("/{closing_id}", response_model=ClosingOutput)
def get_closing(
    closing_id: int,
    principal: Principal = Depends(current_principal),
    service: ClosingService = Depends(get_closing_service),
) -> ClosingOutput:
    return ClosingOutput.model_validate(service.get_closing(principal, closing_id))


@router.post("/{closing_id}/complete", response_model=ClosingOutput)
def complete_closing(
    closing_id: int,
    principal: Principal = Depends(current_principal),
    service: ClosingService = Depends(get_closing_service),
) -> ClosingOutput:
    """Freeze the figures and submit the FER transaction."""
    return ClosingOutput.model_validate(service.complete_closing(principal, closing_id))


@router.post("/{closing_id}/cancel", response_model=ClosingOutput)
def cancel_closing(
    closing_id: int,
    body: CancelClosingRequest | None = None,
    principal: Principal = Depends(current_principal),
    service: ClosingService = Depends(get_closing_service),
) -> ClosingOutput:
    reason = body.reason if body else None
    return ClosingOutput.model_validate(service.cancel_closing(principal, closing_id, reason=reason))
