"""
Menu preset endpoints.
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from rest_api.routers._common import current_principal
from rest_api.services.domain import PresetService
from rest_api.services.jobs import JobQueue, get_job_queue
from rest_api.services.permissions import Principal
from shared.infrastructure.db import get_db
from shared.utils.schemas import (
    PresetCreateRequest,
    PresetOutput,
    PresetUpdateRequest,
    ScheduledPresetReport,
)


router = APIRouter(prefix="/api/v1/menu-presets", tags=["menu-presets"])


def get_preset_service(
    db: Session = Depends(get_db),
    jobs: JobQueue = Depends(get_job_queue),
) -> PresetService:
    return PresetService(db, jobs)


@router.get("", response_model=list[PresetOutput])
def list_presets(
    branch_id: int | None = None,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> list[PresetOutput]:
    return [PresetOutput.model_validate(p) for p in service.list_presets(principal, branch_id)]


@router.post("", response_model=PresetOutput, status_code=status.HTTP_201_CREATED)
def create_preset(
    body: PresetCreateRequest,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> PresetOutput:
    """Save a preset; without explicit references the live menu is captured."""
    return PresetOutput.model_validate(service.create_preset(principal, body))


@router.post("/deactivate", response_model=PresetOutput | None)
def deactivate_current_preset(
    branch_id: int | None = None,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> PresetOutput | None:
    """Un-apply the branch's current preset. The live menu is left as is."""
    preset = service.deactivate_current(principal, branch_id)
    return PresetOutput.model_validate(preset) if preset else None


@router.post("/check-schedule", response_model=ScheduledPresetReport)
def check_scheduled_presets(
    branch_id: int | None = None,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> ScheduledPresetReport:
    """Apply or un-apply scheduled presets for one branch now."""
    return service.check_scheduled_presets(branch_id, principal=principal)


@router.get("/{preset_id}", response_model=PresetOutput)
def get_preset(
    preset_id: int,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> PresetOutput:
    return PresetOutput.model_validate(service.get_preset(principal, preset_id))


@router.patch("/{preset_id}", response_model=PresetOutput)
def update_preset(
    preset_id: int,
    body: PresetUpdateRequest,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> PresetOutput:
    return PresetOutput.model_validate(service.update_preset(principal, preset_id, body))


@router.delete("/{preset_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_preset(
    preset_id: int,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> Response:
    service.delete_preset(principal, preset_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{preset_id}/apply", response_model=PresetOutput)
def apply_preset(
    preset_id: int,
    principal: Principal = Depends(current_principal),
    service: PresetService = Depends(get_preset_service),
) -> PresetOutput:
    """Make the live menu match the preset and queue the third-party menu sync."""
    return PresetOutput.model_validate(service.apply_preset(principal, preset_id))
