"""
Background job queue endpoints.
"""

from fastapi import APIRouter, Depends

from rest_api.routers._common import current_principal
from rest_api.services.jobs import JobQueue, get_job_queue
from rest_api.services.permissions import Operations, Principal, authorize
from shared.utils.schemas import QueueStats


router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.get("/stats", response_model=dict[str, QueueStats])
def get_queue_stats(
    principal: Principal = Depends(current_principal),
    jobs: JobQueue = Depends(get_job_queue),
) -> dict[str, QueueStats]:
    """Job counts per queue and state."""
    authorize(principal, Operations.JOBS_STATS)
    return {name: QueueStats(**counts) for name, counts in jobs.get_queue_stats().items()}
