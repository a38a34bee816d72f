"""
Background job queues (email, webhook, sync, notification).
"""

from .payloads import (
    JOB_PAYLOADS,
    MenuSyncPayload,
    OrderConfirmationPayload,
    OrderStatusUpdatePayload,
)
from .queue import JobQueue, get_job_queue, queue_key

__all__ = [
    "JOB_PAYLOADS",
    "MenuSyncPayload",
    "OrderConfirmationPayload",
    "OrderStatusUpdatePayload",
    "JobQueue",
    "get_job_queue",
    "queue_key",
]
