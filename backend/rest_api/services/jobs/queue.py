"""
Fire-and-forget job queues backed by Redis lists.

Jobs are JSON envelopes pushed to `queue:{queue-name}:wait`; workers
(separate processes) pop them from the other end and move them through
`:active` into `:completed` or `:failed`.

Usage:
    queue = get_job_queue()
    queue.enqueue(JobTypes.SEND_ORDER_CONFIRMATION, OrderConfirmationPayload(...))
"""

import json
import uuid
from typing import Any, Optional

import redis
from pydantic import BaseModel

from shared.config.constants import JOB_QUEUES, QueueNames
from shared.config.logging import get_logger
from shared.infrastructure.correlation import get_request_id
from shared.infrastructure.redis_pool import get_redis_sync_client
from shared.utils.clock import utcnow
from shared.utils.exceptions import QueueUnavailableError

from .payloads import JOB_PAYLOADS

logger = get_logger(__name__)

QUEUE_KEY_PREFIX = "queue:"
QUEUE_STATES = ("wait", "active", "completed", "failed")
STAT_NAMES = {"wait": "waiting", "active": "active", "completed": "completed", "failed": "failed"}


def queue_key(queue_name: str, state: str = "wait") -> str:
    return f"{QUEUE_KEY_PREFIX}{queue_name}:{state}"


class JobQueue:
    """Enqueues typed jobs onto their destination queue."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis_sync_client()
        return self._client

    def _validate(self, job_type: str, payload: BaseModel | dict[str, Any]) -> BaseModel:
        model = JOB_PAYLOADS.get(job_type)
        if model is None:
            raise ValueError(f"Unknown job type: {job_type}")
        if isinstance(payload, model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        return model.model_validate(payload)

    def enqueue(self, job_type: str, payload: BaseModel | dict[str, Any]) -> str:
        """
        Validate the payload and push the job.

        Returns:
            The job id.

        Raises:
            pydantic.ValidationError: payload does not match the job type
            QueueUnavailableError: Redis rejected or could not take the push
        """
        data = self._validate(job_type, payload)
        queue_name = JOB_QUEUES[job_type]
        job_id = uuid.uuid4().hex
        envelope = {
            "id": job_id,
            "name": job_type,
            "data": data.model_dump(mode="json"),
            "attempts": 0,
            "enqueued_at": utcnow().isoformat(),
            "request_id": get_request_id() or None,
        }

        try:
            self.client.lpush(queue_key(queue_name), json.dumps(envelope))
        except redis.RedisError as e:
            raise QueueUnavailableError(queue_name, job_type=job_type, error=str(e)) from e

        logger.info("Job enqueued", job_id=job_id, job_type=job_type, queue=queue_name)
        return job_id

    def enqueue_best_effort(self, job_type: str, payload: BaseModel | dict[str, Any]) -> Optional[str]:
        """Enqueue, logging and skipping the job when the queue is down."""
        try:
            return self.enqueue(job_type, payload)
        except QueueUnavailableError:
            logger.warning("Best-effort job skipped", job_type=job_type)
            return None

    def get_queue_stats(self) -> dict[str, dict[str, int]]:
        """Job counts per queue and state."""
        try:
            pipe = self.client.pipeline(transaction=False)
            for queue_name in QueueNames.ALL:
                for state in QUEUE_STATES:
                    pipe.llen(queue_key(queue_name, state))
            counts = iter(pipe.execute())
        except redis.RedisError as e:
            raise QueueUnavailableError("all", error=str(e)) from e

        return {
            queue_name: {STAT_NAMES[state]: int(next(counts)) for state in QUEUE_STATES}
            for queue_name in QueueNames.ALL
        }


def get_job_queue() -> JobQueue:
    """FastAPI dependency; tests override it with an in-memory queue."""
    return JobQueue()
