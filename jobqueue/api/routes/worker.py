"""
Worker routes.

Let operators verify that tasks flow end to end without a real producer.
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Body, Depends, status

from jobqueue.api.dependencies import get_client, get_request_id
from jobqueue.client import EnqueueClient
from jobqueue.constants import TASK_WORKER_PING
from jobqueue.types.api import (
    ErrorResponse,
    PingRequest,
    PingTaskPayload,
    QueueStatus,
    SubmitTaskResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/worker", tags=["Worker"])

DEFAULT_PING_MESSAGE = "ping from API"


@router.post(
    "/ping",
    response_model=SubmitTaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue a ping task",
    responses={503: {"model": ErrorResponse}},
)
async def ping_worker(
    body: PingRequest | None = Body(default=None),
    client: EnqueueClient = Depends(get_client),
    request_id: str | None = Depends(get_request_id),
) -> SubmitTaskResponse:
    """
    Enqueue a ``worker:ping`` task carrying the request id.

    The worker logs the message when it processes the task. Answers 503
    when the broker does not confirm the write.
    """
    queued_at = datetime.now(UTC)
    payload = PingTaskPayload(
        message=(body.message if body and body.message else DEFAULT_PING_MESSAGE),
        request_id=request_id or "",
        queued_at=queued_at,
    )

    task_id = await client.enqueue(
        TASK_WORKER_PING,
        payload.model_dump_json(),
        correlation_id=request_id,
    )

    logger.info(
        "Worker ping task enqueued",
        extra={"task_id": task_id, "task_type": TASK_WORKER_PING},
    )
    return SubmitTaskResponse(
        task_id=task_id,
        task_type=TASK_WORKER_PING,
        queue=client.default_queue,
        correlation_id=request_id or task_id,
        queued_at=queued_at,
        message="Task queued successfully. Check worker logs to verify processing.",
    )


@router.get(
    "/status",
    response_model=QueueStatus,
    summary="Queue status",
)
async def worker_status(client: EnqueueClient = Depends(get_client)) -> QueueStatus:
    """Configured queues and broker connectivity."""
    return await client.status()
