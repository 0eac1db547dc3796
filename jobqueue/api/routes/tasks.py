"""
Task submission routes.
"""

import json
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, status

from jobqueue.api.dependencies import get_client, get_request_id
from jobqueue.client import EnqueueClient, EnqueueOptions
from jobqueue.constants import API_V1_PREFIX
from jobqueue.types.api import ErrorResponse, SubmitTaskRequest, SubmitTaskResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/tasks", tags=["Tasks"])


@router.post(
    "",
    response_model=SubmitTaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a task",
    description="Enqueue a task of a registered type for asynchronous execution.",
    responses={
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def submit_task(
    request: SubmitTaskRequest,
    client: EnqueueClient = Depends(get_client),
    request_id: str | None = Depends(get_request_id),
) -> SubmitTaskResponse:
    """
    Submit a task.

    The payload is stored as JSON. Unknown queues and invalid options are
    rejected with 422; a broker that does not confirm the write yields 503.

    Args:
        request: Task type, payload and options.
        client: Enqueue client.
        request_id: Used as the task's correlation id.

    Returns:
        SubmitTaskResponse with the task id.
    """
    options = EnqueueOptions(
        queue=request.queue,
        max_retries=request.max_retries,
        timeout_seconds=request.timeout_seconds,
    )
    task_id = await client.enqueue(
        request.type,
        json.dumps(request.payload),
        options,
        correlation_id=request_id,
    )

    return SubmitTaskResponse(
        task_id=task_id,
        task_type=request.type,
        queue=request.queue or client.default_queue,
        correlation_id=request_id or task_id,
        queued_at=datetime.now(UTC),
    )
