"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SubmitTaskRequest(BaseModel):
    """Request body for submitting a task."""

    type: str = Field(..., min_length=1, description="Registered task type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Task payload data")
    queue: str | None = Field(default=None, description="Target queue name")
    max_retries: int | None = Field(default=None, ge=0, description="Maximum retry attempts")
    timeout_seconds: float | None = Field(
        default=None, gt=0, description="Per-attempt execution timeout"
    )


class SubmitTaskResponse(BaseModel):
    """Response body after submitting a task."""

    success: bool = True
    task_id: str
    task_type: str
    queue: str
    correlation_id: str
    queued_at: datetime
    message: str = "Task queued successfully"


class PingRequest(BaseModel):
    """Request body for worker ping."""

    message: str | None = None


class PingTaskPayload(BaseModel):
    """Payload of the worker ping task, including the correlation id."""

    message: str
    request_id: str
    queued_at: datetime


class QueueStatus(BaseModel):
    """Queue names and broker connectivity."""

    broker: str
    queues: list[str]
    dispatch_policy: str
    note: str = "Use POST /worker/ping to test task processing"


class HealthResponse(BaseModel):
    """Health check response."""

    status: dict[str, str]
    checked: datetime
    duration_ms: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    details: str | None = None
    request_id: str | None = None
