"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    ErrorResponse,
    HealthResponse,
    PingRequest,
    PingTaskPayload,
    QueueStatus,
    SubmitTaskRequest,
    SubmitTaskResponse,
)
from jobqueue.types.envelope import TaskEnvelope, new_task_id
from jobqueue.types.task import TaskContext, TaskResult

__all__ = [
    # API types
    "SubmitTaskRequest",
    "SubmitTaskResponse",
    "PingRequest",
    "PingTaskPayload",
    "QueueStatus",
    "HealthResponse",
    "ErrorResponse",
    # Task types
    "TaskEnvelope",
    "TaskContext",
    "TaskResult",
    "new_task_id",
]
