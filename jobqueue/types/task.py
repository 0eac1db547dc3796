"""
Task-related type definitions for internal use.
"""

import threading
import time
from dataclasses import dataclass, field

from pydantic import BaseModel

from jobqueue.types.envelope import TaskEnvelope


class TaskResult(BaseModel):
    """
    Result of task execution.
    Returned by task handlers after processing.
    """

    success: bool
    output: dict | None = None
    error: str | None = None
    retryable: bool = True


@dataclass
class TaskContext:
    """
    Context passed to task handlers during execution.

    ``cancelled`` is set when the task timeout fires. Handlers doing long
    work should check it and return early; the worker does not forcibly
    stop a handler that ignores it.
    """

    task_id: str
    task_type: str
    queue: str
    attempt: int
    max_retries: int
    correlation_id: str
    worker_id: str
    timeout_seconds: float
    deadline: float
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)

    @classmethod
    def from_envelope(cls, envelope: TaskEnvelope, worker_id: str) -> "TaskContext":
        return cls(
            task_id=envelope.id,
            task_type=envelope.type,
            queue=envelope.queue,
            attempt=envelope.attempt,
            max_retries=envelope.max_retries,
            correlation_id=envelope.correlation_id,
            worker_id=worker_id,
            timeout_seconds=envelope.timeout_seconds,
            deadline=time.monotonic() + envelope.timeout_seconds,
        )

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_retries

    @property
    def remaining_retries(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_retries - self.attempt)

    @property
    def time_remaining_seconds(self) -> float:
        """Seconds left before the task timeout."""
        return max(0.0, self.deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Signal the handler to stop."""
        self._cancel.set()
