"""
Exception taxonomy for the task pipeline.

Per-task errors (``UnknownTaskType``, ``MalformedEnvelope``,
``TransientFailure``, ``FatalFailure``) are resolved inside the worker slot
that produced them. ``BrokerUnavailable`` and ``QueueUnavailable`` reach the
caller. ``StartupError`` aborts the process.
"""


class JobQueueError(Exception):
    """Base class for all jobqueue errors."""


class UnknownTaskType(JobQueueError, LookupError):
    """No handler is registered for a task type."""

    def __init__(self, task_type: str):
        super().__init__(f"No handler registered for task type: {task_type}")
        self.task_type = task_type


class DuplicateTaskType(JobQueueError, ValueError):
    """A handler is already registered for a task type."""

    def __init__(self, task_type: str):
        super().__init__(f"Handler already registered for task type: {task_type}")
        self.task_type = task_type


class MalformedEnvelope(JobQueueError, ValueError):
    """Bytes received from the broker do not decode to a valid envelope."""


class TaskFailure(JobQueueError):
    """Raised by handlers to signal a classified failure."""


class TransientFailure(TaskFailure):
    """The attempt failed but may succeed if retried."""


class FatalFailure(TaskFailure):
    """The task can never succeed; it must not be retried."""


class TaskTimeout(TransientFailure):
    """The handler did not finish within the task timeout."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Task exceeded timeout of {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class BrokerUnavailable(JobQueueError):
    """The broker could not be reached or refused the operation."""


class QueueUnavailable(JobQueueError):
    """An enqueue could not be confirmed by the broker."""


class InvalidEnqueueOptions(JobQueueError, ValueError):
    """Enqueue options failed validation."""


class DrainTimeout(JobQueueError):
    """Shutdown could not drain in-flight work before the deadline."""

    def __init__(self, timeout_seconds: float, abandoned: int):
        super().__init__(
            f"Drain deadline of {timeout_seconds:g}s elapsed with {abandoned} task(s) in flight"
        )
        self.timeout_seconds = timeout_seconds
        self.abandoned = abandoned


class StartupError(JobQueueError):
    """A required dependency could not be initialized at startup."""
