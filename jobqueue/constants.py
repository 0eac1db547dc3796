"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class ShutdownState(StrEnum):
    """
    Process-wide lifecycle state.

    State transitions (forward only):
    - RUNNING -> DRAINING (termination requested)
    - DRAINING -> STOPPED (in-flight set empty, or drain deadline elapsed)
    """

    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class DispatchPolicy(StrEnum):
    """Queue selection policy used by the dispatcher."""

    STRICT = "strict"
    WEIGHTED = "weighted"


class BrokerBackend(StrEnum):
    """Available broker adapters."""

    REDIS = "redis"
    MEMORY = "memory"


class LogOutput(StrEnum):
    """Where log records are written."""

    STDOUT = "stdout"
    FILE = "file"
    BOTH = "both"


class FailureKind(StrEnum):
    """Classification of a failed task attempt."""

    TRANSIENT = "transient"
    FATAL = "fatal"


class TaskOutcome(StrEnum):
    """Terminal result of one execution attempt, as reported in metrics."""

    SUCCEEDED = "succeeded"
    RETRIED = "retried"
    DROPPED = "dropped"
    ABANDONED = "abandoned"


# Queue names, highest priority first
QUEUE_CRITICAL = "critical"
QUEUE_DEFAULT = "default"
QUEUE_LOW = "low"

DEFAULT_QUEUE_WEIGHTS: dict[str, int] = {
    QUEUE_CRITICAL: 6,
    QUEUE_DEFAULT: 3,
    QUEUE_LOW: 1,
}

# Task types
TASK_WORKER_PING = "worker:ping"

# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_TASK_TIMEOUT_SECONDS = 30.0

# API constants
API_V1_PREFIX = "/v1"
REQUEST_ID_HEADER = "X-Request-ID"

# Metrics names
METRIC_TASKS_ENQUEUED = "tasks_enqueued_total"
METRIC_TASKS_PROCESSED = "tasks_processed_total"
METRIC_TASK_DURATION = "task_duration_seconds"
METRIC_TASKS_IN_FLIGHT = "tasks_in_flight"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_BROKER_ERRORS = "broker_errors_total"
METRIC_SHUTDOWN_DRAINS = "shutdown_drains_total"
METRIC_API_REQUESTS = "api_requests_total"
METRIC_API_LATENCY = "api_request_latency_seconds"

# Trace span names
SPAN_ENQUEUE_TASK = "enqueue_task"
SPAN_EXECUTE_TASK = "execute_task"
