"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from jobqueue.constants import (
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_BROKER_ERRORS,
    METRIC_LEASE_ACQUIRED,
    METRIC_SHUTDOWN_DRAINS,
    METRIC_TASK_DURATION,
    METRIC_TASKS_ENQUEUED,
    METRIC_TASKS_IN_FLIGHT,
    METRIC_TASKS_PROCESSED,
)


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Task submissions and outcomes
    - Task execution duration
    - Lease acquisition and in-flight work
    - Broker errors and shutdown drains
    - API requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses a private one if not provided;
                pass ``prometheus_client.REGISTRY`` to export process-wide.
        """
        self._registry = registry if registry is not None else CollectorRegistry()

        self.tasks_enqueued = Counter(
            METRIC_TASKS_ENQUEUED,
            "Total number of tasks enqueued",
            ["queue", "task_type"],
            registry=self._registry,
        )

        # One increment per finished attempt
        self.tasks_processed = Counter(
            METRIC_TASKS_PROCESSED,
            "Total number of task attempts by outcome",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.task_duration = Histogram(
            METRIC_TASK_DURATION,
            "Task execution duration in seconds",
            ["queue", "outcome"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.tasks_in_flight = Gauge(
            METRIC_TASKS_IN_FLIGHT,
            "Number of tasks currently executing",
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["queue"],
            registry=self._registry,
        )

        self.broker_errors = Counter(
            METRIC_BROKER_ERRORS,
            "Total number of failed broker operations",
            ["operation"],
            registry=self._registry,
        )

        self.shutdown_drains = Counter(
            METRIC_SHUTDOWN_DRAINS,
            "Shutdown drains by result",
            ["result"],
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of API requests",
            ["method", "endpoint", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "API request latency in seconds",
            ["method", "endpoint"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_task_enqueued(self, queue: str, task_type: str) -> None:
        self.tasks_enqueued.labels(queue=queue, task_type=task_type).inc()

    def record_task_processed(self, queue: str, outcome: str, duration_seconds: float) -> None:
        """Record the outcome of one attempt."""
        self.tasks_processed.labels(queue=queue, outcome=outcome).inc()
        self.task_duration.labels(queue=queue, outcome=outcome).observe(duration_seconds)

    def record_lease_acquired(self, queue: str) -> None:
        self.lease_acquired.labels(queue=queue).inc()

    def record_broker_error(self, operation: str) -> None:
        self.broker_errors.labels(operation=operation).inc()

    def record_drain(self, result: str) -> None:
        self.shutdown_drains.labels(result=result).inc()

    def set_in_flight(self, count: int) -> None:
        self.tasks_in_flight.set(count)

    def record_api_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        self.api_requests.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        self.api_latency.labels(method=method, endpoint=endpoint).observe(duration_seconds)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Create the process-wide metrics collector.

    Args:
        port: If given, also serve the metrics over HTTP on this port.

    Returns:
        MetricsCollector: Collector registered on the default registry.
    """
    metrics = MetricsCollector(REGISTRY)
    if port is not None:
        start_http_server(port)
    return metrics
