"""
Producer-side API for submitting tasks.

Used by the HTTP layer. Every successful call corresponds to a write the
broker confirmed; anything else raises.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from opentelemetry import trace

from jobqueue.broker.base import Broker
from jobqueue.config import Settings
from jobqueue.constants import SPAN_ENQUEUE_TASK
from jobqueue.errors import BrokerUnavailable, InvalidEnqueueOptions, QueueUnavailable
from jobqueue.observability.logging import get_correlation_id
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.types.api import QueueStatus
from jobqueue.types.envelope import TaskEnvelope, new_task_id

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class EnqueueOptions:
    """Per-submission options. Unset fields take the client defaults."""

    queue: str | None = None
    max_retries: int | None = None
    timeout_seconds: float | None = None


class EnqueueClient:
    """Validates submissions, wraps them in envelopes and writes them to the broker."""

    def __init__(
        self,
        broker: Broker,
        queues: Mapping[str, int],
        *,
        default_queue: str,
        default_max_retries: int = 3,
        default_timeout_seconds: float = 30.0,
        enqueue_timeout_seconds: float = 2.0,
        dispatch_policy: str = "weighted",
        metrics: MetricsCollector | None = None,
    ):
        if default_queue not in queues:
            raise ValueError(f"default queue {default_queue!r} is not configured")

        self._broker = broker
        self._queues = dict(queues)
        self._default_queue = default_queue
        self._default_max_retries = default_max_retries
        self._default_timeout = default_timeout_seconds
        self._enqueue_timeout = enqueue_timeout_seconds
        self._dispatch_policy = dispatch_policy
        self._metrics = metrics or MetricsCollector()

    @classmethod
    def from_settings(
        cls,
        broker: Broker,
        settings: Settings,
        metrics: MetricsCollector | None = None,
    ) -> "EnqueueClient":
        return cls(
            broker,
            settings.queues,
            default_queue=settings.default_queue,
            default_max_retries=settings.default_max_retries,
            default_timeout_seconds=settings.default_task_timeout_seconds,
            enqueue_timeout_seconds=settings.enqueue_timeout_seconds,
            dispatch_policy=str(settings.dispatch_policy),
            metrics=metrics,
        )

    @property
    def default_queue(self) -> str:
        return self._default_queue

    @property
    def queue_names(self) -> list[str]:
        """Configured queues, highest weight first."""
        return sorted(self._queues, key=lambda name: -self._queues[name])

    def _resolve(self, options: EnqueueOptions) -> tuple[str, int, float]:
        queue = options.queue or self._default_queue
        if queue not in self._queues:
            raise InvalidEnqueueOptions(
                f"Unknown queue {queue!r}; configured queues: {', '.join(self.queue_names)}"
            )

        max_retries = self._default_max_retries if options.max_retries is None else options.max_retries
        if max_retries < 0:
            raise InvalidEnqueueOptions("max_retries must be >= 0")

        timeout = self._default_timeout if options.timeout_seconds is None else options.timeout_seconds
        if timeout <= 0:
            raise InvalidEnqueueOptions("timeout_seconds must be positive")

        return queue, max_retries, timeout

    async def enqueue(
        self,
        task_type: str,
        payload: bytes | str = b"",
        options: EnqueueOptions | None = None,
        *,
        correlation_id: str | None = None,
        deadline_seconds: float | None = None,
    ) -> str:
        """
        Submit a task.

        Args:
            task_type: Registered handler type.
            payload: Opaque task input; strings are UTF-8 encoded.
            options: Queue, retry and timeout overrides.
            correlation_id: Overrides the id bound to the current request.
            deadline_seconds: Upper bound on the broker write.

        Returns:
            The task id.

        Raises:
            InvalidEnqueueOptions: If the type or options are invalid.
            QueueUnavailable: If the broker did not confirm the write in time.
        """
        if not task_type:
            raise InvalidEnqueueOptions("task type must be a non-empty string")
        queue, max_retries, timeout = self._resolve(options or EnqueueOptions())
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        envelope = TaskEnvelope(
            type=task_type,
            payload=payload,
            queue=queue,
            max_retries=max_retries,
            timeout_seconds=timeout,
            correlation_id=correlation_id or get_correlation_id() or new_task_id(),
        )
        deadline = deadline_seconds or self._enqueue_timeout

        with tracer.start_as_current_span(SPAN_ENQUEUE_TASK) as span:
            span.set_attribute("task_id", envelope.id)
            span.set_attribute("task_type", task_type)
            span.set_attribute("queue", queue)
            try:
                async with asyncio.timeout(deadline):
                    await self._broker.enqueue(queue, envelope.encode())
            except TimeoutError as e:
                self._metrics.record_broker_error("enqueue")
                raise QueueUnavailable(
                    f"Broker did not confirm enqueue within {deadline:g}s"
                ) from e
            except BrokerUnavailable as e:
                self._metrics.record_broker_error("enqueue")
                raise QueueUnavailable(str(e)) from e

        self._metrics.record_task_enqueued(queue, task_type)
        logger.info(
            "Task enqueued",
            extra={
                "task_id": envelope.id,
                "task_type": task_type,
                "queue": queue,
                "correlation_id": envelope.correlation_id,
            },
        )
        return envelope.id

    async def status(self) -> QueueStatus:
        """Configured queues and whether the broker answers."""
        try:
            async with asyncio.timeout(self._enqueue_timeout):
                connected = await self._broker.ping()
        except TimeoutError:
            connected = False

        return QueueStatus(
            broker="connected" if connected else "disconnected",
            queues=self.queue_names,
            dispatch_policy=self._dispatch_policy,
        )
