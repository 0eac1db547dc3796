"""
Interceptors composed around handler invocation.

An interceptor wraps the next invoker in the chain and returns a new one.
The first interceptor in the list is the outermost.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode, Tracer

from jobqueue.constants import SPAN_EXECUTE_TASK
from jobqueue.types.task import TaskContext, TaskResult

logger = logging.getLogger(__name__)

Invoker = Callable[[TaskContext, bytes], Awaitable[TaskResult | None]]


class Interceptor(Protocol):
    def intercept(self, next_invoker: Invoker) -> Invoker: ...


def compose(interceptors: Sequence[Interceptor], core: Invoker) -> Invoker:
    """Wrap ``core`` so that ``interceptors[0]`` runs first."""
    invoker = core
    for interceptor in reversed(interceptors):
        invoker = interceptor.intercept(invoker)
    return invoker


class LoggingInterceptor:
    """Logs task start and completion with duration, bound to the task's log context."""

    def intercept(self, next_invoker: Invoker) -> Invoker:
        async def invoke(context: TaskContext, payload: bytes) -> TaskResult | None:
            with structlog.contextvars.bound_contextvars(
                task_id=context.task_id,
                task_type=context.task_type,
                correlation_id=context.correlation_id,
            ):
                start = time.monotonic()
                logger.info(
                    "task started",
                    extra={"queue": context.queue, "attempt": context.attempt},
                )
                try:
                    result = await next_invoker(context, payload)
                except Exception as e:
                    logger.error(
                        "task failed",
                        extra={
                            "error": str(e),
                            "duration_ms": round((time.monotonic() - start) * 1000, 2),
                        },
                    )
                    raise

                duration_ms = round((time.monotonic() - start) * 1000, 2)
                if result is not None and not result.success:
                    logger.error(
                        "task failed",
                        extra={"error": result.error, "duration_ms": duration_ms},
                    )
                else:
                    logger.info("task completed", extra={"duration_ms": duration_ms})
                return result

        return invoke


class TracingInterceptor:
    """Runs each execution inside an OpenTelemetry span."""

    def __init__(self, tracer: Tracer | None = None):
        self._tracer = tracer or trace.get_tracer("jobqueue.worker")

    def intercept(self, next_invoker: Invoker) -> Invoker:
        async def invoke(context: TaskContext, payload: bytes) -> TaskResult | None:
            with self._tracer.start_as_current_span(SPAN_EXECUTE_TASK) as span:
                span.set_attribute("task_id", context.task_id)
                span.set_attribute("task_type", context.task_type)
                span.set_attribute("queue", context.queue)
                span.set_attribute("attempt", context.attempt)
                span.set_attribute("correlation_id", context.correlation_id)

                result = await next_invoker(context, payload)
                if result is not None and not result.success:
                    span.set_status(Status(StatusCode.ERROR, result.error or "task failed"))
                return result

        return invoke


def default_interceptors() -> list[Interceptor]:
    return [LoggingInterceptor(), TracingInterceptor()]
