"""
Unit tests for handler interceptors and the task context.
"""

import time

import pytest
import structlog
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from jobqueue.constants import SPAN_EXECUTE_TASK
from jobqueue.types.envelope import TaskEnvelope
from jobqueue.types.task import TaskContext, TaskResult
from jobqueue.worker.interceptors import LoggingInterceptor, TracingInterceptor, compose


@pytest.fixture
def task_context() -> TaskContext:
    envelope = TaskEnvelope(
        type="echo",
        queue="default",
        max_retries=3,
        attempt=1,
        timeout_seconds=10,
        correlation_id="req-1",
    )
    return TaskContext.from_envelope(envelope, "test-worker")


class Recorder:
    """Interceptor that records entry order."""

    def __init__(self, name: str, calls: list[str]):
        self.name = name
        self.calls = calls

    def intercept(self, next_invoker):
        async def invoke(context, payload):
            self.calls.append(self.name)
            return await next_invoker(context, payload)

        return invoke


class TestCompose:
    """Tests for interceptor composition."""

    @pytest.mark.asyncio
    async def test_first_interceptor_is_outermost(self, task_context: TaskContext):
        calls: list[str] = []

        async def core(context, payload):
            calls.append("core")
            return TaskResult(success=True)

        invoke = compose([Recorder("outer", calls), Recorder("inner", calls)], core)
        await invoke(task_context, b"")

        assert calls == ["outer", "inner", "core"]

    @pytest.mark.asyncio
    async def test_no_interceptors(self, task_context: TaskContext):
        async def core(context, payload):
            return None

        assert await compose([], core)(task_context, b"") is None


class TestLoggingInterceptor:
    """Tests for LoggingInterceptor."""

    @pytest.mark.asyncio
    async def test_binds_task_context(self, task_context: TaskContext):
        seen = {}

        async def core(context, payload):
            seen.update(structlog.contextvars.get_contextvars())
            return TaskResult(success=True)

        await LoggingInterceptor().intercept(core)(task_context, b"")

        assert seen["task_id"] == task_context.task_id
        assert seen["correlation_id"] == "req-1"
        assert "task_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_exceptions_propagate(self, task_context: TaskContext):
        async def core(context, payload):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await LoggingInterceptor().intercept(core)(task_context, b"")


class TestTracingInterceptor:
    """Tests for TracingInterceptor."""

    @pytest.fixture
    def exporter(self) -> InMemorySpanExporter:
        return InMemorySpanExporter()

    @pytest.fixture
    def interceptor(self, exporter: InMemorySpanExporter) -> TracingInterceptor:
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        return TracingInterceptor(provider.get_tracer("test"))

    @pytest.mark.asyncio
    async def test_span_per_execution(
        self,
        task_context: TaskContext,
        interceptor: TracingInterceptor,
        exporter: InMemorySpanExporter,
    ):
        async def core(context, payload):
            return TaskResult(success=True)

        await interceptor.intercept(core)(task_context, b"")

        (span,) = exporter.get_finished_spans()
        assert span.name == SPAN_EXECUTE_TASK
        assert span.attributes["task_id"] == task_context.task_id
        assert span.attributes["attempt"] == 1

    @pytest.mark.asyncio
    async def test_failed_result_marks_span(
        self,
        task_context: TaskContext,
        interceptor: TracingInterceptor,
        exporter: InMemorySpanExporter,
    ):
        async def core(context, payload):
            return TaskResult(success=False, error="nope")

        await interceptor.intercept(core)(task_context, b"")

        assert exporter.get_finished_spans()[0].status.status_code == StatusCode.ERROR


class TestTaskContext:
    """Tests for TaskContext."""

    def test_from_envelope(self, task_context: TaskContext):
        assert task_context.task_type == "echo"
        assert task_context.worker_id == "test-worker"
        assert task_context.remaining_retries == 2
        assert task_context.is_last_attempt is False
        assert 9 < task_context.time_remaining_seconds <= 10

    def test_cancel(self, task_context: TaskContext):
        assert task_context.cancelled is False

        task_context.cancel()

        assert task_context.cancelled is True

    def test_time_remaining_never_negative(self, task_context: TaskContext):
        task_context.deadline = time.monotonic() - 5

        assert task_context.time_remaining_seconds == 0.0
