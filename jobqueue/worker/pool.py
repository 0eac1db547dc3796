"""
Fixed-concurrency pool that executes leased tasks.

Each lease runs in its own asyncio task holding one slot. The slot is
returned when the task settles (ack, retry, drop) or is abandoned. Per-task
errors are resolved inside the slot and never propagate to the dispatcher.
"""

import asyncio
import logging
import time
from collections.abc import Sequence

from jobqueue.broker.base import Broker, Lease
from jobqueue.constants import TaskOutcome
from jobqueue.errors import BrokerUnavailable, MalformedEnvelope, TaskTimeout, UnknownTaskType
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.retry import Failure, RetryPolicy
from jobqueue.shutdown import Admission, ShutdownCoordinator
from jobqueue.types.envelope import TaskEnvelope
from jobqueue.types.task import TaskContext, TaskResult
from jobqueue.worker.interceptors import Interceptor, compose, default_interceptors
from jobqueue.worker.registry import HandlerRegistry

logger = logging.getLogger(__name__)


def _consume_abandoned(task: asyncio.Task) -> None:
    # Retrieve the outcome so asyncio does not warn about it
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned handler finished with error: {exc}")


class WorkerPool:
    """
    Executes leases handed over by the dispatcher.

    Features:
    - Bounded concurrency via slots (the dispatcher blocks when all are busy)
    - Per-task timeout with slot reclamation
    - Retry with backoff and dead-lettering
    - Heartbeat to extend leases for long-running tasks
    """

    name = "worker-pool"

    def __init__(
        self,
        broker: Broker,
        registry: HandlerRegistry,
        retry_policy: RetryPolicy,
        coordinator: ShutdownCoordinator,
        *,
        worker_id: str,
        concurrency: int,
        visibility_timeout: float,
        heartbeat_interval: float,
        dead_letter_enabled: bool = True,
        interceptors: Sequence[Interceptor] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.worker_id = worker_id
        self.concurrency = concurrency
        self._broker = broker
        self._registry = registry
        self._retry_policy = retry_policy
        self._coordinator = coordinator
        self._visibility_timeout = visibility_timeout
        self._heartbeat_interval = heartbeat_interval
        self._dead_letter_enabled = dead_letter_enabled
        self._metrics = metrics or MetricsCollector()

        if interceptors is None:
            interceptors = default_interceptors()
        self._invoke = compose(interceptors, self._call_handler)

        self._slots = asyncio.Semaphore(concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._active_leases: dict[str, Lease] = {}
        self._heartbeat_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    async def acquire_slot(self) -> None:
        """Wait for a free slot."""
        await self._slots.acquire()

    def release_slot(self) -> None:
        """Return a slot acquired with ``acquire_slot`` that was not used."""
        self._slots.release()

    def start(self, lease: Lease) -> asyncio.Task:
        """Process ``lease`` in the slot the caller acquired."""
        task = asyncio.create_task(self._process(lease))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._slots.release()

    @property
    def busy_slots(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _call_handler(self, context: TaskContext, payload: bytes) -> TaskResult | None:
        handler = self._registry.lookup(context.task_type)
        return await handler(context, payload)

    async def _process(self, lease: Lease) -> None:
        start = time.monotonic()

        try:
            envelope = TaskEnvelope.decode(lease.body)
        except MalformedEnvelope as e:
            logger.error(
                "Dropping malformed envelope",
                extra={"queue": lease.queue, "receipt": lease.receipt, "error": str(e)},
            )
            await self._drop(lease, f"malformed envelope: {e}")
            self._metrics.record_task_processed(
                lease.queue, TaskOutcome.DROPPED, time.monotonic() - start
            )
            return

        admission = self._coordinator.begin(envelope)
        if admission == Admission.NOT_RUNNING:
            # Shutting down: hand the message back untouched
            await self._broker_call("release", self._broker.release(lease))
            return
        if admission == Admission.DUPLICATE:
            logger.warning(
                "Duplicate delivery of a task already executing, discarding",
                extra={"task_id": envelope.id, "attempt": envelope.attempt},
            )
            await self._broker_call("ack", self._broker.ack(lease))
            return

        self._active_leases[lease.receipt] = lease
        try:
            failure = await self._execute(envelope)
            await self._settle(lease, envelope, failure, time.monotonic() - start)
        except asyncio.CancelledError:
            self._metrics.record_task_processed(
                envelope.queue, TaskOutcome.ABANDONED, time.monotonic() - start
            )
            raise
        except Exception:
            logger.exception(
                "Unexpected error processing task",
                extra={"task_id": envelope.id, "task_type": envelope.type},
            )
        finally:
            self._active_leases.pop(lease.receipt, None)
            self._coordinator.finish(envelope.id)

    async def _execute(self, envelope: TaskEnvelope) -> Failure | None:
        """Run the handler chain under the task timeout. Returns None on success."""
        try:
            self._registry.lookup(envelope.type)
        except UnknownTaskType as e:
            logger.error(str(e), extra={"task_id": envelope.id})
            return Failure.from_exception(e)

        context = TaskContext.from_envelope(envelope, self.worker_id)
        execution = asyncio.ensure_future(self._invoke(context, envelope.payload))

        try:
            done, _ = await asyncio.wait({execution}, timeout=envelope.timeout_seconds)
        except asyncio.CancelledError:
            context.cancel()
            execution.cancel()
            raise

        if not done:
            # Reclaim the slot; the handler is only asked to stop
            context.cancel()
            execution.cancel()
            execution.add_done_callback(_consume_abandoned)
            logger.warning(
                "Task timed out, slot reclaimed",
                extra={
                    "task_id": envelope.id,
                    "task_type": envelope.type,
                    "timeout_seconds": envelope.timeout_seconds,
                },
            )
            return Failure.from_exception(TaskTimeout(envelope.timeout_seconds))

        try:
            result = execution.result()
        except asyncio.CancelledError:
            return Failure.transient("handler cancelled")
        except Exception as e:
            return Failure.from_exception(e)

        if result is None or result.success:
            return None
        error = result.error or "handler reported failure"
        return Failure.transient(error) if result.retryable else Failure.fatal(error)

    async def _settle(
        self,
        lease: Lease,
        envelope: TaskEnvelope,
        failure: Failure | None,
        duration: float,
    ) -> None:
        log_extra = {
            "task_id": envelope.id,
            "task_type": envelope.type,
            "queue": envelope.queue,
            "attempt": envelope.attempt,
            "correlation_id": envelope.correlation_id,
        }

        if failure is None:
            outcome = TaskOutcome.SUCCEEDED
            await self._broker_call("ack", self._broker.ack(lease))
            logger.info(
                "Task succeeded",
                extra={**log_extra, "duration": f"{duration:.3f}s"},
            )
        else:
            decision = self._retry_policy.decide(envelope, failure)
            if decision.retry and decision.envelope is not None:
                outcome = TaskOutcome.RETRIED
                await self._broker_call(
                    "retry",
                    self._broker.retry(lease, decision.envelope.encode(), decision.delay_seconds),
                )
                logger.warning(
                    "Task failed, retry scheduled",
                    extra={
                        **log_extra,
                        "error": failure.error,
                        "next_attempt": decision.envelope.attempt,
                        "delay_seconds": round(decision.delay_seconds, 3),
                    },
                )
            else:
                outcome = TaskOutcome.DROPPED
                await self._drop(lease, decision.reason)
                logger.error(
                    "Task dropped",
                    extra={
                        **log_extra,
                        "failure_kind": str(failure.kind),
                        "reason": decision.reason,
                        "dead_lettered": self._dead_letter_enabled,
                    },
                )

        self._metrics.record_task_processed(envelope.queue, outcome, duration)

    async def _drop(self, lease: Lease, reason: str) -> None:
        if self._dead_letter_enabled:
            await self._broker_call("dead_letter", self._broker.dead_letter(lease, reason))
        else:
            await self._broker_call("ack", self._broker.ack(lease))

    async def _broker_call(self, operation: str, call) -> bool:
        """Await a settlement call. The lease is redelivered if it fails."""
        try:
            await call
        except BrokerUnavailable as e:
            self._metrics.record_broker_error(operation)
            logger.error(
                f"Broker {operation} failed, message will be redelivered after lease expiry: {e}"
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on running tasks.

        This prevents the broker from redelivering tasks that are still
        being executed.
        """
        while True:
            await asyncio.sleep(self._heartbeat_interval)

            for lease in list(self._active_leases.values()):
                try:
                    extended = await self._broker.extend(lease, self._visibility_timeout)
                except BrokerUnavailable as e:
                    self._metrics.record_broker_error("extend")
                    logger.warning(f"Failed to extend lease: {e}")
                    continue
                if not extended:
                    logger.warning("Lease lost before task finished", extra={"receipt": lease.receipt})

    # ------------------------------------------------------------------
    # Shutdown participation
    # ------------------------------------------------------------------

    async def stop_accepting(self) -> None:
        # New work only arrives through the dispatcher, which stops itself.
        logger.info("Worker pool draining", extra={"running": len(self._tasks)})

    async def abandon(self) -> None:
        """Cancel executions still running after the drain deadline."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("Abandoned running tasks", extra={"count": len(tasks)})

    async def close(self) -> None:
        """Stop the heartbeat."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
