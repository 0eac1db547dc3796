"""
Worker process for executing tasks.

The worker pulls tasks from the broker across weighted queues, executes
them, and handles retries and failures according to the retry policy.
"""

import os
import sys
import uuid
from collections.abc import Sequence

from jobqueue.broker.base import Broker
from jobqueue.config import Settings
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.retry import RetryPolicy
from jobqueue.shutdown import DrainReport, ShutdownCoordinator
from jobqueue.worker.dispatcher import Dispatcher, build_selector
from jobqueue.worker.handlers import build_registry
from jobqueue.worker.interceptors import Interceptor
from jobqueue.worker.pool import WorkerPool
from jobqueue.worker.registry import HandlerRegistry


def default_worker_id() -> str:
    """Hostname + PID + a short random suffix."""
    return f"{os.uname().nodename}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class Worker:
    """
    Task worker: a dispatcher feeding a fixed-size pool.

    Both register with the coordinator, which stops the dispatcher and
    drains the pool on shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        broker: Broker,
        coordinator: ShutdownCoordinator,
        registry: HandlerRegistry | None = None,
        metrics: MetricsCollector | None = None,
        interceptors: Sequence[Interceptor] | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.worker_id = settings.worker_id or default_worker_id()
        self.coordinator = coordinator
        self.registry = registry if registry is not None else build_registry()
        metrics = metrics or MetricsCollector()

        self.pool = WorkerPool(
            broker,
            self.registry,
            retry_policy
            or RetryPolicy(
                base_delay_seconds=settings.retry_base_delay_seconds,
                jitter_factor=settings.retry_jitter_factor,
            ),
            coordinator,
            worker_id=self.worker_id,
            concurrency=settings.worker_concurrency,
            visibility_timeout=settings.broker_visibility_timeout_seconds,
            heartbeat_interval=settings.worker_heartbeat_interval_seconds,
            dead_letter_enabled=settings.dead_letter_enabled,
            interceptors=interceptors,
            metrics=metrics,
        )
        self.dispatcher = Dispatcher(
            broker,
            self.pool,
            build_selector(settings.dispatch_policy, settings.queues),
            coordinator,
            poll_interval=settings.worker_poll_interval_seconds,
            visibility_timeout=settings.broker_visibility_timeout_seconds,
            metrics=metrics,
        )

        coordinator.add_participant(self.dispatcher)
        coordinator.add_participant(self.pool)

    def start(self) -> None:
        """Start the heartbeat and the dispatch loop."""
        self.pool.start_heartbeat()
        self.dispatcher.start()

    async def close(self) -> None:
        await self.pool.close()

    async def run(self) -> DrainReport:
        """Run until shutdown is requested, then drain."""
        self.start()
        try:
            await self.coordinator.wait_for_shutdown_request()
            return await self.coordinator.drain()
        finally:
            await self.close()


def run() -> None:
    """Run the worker."""
    from jobqueue.bootstrap import main

    sys.exit(main(api=False, worker=True))


if __name__ == "__main__":
    run()
