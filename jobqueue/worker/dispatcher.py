"""
Priority dispatcher.

A single control loop that waits for a free worker slot, picks a queue
according to the configured policy, leases one message and hands it to the
pool.

Policies:
- strict: always poll the highest-weight queue first. Lower queues are served
  only while every higher one is empty, so sustained high-priority load
  starves them.
- weighted: smooth weighted round-robin. Over every full cycle of
  ``sum(weights)`` selections, queue *i* is credited exactly ``weight_i``
  times. When the credited queue is empty the remaining queues are tried by
  weight so the slot is not wasted.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping

from jobqueue.broker.base import Broker, Lease
from jobqueue.constants import DispatchPolicy
from jobqueue.errors import BrokerUnavailable
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.shutdown import ShutdownCoordinator
from jobqueue.worker.pool import WorkerPool

logger = logging.getLogger(__name__)


class QueueSelector(ABC):
    """Orders queues for the next lease attempt."""

    def __init__(self, weights: Mapping[str, int]):
        if not weights:
            raise ValueError("at least one queue is required")
        for name, weight in weights.items():
            if not isinstance(weight, int) or weight <= 0:
                raise ValueError(f"queue {name!r} must have a positive integer weight")

        self.weights = dict(weights)
        # Highest weight first; ties keep configuration order
        self._by_weight = sorted(self.weights, key=lambda name: -self.weights[name])

    @abstractmethod
    def candidates(self) -> list[str]:
        """Queues to poll, in order, for one dispatch."""


class StrictPrioritySelector(QueueSelector):
    def candidates(self) -> list[str]:
        return list(self._by_weight)


class WeightedFairSelector(QueueSelector):
    def __init__(self, weights: Mapping[str, int]):
        super().__init__(weights)
        self._total = sum(self.weights.values())
        self._credit = {name: 0 for name in self.weights}

    def select(self) -> str:
        """Credit every queue by its weight and pick the richest."""
        for name, weight in self.weights.items():
            self._credit[name] += weight
        chosen = max(self._by_weight, key=lambda name: self._credit[name])
        self._credit[chosen] -= self._total
        return chosen

    def candidates(self) -> list[str]:
        chosen = self.select()
        return [chosen] + [name for name in self._by_weight if name != chosen]


def build_selector(policy: DispatchPolicy, weights: Mapping[str, int]) -> QueueSelector:
    if policy == DispatchPolicy.STRICT:
        return StrictPrioritySelector(weights)
    return WeightedFairSelector(weights)


class Dispatcher:
    """Feeds leases from the broker into the worker pool."""

    name = "dispatcher"

    def __init__(
        self,
        broker: Broker,
        pool: WorkerPool,
        selector: QueueSelector,
        coordinator: ShutdownCoordinator,
        *,
        poll_interval: float,
        visibility_timeout: float,
        metrics: MetricsCollector | None = None,
    ):
        self._broker = broker
        self._pool = pool
        self._selector = selector
        self._coordinator = coordinator
        self._poll_interval = poll_interval
        self._visibility_timeout = visibility_timeout
        self._metrics = metrics or MetricsCollector()
        self._task: asyncio.Task | None = None

    def start(self) -> asyncio.Task:
        """Run the dispatch loop in the background."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            self._task.add_done_callback(self._on_loop_done)
        return self._task

    def _on_loop_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Dispatcher crashed", exc_info=exc)
            self._coordinator.request_shutdown(f"dispatcher failed: {exc}", fatal=True)

    async def run(self) -> None:
        logger.info(
            "Dispatcher starting",
            extra={
                "queues": self._selector.weights,
                "policy": type(self._selector).__name__,
                "concurrency": self._pool.concurrency,
            },
        )

        while self._coordinator.is_running:
            # Backpressure: never lease more than the pool can run
            await self._pool.acquire_slot()
            if not self._coordinator.is_running:
                self._pool.release_slot()
                break

            try:
                lease = await self._next_lease()
            except BrokerUnavailable as e:
                self._pool.release_slot()
                self._metrics.record_broker_error("lease")
                logger.error(f"Lease request failed: {e}")
                await self._coordinator.wait_for_shutdown_request(self._poll_interval)
                continue
            except BaseException:
                self._pool.release_slot()
                raise

            if lease is None:
                self._pool.release_slot()
                await self._coordinator.wait_for_shutdown_request(self._poll_interval)
                continue

            self._pool.start(lease)

        logger.info("Dispatcher stopped requesting leases")

    async def _next_lease(self) -> Lease | None:
        for queue in self._selector.candidates():
            lease = await self._broker.lease(queue, self._visibility_timeout)
            if lease is not None:
                self._metrics.record_lease_acquired(queue)
                return lease
        return None

    async def stop_accepting(self) -> None:
        """Wait for the loop to notice shutdown; cancel it if blocked on a slot."""
        if self._task is None or self._task.done():
            return
        await asyncio.wait({self._task}, timeout=self._poll_interval)
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def abandon(self) -> None:
        # Nothing to abandon: the loop holds no work of its own.
        return None
