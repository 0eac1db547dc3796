"""
Unit tests for queue selection and the dispatcher.
"""

from collections import Counter

import pytest
import pytest_asyncio

from jobqueue.broker.memory import InMemoryBroker
from jobqueue.constants import DEFAULT_QUEUE_WEIGHTS, DispatchPolicy
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.retry import RetryPolicy
from jobqueue.shutdown import ShutdownCoordinator
from jobqueue.worker.dispatcher import (
    Dispatcher,
    StrictPrioritySelector,
    WeightedFairSelector,
    build_selector,
)
from jobqueue.worker.pool import WorkerPool
from jobqueue.worker.registry import HandlerRegistry

WEIGHTS = {"critical": 6, "default": 3, "low": 1}


class TestSelectors:
    """Tests for queue selectors."""

    def test_default_weights(self):
        assert DEFAULT_QUEUE_WEIGHTS == WEIGHTS

    def test_strict_orders_by_weight(self):
        selector = StrictPrioritySelector({"low": 1, "critical": 6, "default": 3})

        assert selector.candidates() == ["critical", "default", "low"]
        assert selector.candidates() == ["critical", "default", "low"]

    def test_weighted_exact_over_full_cycles(self):
        """Every sum(weights) selections credit each queue exactly its weight."""
        selector = WeightedFairSelector(WEIGHTS)

        counts = Counter(selector.select() for _ in range(1000))

        assert counts == {"critical": 600, "default": 300, "low": 100}

    def test_weighted_interleaves(self):
        """Selections are spread across the cycle rather than batched per queue."""
        selector = WeightedFairSelector(WEIGHTS)

        cycle = [selector.select() for _ in range(10)]

        assert cycle == [
            "critical", "default", "critical", "critical", "default",
            "critical", "low", "critical", "default", "critical",
        ]

    def test_weighted_candidates_fall_back_by_weight(self):
        selector = WeightedFairSelector(WEIGHTS)

        candidates = selector.candidates()

        assert sorted(candidates) == sorted(WEIGHTS)
        assert candidates[1:] == [q for q in ["critical", "default", "low"] if q != candidates[0]]

    @pytest.mark.parametrize("weights", [{}, {"a": 0}, {"a": -1}, {"a": 1.5}])
    def test_invalid_weights_rejected(self, weights):
        with pytest.raises(ValueError):
            WeightedFairSelector(weights)

    def test_build_selector(self):
        assert isinstance(build_selector(DispatchPolicy.STRICT, WEIGHTS), StrictPrioritySelector)
        assert isinstance(build_selector(DispatchPolicy.WEIGHTED, WEIGHTS), WeightedFairSelector)


class TestDispatcherSelection:
    """Lease order observed through the dispatcher against a real broker."""

    @pytest_asyncio.fixture
    async def loaded_broker(self) -> InMemoryBroker:
        broker = InMemoryBroker()
        await broker.connect()
        for queue in WEIGHTS:
            for i in range(1000):
                await broker.enqueue(queue, f"{queue}-{i}".encode())
        return broker

    def make_dispatcher(self, broker: InMemoryBroker, policy: DispatchPolicy) -> Dispatcher:
        metrics = MetricsCollector()
        coordinator = ShutdownCoordinator(1.0, metrics=metrics)
        pool = WorkerPool(
            broker,
            HandlerRegistry(),
            RetryPolicy(),
            coordinator,
            worker_id="test-worker",
            concurrency=1,
            visibility_timeout=30.0,
            heartbeat_interval=10.0,
            metrics=metrics,
        )
        return Dispatcher(
            broker,
            pool,
            build_selector(policy, WEIGHTS),
            coordinator,
            poll_interval=0.01,
            visibility_timeout=30.0,
            metrics=metrics,
        )

    @pytest.mark.asyncio
    async def test_weighted_fractions(self, loaded_broker: InMemoryBroker):
        """With every queue non-empty, lease fractions match 0.6/0.3/0.1 within 5%."""
        dispatcher = self.make_dispatcher(loaded_broker, DispatchPolicy.WEIGHTED)

        counts = Counter()
        for _ in range(1000):
            lease = await dispatcher._next_lease()
            counts[lease.queue] += 1

        assert abs(counts["critical"] / 1000 - 0.6) <= 0.05
        assert abs(counts["default"] / 1000 - 0.3) <= 0.05
        assert abs(counts["low"] / 1000 - 0.1) <= 0.05

    @pytest.mark.asyncio
    async def test_strict_starves_lower_queues(self, loaded_broker: InMemoryBroker):
        dispatcher = self.make_dispatcher(loaded_broker, DispatchPolicy.STRICT)

        queues = {(await dispatcher._next_lease()).queue for _ in range(100)}

        assert queues == {"critical"}

    @pytest.mark.asyncio
    async def test_empty_credited_queue_falls_through(self):
        """When the credited queue is empty the next queue is leased instead."""
        broker = InMemoryBroker()
        await broker.connect()
        await broker.enqueue("low", b"only")
        dispatcher = self.make_dispatcher(broker, DispatchPolicy.WEIGHTED)

        lease = await dispatcher._next_lease()

        assert lease.queue == "low"
        assert await dispatcher._next_lease() is None
