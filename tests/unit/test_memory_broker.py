"""
Unit tests for the in-memory broker.
"""

import pytest
import pytest_asyncio

from jobqueue.broker.memory import InMemoryBroker
from jobqueue.errors import BrokerUnavailable


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def broker(clock: FakeClock) -> InMemoryBroker:
    broker = InMemoryBroker(clock=clock)
    await broker.connect()
    return broker


class TestInMemoryBroker:
    """Tests for InMemoryBroker."""

    @pytest.mark.asyncio
    async def test_lease_fifo(self, broker: InMemoryBroker):
        await broker.enqueue("default", b"first")
        await broker.enqueue("default", b"second")

        first = await broker.lease("default", 30)
        second = await broker.lease("default", 30)

        assert (first.body, second.body) == (b"first", b"second")
        assert await broker.lease("default", 30) is None

    @pytest.mark.asyncio
    async def test_queues_are_independent(self, broker: InMemoryBroker):
        await broker.enqueue("critical", b"x")

        assert await broker.lease("low", 30) is None
        assert (await broker.lease("critical", 30)).queue == "critical"

    @pytest.mark.asyncio
    async def test_ack_removes_lease(self, broker: InMemoryBroker, clock: FakeClock):
        await broker.enqueue("default", b"x")
        lease = await broker.lease("default", 30)

        await broker.ack(lease)
        clock.now += 60

        assert broker.leased_count() == 0
        assert await broker.lease("default", 30) is None

    @pytest.mark.asyncio
    async def test_expired_lease_is_redelivered(self, broker: InMemoryBroker, clock: FakeClock):
        await broker.enqueue("default", b"x")
        await broker.lease("default", 30)

        clock.now += 31
        redelivered = await broker.lease("default", 30)

        assert redelivered.body == b"x"

    @pytest.mark.asyncio
    async def test_extend_keeps_lease(self, broker: InMemoryBroker, clock: FakeClock):
        await broker.enqueue("default", b"x")
        lease = await broker.lease("default", 30)

        clock.now += 20
        assert await broker.extend(lease, 30) is True
        clock.now += 20

        assert await broker.lease("default", 30) is None

    @pytest.mark.asyncio
    async def test_extend_unknown_lease(self, broker: InMemoryBroker):
        await broker.enqueue("default", b"x")
        lease = await broker.lease("default", 30)
        await broker.ack(lease)

        assert await broker.extend(lease, 30) is False

    @pytest.mark.asyncio
    async def test_retry_is_delayed(self, broker: InMemoryBroker, clock: FakeClock):
        await broker.enqueue("default", b"v1")
        lease = await broker.lease("default", 30)

        await broker.retry(lease, b"v2", delay_seconds=4)

        assert await broker.lease("default", 30) is None
        clock.now += 4
        assert (await broker.lease("default", 30)).body == b"v2"

    @pytest.mark.asyncio
    async def test_dead_letter(self, broker: InMemoryBroker):
        await broker.enqueue("default", b"x")
        lease = await broker.lease("default", 30)

        await broker.dead_letter(lease, "fatal: bad input")

        assert broker.leased_count() == 0
        assert broker.dead_letters[0].reason == "fatal: bad input"
        assert broker.dead_letters[0].body == b"x"

    @pytest.mark.asyncio
    async def test_release_makes_message_visible(self, broker: InMemoryBroker):
        await broker.enqueue("default", b"x")
        lease = await broker.lease("default", 30)

        await broker.release(lease)

        assert (await broker.lease("default", 30)).body == b"x"

    @pytest.mark.asyncio
    async def test_closed_broker_is_unavailable(self, broker: InMemoryBroker):
        await broker.close()

        assert await broker.ping() is False
        with pytest.raises(BrokerUnavailable):
            await broker.enqueue("default", b"x")
