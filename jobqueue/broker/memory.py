"""
In-process broker.

Implements the broker contract with heaps and dicts. It backs the test
suite and single-process deployments (``jobqueue-server`` with
``BROKER_BACKEND=memory``); messages do not survive a restart.
"""

import heapq
import itertools
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from jobqueue.broker.base import Broker, Lease
from jobqueue.errors import BrokerUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeadLetter:
    """A message that will not be delivered again."""

    queue: str
    body: bytes
    reason: str
    failed_at: float


class InMemoryBroker(Broker):
    """Broker holding all state in process memory."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._ready: dict[str, list[tuple[float, int, bytes]]] = defaultdict(list)
        self._leased: dict[str, tuple[str, bytes, float]] = {}
        self._seq = itertools.count()
        self._connected = False
        self.dead_letters: list[DeadLetter] = []

    async def connect(self) -> None:
        self._connected = True
        logger.info("In-memory broker ready")

    async def ping(self) -> bool:
        return self._connected

    async def close(self) -> None:
        self._connected = False
        logger.info("In-memory broker closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise BrokerUnavailable("in-memory broker is not connected")

    def _push(self, queue: str, body: bytes, delay_seconds: float) -> None:
        available_at = self._clock() + max(0.0, delay_seconds)
        heapq.heappush(self._ready[queue], (available_at, next(self._seq), body))

    def _requeue_expired(self) -> None:
        now = self._clock()
        expired = [r for r, (_, _, deadline) in self._leased.items() if deadline <= now]
        for receipt in expired:
            queue, body, _ = self._leased.pop(receipt)
            self._push(queue, body, 0.0)
            logger.warning("Lease expired, message requeued", extra={"queue": queue})

    async def enqueue(self, queue: str, body: bytes, delay_seconds: float = 0.0) -> None:
        self._check_connected()
        self._push(queue, body, delay_seconds)

    async def lease(self, queue: str, visibility_timeout: float) -> Lease | None:
        self._check_connected()
        self._requeue_expired()

        heap = self._ready.get(queue)
        if not heap or heap[0][0] > self._clock():
            return None

        _, _, body = heapq.heappop(heap)
        receipt = uuid4().hex
        self._leased[receipt] = (queue, body, self._clock() + visibility_timeout)
        return Lease(queue=queue, body=body, receipt=receipt)

    async def ack(self, lease: Lease) -> None:
        self._check_connected()
        self._leased.pop(lease.receipt, None)

    async def retry(self, lease: Lease, body: bytes, delay_seconds: float) -> None:
        self._check_connected()
        self._leased.pop(lease.receipt, None)
        self._push(lease.queue, body, delay_seconds)

    async def dead_letter(self, lease: Lease, reason: str) -> None:
        self._check_connected()
        self._leased.pop(lease.receipt, None)
        self.dead_letters.append(
            DeadLetter(queue=lease.queue, body=lease.body, reason=reason, failed_at=time.time())
        )

    async def release(self, lease: Lease) -> None:
        self._check_connected()
        if self._leased.pop(lease.receipt, None) is not None:
            self._push(lease.queue, lease.body, 0.0)

    async def extend(self, lease: Lease, visibility_timeout: float) -> bool:
        self._check_connected()
        entry = self._leased.get(lease.receipt)
        if entry is None:
            return False
        queue, body, _ = entry
        self._leased[lease.receipt] = (queue, body, self._clock() + visibility_timeout)
        return True

    def depth(self, queue: str) -> int:
        """Number of queued messages, delayed ones included."""
        return len(self._ready.get(queue, ()))

    def leased_count(self) -> int:
        return len(self._leased)
