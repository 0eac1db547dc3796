"""
Broker interface.

The broker owns all queue and lease state. Delivery is at-least-once: a
lease that is neither acked nor extended before its visibility timeout is
handed out again.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Lease:
    """
    Temporary ownership of one queued message.

    ``receipt`` identifies the lease to the broker that issued it.
    """

    queue: str
    body: bytes
    receipt: str


class Broker(ABC):
    """Abstract base class for queue brokers."""

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the connection and verify the broker answers.

        Raises:
            BrokerUnavailable: If the broker cannot be reached.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the broker is reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""

    @abstractmethod
    async def enqueue(self, queue: str, body: bytes, delay_seconds: float = 0.0) -> None:
        """Store a message, visible after ``delay_seconds``."""

    @abstractmethod
    async def lease(self, queue: str, visibility_timeout: float) -> Lease | None:
        """Take the next visible message from ``queue`` without blocking."""

    @abstractmethod
    async def ack(self, lease: Lease) -> None:
        """Remove a leased message for good."""

    @abstractmethod
    async def retry(self, lease: Lease, body: bytes, delay_seconds: float) -> None:
        """Replace a leased message with ``body``, visible after ``delay_seconds``."""

    @abstractmethod
    async def dead_letter(self, lease: Lease, reason: str) -> None:
        """Move a leased message to the dead-letter record."""

    @abstractmethod
    async def release(self, lease: Lease) -> None:
        """Return a leased message to its queue unchanged and immediately visible."""

    @abstractmethod
    async def extend(self, lease: Lease, visibility_timeout: float) -> bool:
        """Push back the lease deadline. Returns False if the lease is gone."""
