"""
Broker module.
Contains the broker interface and its Redis and in-memory adapters.
"""

from jobqueue.broker.base import Broker, Lease
from jobqueue.broker.memory import DeadLetter, InMemoryBroker
from jobqueue.broker.redis import RedisBroker
from jobqueue.config import Settings
from jobqueue.constants import BrokerBackend


def create_broker(settings: Settings) -> Broker:
    """Build the broker selected by ``settings.broker_backend``."""
    if settings.broker_backend == BrokerBackend.MEMORY:
        return InMemoryBroker()
    return RedisBroker(settings.redis_url, key_prefix=settings.broker_key_prefix)


__all__ = [
    "Broker",
    "Lease",
    "InMemoryBroker",
    "DeadLetter",
    "RedisBroker",
    "create_broker",
]
