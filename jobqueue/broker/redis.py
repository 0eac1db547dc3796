"""
Redis-backed broker.

Layout per queue:
- ``{prefix}:queue:{name}``: sorted set of messages scored by the time they
  become visible (delayed retries sit in the future).
- ``{prefix}:processing:{name}``: sorted set of leased messages scored by
  lease deadline.
- ``{prefix}:dead``: list of dead-letter records (JSON).

Leasing runs as one Lua script: expired leases are moved back to the queue
first, then the oldest visible message is moved to the processing set.
Messages are identified by their bytes, so bodies must be unique; encoded
envelopes are.
"""

import base64
import hashlib
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import RedisError

from jobqueue.broker.base import Broker, Lease
from jobqueue.errors import BrokerUnavailable

logger = logging.getLogger(__name__)

LEASE_SCRIPT = """
local expired = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[1])
for _, member in ipairs(expired) do
    redis.call('ZREM', KEYS[2], member)
    redis.call('ZADD', KEYS[1], ARGV[1], member)
end

local items = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, 1)
if #items == 0 then
    return false
end

local member = items[1]
redis.call('ZREM', KEYS[1], member)
redis.call('ZADD', KEYS[2], tonumber(ARGV[1]) + tonumber(ARGV[2]), member)
return member
"""

RELEASE_SCRIPT = """
if redis.call('ZREM', KEYS[2], ARGV[1]) == 1 then
    redis.call('ZADD', KEYS[1], ARGV[2], ARGV[1])
    return 1
end
return 0
"""


class RedisBroker(Broker):
    """Broker storing queues in Redis sorted sets."""

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "jobqueue",
        client: redis.Redis | None = None,
    ):
        """
        Initialize the broker.

        Args:
            redis_url: Redis connection URL.
            key_prefix: Prefix for every key this broker touches.
            client: Pre-built client, mainly for tests.
        """
        self._url = redis_url
        self._prefix = key_prefix
        self._client = client
        self._lease_script = None
        self._release_script = None

    def _queue_key(self, queue: str) -> str:
        return f"{self._prefix}:queue:{queue}"

    def _processing_key(self, queue: str) -> str:
        return f"{self._prefix}:processing:{queue}"

    def _dead_key(self) -> str:
        return f"{self._prefix}:dead"

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise BrokerUnavailable("Redis broker is not connected")
        return self._client

    @asynccontextmanager
    async def _errors(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except RedisError as e:
            raise BrokerUnavailable(f"Redis {operation} failed: {e}") from e

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.from_url(self._url)
        self._lease_script = self._client.register_script(LEASE_SCRIPT)
        self._release_script = self._client.register_script(RELEASE_SCRIPT)
        async with self._errors("connect"):
            await self._client.ping()
        logger.info("Redis broker connected", extra={"key_prefix": self._prefix})

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, BrokerUnavailable):
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis broker closed")

    async def enqueue(self, queue: str, body: bytes, delay_seconds: float = 0.0) -> None:
        score = time.time() + max(0.0, delay_seconds)
        async with self._errors("enqueue"):
            await self.client.zadd(self._queue_key(queue), {body: score})

    async def lease(self, queue: str, visibility_timeout: float) -> Lease | None:
        if self._lease_script is None:
            raise BrokerUnavailable("Redis broker is not connected")
        async with self._errors("lease"):
            body = await self._lease_script(
                keys=[self._queue_key(queue), self._processing_key(queue)],
                args=[time.time(), visibility_timeout],
            )
        if body is None:
            return None
        return Lease(queue=queue, body=body, receipt=hashlib.sha1(body).hexdigest())

    async def ack(self, lease: Lease) -> None:
        async with self._errors("ack"):
            await self.client.zrem(self._processing_key(lease.queue), lease.body)

    async def retry(self, lease: Lease, body: bytes, delay_seconds: float) -> None:
        score = time.time() + max(0.0, delay_seconds)
        async with self._errors("retry"):
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._processing_key(lease.queue), lease.body)
                pipe.zadd(self._queue_key(lease.queue), {body: score})
                await pipe.execute()

    async def dead_letter(self, lease: Lease, reason: str) -> None:
        record = json.dumps(
            {
                "queue": lease.queue,
                "body": base64.b64encode(lease.body).decode("ascii"),
                "reason": reason,
                "failed_at": time.time(),
            }
        )
        async with self._errors("dead_letter"):
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._processing_key(lease.queue), lease.body)
                pipe.lpush(self._dead_key(), record)
                await pipe.execute()

    async def release(self, lease: Lease) -> None:
        # Only a message still leased goes back; an expired one was already requeued.
        if self._release_script is None:
            raise BrokerUnavailable("Redis broker is not connected")
        async with self._errors("release"):
            await self._release_script(
                keys=[self._queue_key(lease.queue), self._processing_key(lease.queue)],
                args=[lease.body, time.time()],
            )

    async def extend(self, lease: Lease, visibility_timeout: float) -> bool:
        async with self._errors("extend"):
            changed = await self.client.zadd(
                self._processing_key(lease.queue),
                {lease.body: time.time() + visibility_timeout},
                xx=True,
                ch=True,
            )
        return bool(changed)
