"""
Integration tests for API endpoints.
"""

import json
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from jobqueue.api.dependencies import AppServices
from jobqueue.api.main import create_app
from jobqueue.broker.memory import InMemoryBroker
from jobqueue.client import EnqueueClient
from jobqueue.constants import REQUEST_ID_HEADER, TASK_WORKER_PING
from jobqueue.errors import BrokerUnavailable
from jobqueue.types.envelope import TaskEnvelope


class UnreachableBroker(InMemoryBroker):
    """Broker that refuses every write."""

    async def enqueue(self, queue: str, body: bytes, delay_seconds: float = 0.0) -> None:
        raise BrokerUnavailable("connection refused")


async def leased_envelope(broker: InMemoryBroker, queue: str = "default") -> TaskEnvelope:
    lease = await broker.lease(queue, 30)
    assert lease is not None
    return TaskEnvelope.decode(lease.body)


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == {"broker": "up"}
        assert "checked" in data
        assert data["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_health_check_broker_down(self, client: AsyncClient, broker: InMemoryBroker):
        await broker.close()

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"]["broker"] == "down"

    @pytest.mark.asyncio
    async def test_health_check_database_down(self, services: AppServices):
        datastore = AsyncMock()
        datastore.ping.return_value = False
        services.datastore = datastore
        transport = ASGITransport(app=create_app(services))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == {"broker": "up", "database": "down"}

    @pytest.mark.asyncio
    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client: AsyncClient):
        await client.post("/worker/ping")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "tasks_enqueued_total" in response.text
        assert "api_requests_total" in response.text


class TestRequestId:
    """Tests for request id handling."""

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient):
        response = await client.get("/live", headers={REQUEST_ID_HEADER: "req-abc"})

        assert response.headers[REQUEST_ID_HEADER] == "req-abc"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client: AsyncClient):
        response = await client.get("/live")

        assert len(response.headers[REQUEST_ID_HEADER]) == 32


class TestWorkerEndpoints:
    """Tests for worker endpoints."""

    @pytest.mark.asyncio
    async def test_ping_enqueues_task(self, client: AsyncClient, broker: InMemoryBroker):
        """Ping enqueues a worker:ping task carrying the request id."""
        response = await client.post(
            "/worker/ping",
            json={"message": "hello"},
            headers={REQUEST_ID_HEADER: "req-123"},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["success"] is True
        assert data["task_type"] == TASK_WORKER_PING

        envelope = await leased_envelope(broker)
        assert envelope.id == data["task_id"]
        assert envelope.type == TASK_WORKER_PING
        assert envelope.correlation_id == "req-123"
        payload = json.loads(envelope.payload)
        assert payload["message"] == "hello"
        assert payload["request_id"] == "req-123"

    @pytest.mark.asyncio
    async def test_ping_without_body(self, client: AsyncClient, broker: InMemoryBroker):
        response = await client.post("/worker/ping")

        assert response.status_code == 202
        envelope = await leased_envelope(broker)
        assert json.loads(envelope.payload)["message"] == "ping from API"

    @pytest.mark.asyncio
    async def test_ping_broker_unavailable(self, services: AppServices):
        """A refused broker write yields 503 and no success claim."""
        broker = UnreachableBroker()
        await broker.connect()
        services.client = EnqueueClient.from_settings(broker, services.settings, services.metrics)
        transport = ASGITransport(app=create_app(services))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/worker/ping", headers={REQUEST_ID_HEADER: "req-9"})

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "failed to enqueue task"
        assert data["request_id"] == "req-9"

    @pytest.mark.asyncio
    async def test_status(self, client: AsyncClient):
        response = await client.get("/worker/status")

        assert response.status_code == 200
        data = response.json()
        assert data["broker"] == "connected"
        assert data["queues"] == ["critical", "default", "low"]
        assert data["dispatch_policy"] == "weighted"


class TestTaskEndpoints:
    """Tests for task submission."""

    @pytest.mark.asyncio
    async def test_submit_task(self, client: AsyncClient, broker: InMemoryBroker):
        response = await client.post(
            "/v1/tasks",
            json={
                "type": "echo",
                "payload": {"message": "hi"},
                "queue": "critical",
                "max_retries": 1,
                "timeout_seconds": 5,
            },
        )

        assert response.status_code == 202
        data = response.json()
        assert data["queue"] == "critical"

        envelope = await leased_envelope(broker, "critical")
        assert envelope.id == data["task_id"]
        assert json.loads(envelope.payload) == {"message": "hi"}
        assert envelope.max_retries == 1
        assert envelope.timeout_seconds == 5

    @pytest.mark.asyncio
    async def test_submit_task_default_queue(self, client: AsyncClient, broker: InMemoryBroker):
        response = await client.post("/v1/tasks", json={"type": "echo"})

        assert response.status_code == 202
        assert response.json()["queue"] == "default"
        assert broker.depth("default") == 1

    @pytest.mark.asyncio
    async def test_submit_task_unknown_queue(self, client: AsyncClient, broker: InMemoryBroker):
        response = await client.post("/v1/tasks", json={"type": "echo", "queue": "nope"})

        assert response.status_code == 422
        assert response.json()["error"] == "invalid task options"
        assert broker.depth("nope") == 0

    @pytest.mark.asyncio
    async def test_submit_task_invalid_body(self, client: AsyncClient):
        response = await client.post("/v1/tasks", json={"type": "echo", "max_retries": -1})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_submit_task_broker_unavailable(self, client: AsyncClient, broker: InMemoryBroker):
        await broker.close()

        response = await client.post("/v1/tasks", json={"type": "echo"})

        assert response.status_code == 503
