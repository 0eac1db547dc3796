"""
Pytest configuration and shared fixtures.
"""

import asyncio
import time
from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from jobqueue.api.dependencies import AppServices
from jobqueue.api.main import create_app
from jobqueue.broker.memory import InMemoryBroker
from jobqueue.client import EnqueueClient
from jobqueue.config import Settings
from jobqueue.constants import BrokerBackend
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.shutdown import ShutdownCoordinator
from jobqueue.types.task import TaskContext, TaskResult
from jobqueue.worker.registry import HandlerRegistry

WaitUntil = Callable[[Callable[[], bool]], Awaitable[None]]


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with fast timings and no external services."""
    return Settings(
        _env_file=None,
        database_enabled=False,
        broker_backend=BrokerBackend.MEMORY,
        log_level="DEBUG",
        log_format="console",
        metrics_enabled=False,
        worker_id="test-worker",
        worker_concurrency=2,
        worker_poll_interval_seconds=0.01,
        worker_heartbeat_interval_seconds=0.05,
        worker_shutdown_timeout_seconds=2.0,
        retry_base_delay_seconds=0.01,
        broker_visibility_timeout_seconds=5.0,
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector()


@pytest_asyncio.fixture
async def broker() -> AsyncGenerator[InMemoryBroker]:
    """Connected in-memory broker."""
    broker = InMemoryBroker()
    await broker.connect()
    yield broker
    await broker.close()


@pytest_asyncio.fixture
async def coordinator(test_settings: Settings, metrics: MetricsCollector) -> ShutdownCoordinator:
    """Shutdown coordinator using the test drain timeout."""
    return ShutdownCoordinator(test_settings.worker_shutdown_timeout_seconds, metrics=metrics)


@pytest.fixture
def enqueue_client(
    broker: InMemoryBroker,
    test_settings: Settings,
    metrics: MetricsCollector,
) -> EnqueueClient:
    """Enqueue client bound to the in-memory broker."""
    return EnqueueClient.from_settings(broker, test_settings, metrics)


@pytest.fixture
def registry() -> HandlerRegistry:
    """Registry with a no-op handler."""
    registry = HandlerRegistry()

    @registry.handler("noop")
    async def handle_noop(context: TaskContext, payload: bytes) -> TaskResult:
        return TaskResult(success=True)

    return registry


@pytest.fixture
def wait_until() -> WaitUntil:
    """Poll a condition until it holds or two seconds pass."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return wait


@pytest.fixture
def services(
    test_settings: Settings,
    broker: InMemoryBroker,
    enqueue_client: EnqueueClient,
    metrics: MetricsCollector,
) -> AppServices:
    """HTTP services without a datastore."""
    return AppServices(
        settings=test_settings,
        broker=broker,
        client=enqueue_client,
        metrics=metrics,
    )


@pytest.fixture
def app(services: AppServices) -> FastAPI:
    """Create a FastAPI app for testing."""
    return create_app(services)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
