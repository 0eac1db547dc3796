"""
Process startup and shutdown.

Every entry point (API, worker, or both in one process) goes through
``main``: load settings, open dependencies in order, start components,
wait for a shutdown request, drain, then close dependencies in reverse
order.
"""

import asyncio
import logging

from pydantic import ValidationError

from jobqueue.api.dependencies import AppServices
from jobqueue.api.main import create_app
from jobqueue.api.server import HttpListener
from jobqueue.broker import create_broker
from jobqueue.client import EnqueueClient
from jobqueue.config import Settings, load_settings
from jobqueue.db.connection import Datastore
from jobqueue.errors import BrokerUnavailable, StartupError
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import MetricsCollector, setup_metrics
from jobqueue.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobqueue.shutdown import ShutdownCoordinator
from jobqueue.worker.main import Worker

logger = logging.getLogger(__name__)


async def open_services(
    settings: Settings,
    coordinator: ShutdownCoordinator,
    metrics: MetricsCollector,
) -> AppServices:
    """
    Open the datastore and the broker, registering each for release.

    Raises:
        StartupError: If a dependency is unreachable.
    """
    datastore = None
    if settings.database_enabled:
        datastore = await Datastore.open(settings)
        coordinator.add_resource("datastore", datastore.close)
        if settings.tracing_enabled:
            instrument_sqlalchemy(datastore.engine.sync_engine)

    broker = create_broker(settings)
    try:
        await broker.connect()
    except BrokerUnavailable as e:
        await broker.close()
        raise StartupError(f"broker unreachable: {e}") from e
    coordinator.add_resource("broker", broker.close)

    return AppServices(
        settings=settings,
        broker=broker,
        client=EnqueueClient.from_settings(broker, settings, metrics),
        metrics=metrics,
        datastore=datastore,
    )


async def serve(
    settings: Settings,
    *,
    api: bool = True,
    worker: bool = True,
    metrics: MetricsCollector | None = None,
) -> int:
    """
    Run the selected components until shutdown completes.

    Returns:
        Process exit status: 0 after a requested shutdown, 1 when startup
        failed or a component crashed.
    """
    if metrics is None:
        if settings.metrics_enabled:
            # The API serves /metrics itself
            metrics = setup_metrics(None if api else settings.prometheus_port)
        else:
            metrics = MetricsCollector()
    setup_tracing(settings)

    drain_timeout = (
        settings.worker_shutdown_timeout_seconds
        if worker
        else settings.api_shutdown_timeout_seconds
    )
    coordinator = ShutdownCoordinator(drain_timeout, metrics=metrics)
    coordinator.install_signal_handlers()

    task_worker: Worker | None = None
    try:
        services = await open_services(settings, coordinator, metrics)

        if worker:
            task_worker = Worker(settings, services.broker, coordinator, metrics=metrics)
            task_worker.start()
            logger.info(
                "Worker started",
                extra={
                    "worker_id": task_worker.worker_id,
                    "concurrency": settings.worker_concurrency,
                    "queues": settings.queues,
                    "dispatch_policy": str(settings.dispatch_policy),
                },
            )

        if api:
            listener = HttpListener(create_app(services), settings, coordinator)
            await listener.start()
            coordinator.add_participant(listener)
    except StartupError as e:
        logger.critical(f"startup failed: {e}")
        coordinator.request_shutdown(str(e), fatal=True)

    await coordinator.wait_for_shutdown_request()
    report = await coordinator.drain()
    if task_worker is not None:
        await task_worker.close()
    await coordinator.release_resources()

    logger.info(
        "Process stopped",
        extra={
            "reason": report.reason,
            "graceful": report.graceful,
            "elapsed_seconds": round(report.elapsed_seconds, 3),
        },
    )
    return 1 if coordinator.fatal else 0


def main(api: bool = True, worker: bool = True) -> int:
    """Load settings, configure logging and run. Returns the exit status."""
    try:
        settings = load_settings()
    except ValidationError as e:
        logger.critical(f"invalid configuration: {e}")
        return 1

    setup_logging(settings)
    return asyncio.run(serve(settings, api=api, worker=worker))
