"""
HTTP listener.

Runs uvicorn inside the process event loop as a shutdown participant.
Signals are owned by the shutdown coordinator, so uvicorn's own handlers
are disabled.
"""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager

import uvicorn
from fastapi import FastAPI

from jobqueue.config import Settings
from jobqueue.errors import StartupError
from jobqueue.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the caller."""

    def install_signal_handlers(self) -> None:
        pass

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HttpListener:
    """
    Serves the API until the coordinator asks it to stop.

    On stop, uvicorn closes the listening socket and lets open requests
    finish for up to ``api_shutdown_timeout_seconds``.
    """

    name = "http-listener"

    def __init__(self, app: FastAPI, settings: Settings, coordinator: ShutdownCoordinator):
        self._coordinator = coordinator
        self._host = settings.api_host
        self._port = settings.api_port
        config = uvicorn.Config(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.log_level.lower(),
            log_config=None,
            lifespan="off",
            timeout_graceful_shutdown=settings.api_shutdown_timeout_seconds,
        )
        self._server = _EmbeddedServer(config)
        self._task: asyncio.Task | None = None

    @property
    def started(self) -> bool:
        return self._server.started

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        except SystemExit as e:
            raise StartupError(
                f"HTTP listener failed to start on {self._host}:{self._port}"
            ) from e

    async def start(self) -> None:
        """
        Start serving and wait until the socket is bound.

        Raises:
            StartupError: If uvicorn exits before it starts listening.
        """
        self._task = asyncio.create_task(self._serve(), name="http-listener")
        while not self._server.started:
            if self._task.done():
                # Surfaces StartupError from _serve
                self._task.result()
                raise StartupError(
                    f"HTTP listener failed to start on {self._host}:{self._port}"
                )
            await asyncio.sleep(0.05)

        self._task.add_done_callback(self._on_server_exit)
        logger.info(
            "HTTP server starting",
            extra={"host": self._host, "port": self._port},
        )

    def _on_server_exit(self, task: asyncio.Task) -> None:
        if not self._coordinator.is_running:
            return
        error = None if task.cancelled() else task.exception()
        if error is not None:
            logger.error("HTTP server crashed", exc_info=error)
            reason = f"HTTP server crashed: {error}"
        else:
            reason = "HTTP server stopped unexpectedly"
        self._coordinator.request_shutdown(reason, fatal=True)

    async def stop_accepting(self) -> None:
        if self._task is None:
            return
        logger.info("HTTP server shutting down")
        self._server.should_exit = True
        await self._task
        logger.info("HTTP server stopped")

    async def abandon(self) -> None:
        self._server.force_exit = True
