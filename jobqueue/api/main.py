"""
FastAPI application entry point.
"""

import logging
import sys

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobqueue import __version__
from jobqueue.api.dependencies import AppServices, get_request_id
from jobqueue.api.middleware import create_request_context_middleware
from jobqueue.api.routes import health_router, tasks_router, worker_router
from jobqueue.constants import REQUEST_ID_HEADER
from jobqueue.errors import InvalidEnqueueOptions, QueueUnavailable
from jobqueue.observability.tracing import instrument_fastapi
from jobqueue.types.api import ErrorResponse

logger = logging.getLogger(__name__)


def _error_response(request: Request, status_code: int, error: str, details: str) -> JSONResponse:
    body = ErrorResponse(error=error, details=details, request_id=get_request_id(request))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def queue_unavailable_handler(request: Request, exc: QueueUnavailable) -> JSONResponse:
    logger.error(f"failed to enqueue task: {exc}")
    return _error_response(
        request, status.HTTP_503_SERVICE_UNAVAILABLE, "failed to enqueue task", str(exc)
    )


async def invalid_options_handler(request: Request, exc: InvalidEnqueueOptions) -> JSONResponse:
    return _error_response(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid task options", str(exc)
    )


def create_app(services: AppServices) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The app does not own its dependencies: the caller opens them before
    serving and closes them after the listener has drained.

    Args:
        services: Broker, enqueue client, datastore and metrics for this process.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Job Queue API",
        description="Task submission and health endpoints for the job queue",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
        max_age=300,
    )

    app.add_middleware(
        BaseHTTPMiddleware,
        dispatch=create_request_context_middleware(services.metrics),
    )

    app.add_exception_handler(QueueUnavailable, queue_unavailable_handler)
    app.add_exception_handler(InvalidEnqueueOptions, invalid_options_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(worker_router)
    app.include_router(tasks_router)

    if services.settings.tracing_enabled:
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    from jobqueue.bootstrap import main

    sys.exit(main(api=True, worker=False))


if __name__ == "__main__":
    run()
