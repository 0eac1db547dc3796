"""
Request context middleware.

Assigns every request an id, binds it to the log context as the
correlation id, and records request metrics.
"""

import logging
import time
from collections.abc import Callable

import structlog
from fastapi import Request

from jobqueue.constants import REQUEST_ID_HEADER
from jobqueue.observability.logging import CORRELATION_ID_KEY
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.types.envelope import new_task_id

logger = logging.getLogger(__name__)

# Kept out of request logs and latency metrics
QUIET_PATHS = frozenset({"/health", "/live", "/metrics"})


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def create_request_context_middleware(metrics: MetricsCollector) -> Callable:
    """
    Create the request id / logging middleware.

    Args:
        metrics: Collector for request counts and latency.

    Returns:
        The middleware function.
    """

    async def request_context_middleware(request: Request, call_next: Callable):
        """Bind the request id for the duration of the request."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_task_id()
        request.state.request_id = request_id

        start = time.perf_counter()
        with structlog.contextvars.bound_contextvars(
            request_id=request_id, **{CORRELATION_ID_KEY: request_id}
        ):
            response = await call_next(request)
            duration = time.perf_counter() - start

            response.headers[REQUEST_ID_HEADER] = request_id
            if request.url.path not in QUIET_PATHS:
                endpoint = _endpoint_label(request)
                metrics.record_api_request(
                    request.method, endpoint, response.status_code, duration
                )
                logger.info(
                    "Request completed",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "status": response.status_code,
                        "duration_ms": round(duration * 1000, 2),
                    },
                )
        return response

    return request_context_middleware
