"""
Health check routes.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response

from jobqueue.api.dependencies import AppServices, get_services
from jobqueue.types.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _probe(name: str, check, timeout: float) -> str:
    try:
        async with asyncio.timeout(timeout):
            healthy = await check()
    except TimeoutError:
        logger.error(f"{name} health check timed out")
        healthy = False
    return "up" if healthy else "down"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the database and broker connections.",
    responses={503: {"model": HealthResponse}},
)
async def health_check(
    response: Response,
    services: AppServices = Depends(get_services),
) -> HealthResponse:
    """
    Perform a health check.

    Pings every dependency concurrently under the health check timeout and
    answers 503 if any of them is down.

    Args:
        response: Used to set the status code.
        services: Process services.

    Returns:
        HealthResponse with per-dependency status.
    """
    start = time.perf_counter()
    timeout = services.settings.health_check_timeout_seconds

    checks = {"broker": services.broker.ping}
    if services.datastore is not None:
        checks["database"] = services.datastore.ping

    results = await asyncio.gather(
        *(_probe(name, check, timeout) for name, check in checks.items())
    )
    component_status = dict(zip(checks, results, strict=True))

    if "down" in component_status.values():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    duration_ms = int((time.perf_counter() - start) * 1000)
    logger.debug(
        "Health check completed",
        extra={"duration_ms": duration_ms, **component_status},
    )
    return HealthResponse(
        status=component_status,
        checked=datetime.now(UTC),
        duration_ms=duration_ms,
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """
    Kubernetes liveness probe endpoint.

    Returns:
        Alive status.
    """
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics(services: AppServices = Depends(get_services)) -> Response:
    """Expose Prometheus metrics."""
    collector = services.metrics
    return Response(
        content=collector.get_metrics(),
        media_type=collector.get_content_type(),
    )
