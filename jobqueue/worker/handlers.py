"""
Built-in task handlers.

Task handlers must be idempotent - they may be executed multiple times
for the same task in case of worker crashes or lease expiry.
"""

import asyncio
import json
import logging
from typing import Any

import httpx

from jobqueue.constants import TASK_WORKER_PING
from jobqueue.errors import FatalFailure, TransientFailure
from jobqueue.types.api import PingTaskPayload
from jobqueue.types.task import TaskContext, TaskResult
from jobqueue.worker.registry import HandlerRegistry

logger = logging.getLogger(__name__)


def _json_payload(payload: bytes) -> dict[str, Any]:
    """Decode a JSON object payload, treating bad input as non-retryable."""
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise FatalFailure(f"Payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise FatalFailure("Payload must be a JSON object")
    return data


async def handle_worker_ping(context: TaskContext, payload: bytes) -> TaskResult:
    """
    Worker liveness probe.

    Logs the ping message together with the request id of the HTTP call
    that enqueued it.
    """
    try:
        ping = PingTaskPayload.model_validate_json(payload)
    except ValueError:
        logger.info(
            "worker ping task processed - worker is alive!",
            extra={"payload_raw": payload.decode("utf-8", errors="replace")},
        )
        return TaskResult(success=True)

    logger.info(
        "worker ping task processed - worker is alive!",
        extra={"payload": ping.message, "request_id": ping.request_id},
    )
    return TaskResult(success=True, output={"message": ping.message})


async def handle_echo(context: TaskContext, payload: bytes) -> TaskResult:
    """Echo handler for testing. Returns the input payload as output."""
    return TaskResult(success=True, output={"echo": _json_payload(payload)})


async def handle_sleep(context: TaskContext, payload: bytes) -> TaskResult:
    """
    Sleep handler for testing delays.

    Payload should contain:
    - duration_seconds: How long to sleep

    Stops early when the task is cancelled.
    """
    raw = _json_payload(payload).get("duration_seconds", 1)
    try:
        duration = float(raw)
    except (TypeError, ValueError) as e:
        raise FatalFailure(f"Invalid duration_seconds: {raw!r}") from e
    interval = 0.05
    slept = 0.0
    while slept < duration:
        if context.cancelled:
            raise TransientFailure(f"Sleep cancelled after {slept:.2f}s")
        step = min(interval, duration - slept)
        await asyncio.sleep(step)
        slept += step

    return TaskResult(success=True, output={"slept_for": duration})


async def handle_http_request(context: TaskContext, payload: bytes) -> TaskResult:
    """
    Make an HTTP request.

    Payload should contain:
    - url: The URL to request
    - method: HTTP method (GET, POST, etc.)
    - headers: Optional headers
    - body: Optional request body

    Server errors and connection failures are retried; client errors are not.
    """
    data = _json_payload(payload)
    url = data.get("url")
    method = data.get("method", "GET").upper()

    if not url:
        raise FatalFailure("Missing 'url' in payload")

    try:
        async with httpx.AsyncClient() as client:
            response = await client.request(
                method=method,
                url=url,
                headers=data.get("headers", {}),
                json=data.get("body") if method in ["POST", "PUT", "PATCH"] else None,
                timeout=context.time_remaining_seconds,
            )
    except httpx.HTTPError as e:
        raise TransientFailure(f"HTTP request failed: {e}") from e

    if response.status_code >= 500:
        raise TransientFailure(f"HTTP {response.status_code}")

    return TaskResult(
        success=response.is_success,
        output={
            "status_code": response.status_code,
            "body": response.text[:1000],  # Truncate response
        },
        error=None if response.is_success else f"HTTP {response.status_code}",
        retryable=False,
    )


def build_registry() -> HandlerRegistry:
    """Create a registry holding the built-in handlers."""
    registry = HandlerRegistry()
    registry.register(TASK_WORKER_PING, handle_worker_ping)
    registry.register("echo", handle_echo)
    registry.register("sleep", handle_sleep)
    registry.register("http_request", handle_http_request)
    return registry
