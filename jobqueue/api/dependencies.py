"""
FastAPI dependencies.

Process-wide services are built by the bootstrap and stored on
``app.state.services``; routes reach them through these dependencies.
"""

from dataclasses import dataclass

from fastapi import Request

from jobqueue.broker.base import Broker
from jobqueue.client import EnqueueClient
from jobqueue.config import Settings
from jobqueue.db.connection import Datastore
from jobqueue.observability.metrics import MetricsCollector


@dataclass
class AppServices:
    """Everything the HTTP layer needs from the rest of the process."""

    settings: Settings
    broker: Broker
    client: EnqueueClient
    metrics: MetricsCollector
    datastore: Datastore | None = None


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_client(request: Request) -> EnqueueClient:
    return get_services(request).client


def get_request_id(request: Request) -> str | None:
    """Request id assigned by the request context middleware."""
    return getattr(request.state, "request_id", None)
