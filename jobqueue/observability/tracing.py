"""
OpenTelemetry tracing setup.

Components fetch tracers with ``trace.get_tracer(__name__)``; until
``setup_tracing`` installs an SDK provider those tracers are no-ops.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from jobqueue import __version__
from jobqueue.config import Settings

logger = logging.getLogger(__name__)


def build_resource(settings: Settings) -> Resource:
    attributes: dict[str, Any] = {
        "service.name": settings.otel_service_name,
        "service.version": __version__,
    }
    if settings.worker_id:
        attributes["service.instance.id"] = settings.worker_id
    return Resource.create(attributes)


def setup_tracing(settings: Settings) -> TracerProvider | None:
    """
    Install a tracer provider exporting over OTLP.

    Returns:
        The installed provider, or None when tracing is disabled and the
        global no-op provider stays in place.
    """
    if not settings.tracing_enabled:
        return None

    provider = TracerProvider(resource=build_resource(settings))
    try:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
    except Exception as e:
        logger.warning(f"OTLP exporter unavailable, spans will not be exported: {e}")
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    logger.info(
        "Tracing enabled",
        extra={"endpoint": settings.otel_exporter_otlp_endpoint},
    )
    return provider


def instrument_fastapi(app: Any) -> None:
    """Create a server span for every HTTP request."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Trace statements on a SQLAlchemy engine.

    Args:
        engine: The sync engine behind an ``AsyncEngine``.
    """
    SQLAlchemyInstrumentor().instrument(engine=engine)
