"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from jobqueue.observability.logging import get_correlation_id, setup_logging
from jobqueue.observability.metrics import MetricsCollector, setup_metrics
from jobqueue.observability.tracing import setup_tracing

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "setup_metrics",
    "MetricsCollector",
    "setup_tracing",
]
