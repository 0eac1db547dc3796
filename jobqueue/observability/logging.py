"""
Structured logging for the API and worker processes.

Modules log through ``logging.getLogger(__name__)`` with ``extra={...}``;
structlog renders every record, merges the request or task context bound
with ``structlog.contextvars`` and stamps the active trace.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from opentelemetry import trace

from jobqueue.config import Settings
from jobqueue.constants import LogOutput

CORRELATION_ID_KEY = "correlation_id"

# Libraries that log per request or per statement at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "redis")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Stamp ``trace_id`` and ``span_id`` of the current span, when one is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        span_context = span.get_span_context()
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def _select_renderer(settings: Settings) -> Any:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    # Escape codes only make sense on a terminal
    return structlog.dev.ConsoleRenderer(colors=settings.log_output == LogOutput.STDOUT)


def _build_handlers(settings: Settings) -> list[logging.Handler]:
    """
    Create one handler per configured output.

    A log file that cannot be opened is reported on stderr and the process
    keeps logging to stdout.
    """
    handlers: list[logging.Handler] = []
    if settings.log_output in (LogOutput.STDOUT, LogOutput.BOTH):
        handlers.append(logging.StreamHandler(sys.stdout))

    log_file = settings.log_file_path
    if log_file is not None:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            print(f"failed to open log file {log_file}: {e}", file=sys.stderr)

    if not handlers:
        handlers.append(logging.StreamHandler(sys.stdout))
    return handlers


def setup_logging(settings: Settings) -> None:
    """
    Route stdlib and structlog records through one formatter.

    Call once per process, before any component starts.
    """
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _select_renderer(settings),
        ],
    )
    handlers = _build_handlers(settings)
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_correlation_id() -> str | None:
    """Correlation id bound to the current context, if any."""
    return structlog.contextvars.get_contextvars().get(CORRELATION_ID_KEY)
