"""OpenTelemetry tracing for migration runs.

Each migration phase runs inside its own span, so a trace of one run shows
how long groups, users, categories and discussions took and where a failed
run stopped.

Example:
    ```python
    from mybb2flarum.telemetry import create_span_context, get_tracer

    tracer = get_tracer(__name__)

    with create_span_context(tracer, "migration.users", {"run_id": "3f2a"}) as span:
        migrate_users()
    ```

Configuration:
    - ENABLE_TRACING: Export spans (forced on in production and staging)
    - OTLP_ENDPOINT: Collector endpoint; spans go to the console when unset
    - OTEL_SERVICE_NAME: Service name (default: "mybb2flarum")
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from mybb2flarum import __version__
from mybb2flarum.config import settings
from mybb2flarum.logging import get_run_context, logger

# Global tracer provider instance
_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def initialize_telemetry() -> None:
    """Initialize the global OpenTelemetry tracer provider.

    Idempotent. Without ``enable_tracing`` the provider records nothing to
    any exporter, so spans are cheap no-ops.

    Raises:
        ValueError: If the OTLP endpoint is invalid
    """
    global _tracer_provider, _initialized

    if _initialized:
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", "mybb2flarum")

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment.value,
        }
    )

    _tracer_provider = TracerProvider(resource=resource)

    if settings.enable_tracing and settings.otlp_endpoint:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
            _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
            logger.info(f"Initialized OTLP span exporter for {settings.otlp_endpoint}")
        except Exception as e:
            logger.error(f"Failed to initialize OTLP exporter: {e}")
            raise ValueError(f"Invalid OTLP endpoint: {settings.otlp_endpoint}") from e
    elif settings.enable_tracing:
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.debug("Initialized console span exporter")

    trace.set_tracer_provider(_tracer_provider)
    _initialized = True

    logger.debug(f"Telemetry initialized (tracing_enabled={settings.enable_tracing})")


def get_tracer(name: str) -> Tracer:
    """Get a tracer, initializing the provider on first use.

    Args:
        name: Tracer name, typically ``__name__`` of the calling module
    """
    if not _initialized:
        initialize_telemetry()

    return trace.get_tracer(name)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Add multiple attributes to a span.

    Lists and dicts are converted to strings; None values are dropped.
    """
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            value = str(value)
        span.set_attribute(key, value)


def record_exception_in_span(
    span: Span,
    exception: Exception,
    set_status: bool = True,
) -> None:
    """Record an exception in a span and optionally set error status."""
    span.record_exception(exception)
    if set_status:
        span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_telemetry() -> None:
    """Shutdown the tracer provider and flush all pending spans."""
    global _tracer_provider, _initialized

    if _tracer_provider and _initialized:
        _tracer_provider.shutdown()
        _initialized = False
        logger.debug("Telemetry shut down")


@contextmanager
def create_span_context(
    tracer: Tracer,
    span_name: str,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span]:
    """Context manager creating a span with attributes.

    The run context (run_id, phase) from logging is copied onto the span so
    traces and logs can be correlated.

    Args:
        tracer: Tracer instance to use
        span_name: Name for the span
        attributes: Optional dictionary of attributes to add to the span

    Yields:
        The created span
    """
    with tracer.start_as_current_span(span_name) as span:
        add_span_attributes(span, get_run_context())
        if attributes:
            add_span_attributes(span, attributes)
        yield span


# Export public API
__all__ = [
    "initialize_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "add_span_attributes",
    "record_exception_in_span",
    "create_span_context",
]
