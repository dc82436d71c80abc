"""
OpenTelemetry tracing for generation sessions and stage calls.

Spans are created through the global tracer provider; until
``setup_tracing`` installs an SDK provider they are no-ops.
"""

import asyncio
import functools
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode, Tracer

from .logging import get_logger

logger = get_logger(__name__)

TRACER_NAME = "promptcraft"


class TracingManager:
    """Owns the SDK tracer provider and its exporters."""

    def __init__(self, service_name: str = "promptcraft", service_version: str = "1.0.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self._initialized = False

    def initialize(self, otlp_endpoint: str | None = None) -> None:
        """Install an SDK tracer provider, exporting over OTLP when an endpoint is set."""
        if self._initialized:
            return

        resource = Resource.create(
            {
                "service.name": self.service_name,
                "service.version": self.service_version,
            }
        )
        self.tracer_provider = TracerProvider(resource=resource)

        if otlp_endpoint:
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            self.tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(self.tracer_provider)
        self._initialized = True
        logger.info(
            "Tracing initialized",
            service=self.service_name,
            otlp=bool(otlp_endpoint),
        )

    def shutdown(self) -> None:
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self._initialized = False


# Global tracing manager
_tracing_manager: TracingManager | None = None


def setup_tracing(
    service_name: str = "promptcraft",
    service_version: str = "1.0.0",
    otlp_endpoint: str | None = None,
) -> TracingManager:
    """Setup the global tracing manager."""
    global _tracing_manager
    if _tracing_manager is None:
        _tracing_manager = TracingManager(service_name, service_version)
        _tracing_manager.initialize(otlp_endpoint)
    return _tracing_manager


def shutdown_tracing() -> None:
    global _tracing_manager
    if _tracing_manager is not None:
        _tracing_manager.shutdown()
        _tracing_manager = None


def get_tracer() -> Tracer:
    """Get a tracer from the current global provider."""
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def span(name: str, attributes: dict[str, Any] | None = None):
    """Context manager for a span that records escaping exceptions."""
    with get_tracer().start_as_current_span(name) as current:
        for key, value in (attributes or {}).items():
            current.set_attribute(key, str(value))
        try:
            yield current
        except Exception as e:
            current.record_exception(e)
            current.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def trace_span(name: str | None = None, attributes: dict[str, Any] | None = None):
    """Decorator for automatic span creation around sync or async callables."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        span_attributes = {"function.name": func.__name__, **(attributes or {})}

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with span(span_name, span_attributes) as current:
                result = await func(*args, **kwargs)
                status = getattr(result, "status", None)
                if status is not None:
                    current.set_attribute("result.status", str(getattr(status, "value", status)))
                return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with span(span_name, span_attributes):
                return func(*args, **kwargs)

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator


def add_span_attributes(**attributes):
    """Add attributes to the current span."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, str(value))
