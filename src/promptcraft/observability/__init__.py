"""
Observability for promptcraft: structured logging, OpenTelemetry tracing,
performance probes and pipeline metrics.

Usage:
    >>> from promptcraft.observability.logging import get_logger
    >>> from promptcraft.observability.probe import probe
    >>>
    >>> logger = get_logger(__name__)
    >>> with probe("stage.planner", session_id):
    ...     logger.info("Calling planner", prompt_length=len(prompt))

Configuration:
    - CRAFT_OBSERVABILITY__LOG_LEVEL=INFO
    - CRAFT_OBSERVABILITY__ENABLE_TRACING=true
    - CRAFT_OBSERVABILITY__OTLP_ENDPOINT=http://localhost:4317
"""

from .logging import get_logger, get_session_id, set_session_id, setup_logging
from .metrics import MetricsCollector, get_metrics_collector
from .probe import probe
from .tracing import get_tracer, setup_tracing, trace_span

__all__ = [
    "get_logger",
    "get_session_id",
    "set_session_id",
    "setup_logging",
    "MetricsCollector",
    "get_metrics_collector",
    "probe",
    "get_tracer",
    "setup_tracing",
    "trace_span",
]
