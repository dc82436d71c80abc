"""
Pipeline metrics on the OpenTelemetry metrics API.

Without a configured meter provider every instrument is a no-op, so the
collector is always safe to call. In-process counters are kept alongside
for the ``/health`` endpoint and tests.
"""

from collections import defaultdict
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter

from .logging import get_logger

logger = get_logger(__name__)


class MetricsCollector:
    """Centralized metrics collection for stage calls and generation runs."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

        self._stage_calls: dict[str, int] = defaultdict(int)
        self._stage_failures: dict[str, int] = defaultdict(int)
        self._generations: dict[str, int] = defaultdict(int)
        self._fallbacks = 0

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        self._counters["stage_calls_total"] = self.meter.create_counter(
            "promptcraft_stage_calls_total", description="Total stage client calls", unit="1"
        )
        self._counters["stage_failures_total"] = self.meter.create_counter(
            "promptcraft_stage_failures_total", description="Failed stage client calls", unit="1"
        )
        self._histograms["stage_duration"] = self.meter.create_histogram(
            "promptcraft_stage_duration_seconds", description="Stage call duration", unit="s"
        )
        self._counters["generations_total"] = self.meter.create_counter(
            "promptcraft_generations_total", description="Finished generation runs", unit="1"
        )
        self._counters["fallbacks_total"] = self.meter.create_counter(
            "promptcraft_fallbacks_total",
            description="Multi-stage runs downgraded to single-stage",
            unit="1",
        )
        self._histograms["generation_duration"] = self.meter.create_histogram(
            "promptcraft_generation_duration_seconds",
            description="End-to-end generation duration",
            unit="s",
        )

    def record_stage_call(self, stage: str, duration: float, success: bool) -> None:
        attributes = {"stage": stage, "success": str(success).lower()}
        self._counters["stage_calls_total"].add(1, attributes)
        if not success:
            self._counters["stage_failures_total"].add(1, attributes)
        self._histograms["stage_duration"].record(duration, attributes)

        self._stage_calls[stage] += 1
        if not success:
            self._stage_failures[stage] += 1

    def record_generation(self, mode: str, status: str, duration: float) -> None:
        attributes = {"mode": mode, "status": status}
        self._counters["generations_total"].add(1, attributes)
        self._histograms["generation_duration"].record(duration, attributes)
        self._generations[status] += 1

    def record_fallback(self, stage: str) -> None:
        self._counters["fallbacks_total"].add(1, {"stage": stage})
        self._fallbacks += 1

    def snapshot(self) -> dict[str, Any]:
        """Aggregated in-process counters."""
        return {
            "stage_calls": dict(self._stage_calls),
            "stage_failures": dict(self._stage_failures),
            "generations": dict(self._generations),
            "fallbacks": self._fallbacks,
        }


# Global metrics collector instance
_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector, creating it on first use."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(metrics.get_meter("promptcraft"))
    return _metrics_collector


def _reset_metrics_for_tests() -> None:
    global _metrics_collector
    _metrics_collector = None
