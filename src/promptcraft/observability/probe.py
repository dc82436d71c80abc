"""
Performance probes: time an operation inside a span and log the result.
"""

import contextlib
import time
from typing import Any

from .logging import get_logger
from .tracing import get_tracer

log = get_logger("promptcraft.probe")

# Per-session timings kept for audit snapshots
_METRICS_STORE: dict[str, dict[str, Any]] = {}


@contextlib.contextmanager
def probe(op: str, session_id: str | None = None, **labels):
    """
    Performance probe context manager.

    Opens an OpenTelemetry span named ``op``, logs the duration on exit and,
    when a session id is given, keeps the timing for the session's audit
    snapshot.
    """
    start_time = time.perf_counter()
    ok = True
    error_type = None

    with get_tracer().start_as_current_span(op) as current:
        for key, value in labels.items():
            current.set_attribute(key, str(value))
        try:
            yield current
        except Exception as e:
            ok = False
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            log.timed(
                f"op={op} ok={str(ok).lower()}" + (f" error={error_type}" if error_type else ""),
                duration_ms,
                op=op,
                **labels,
            )

            if session_id:
                _METRICS_STORE.setdefault(session_id, {})[op] = {
                    "duration_ms": duration_ms,
                    "success": ok,
                    "error_type": error_type,
                    "labels": labels,
                    "timestamp": time.time(),
                }


def get_session_metrics(session_id: str) -> dict[str, Any]:
    """Get all probe timings recorded for a session."""
    return _METRICS_STORE.get(session_id, {})


def clear_session_metrics(session_id: str) -> None:
    _METRICS_STORE.pop(session_id, None)
