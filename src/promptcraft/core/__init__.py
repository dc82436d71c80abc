"""
Generation pipeline core: value types, the state store, throttled
notification and the audit trail.

The orchestrator lives in ``promptcraft.core.orchestrator``; it depends on
the stage clients, which in turn depend on the models defined here.
"""

from .audit import AuditLogger, GenerationAuditLog
from .models import (
    ContextAccumulator,
    ExecutionRecord,
    ExecutionStatus,
    GenerationState,
    GenerationStatus,
    PipelineMode,
    PipelinePhase,
    StageKind,
)
from .notifier import ThrottledPublisher
from .store import StateStore

__all__ = [
    "AuditLogger",
    "GenerationAuditLog",
    "ContextAccumulator",
    "ExecutionRecord",
    "ExecutionStatus",
    "GenerationState",
    "GenerationStatus",
    "PipelineMode",
    "PipelinePhase",
    "StageKind",
    "ThrottledPublisher",
    "StateStore",
]
