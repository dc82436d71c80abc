"""
Value types for the generation pipeline.

Everything here is immutable: the state store replaces whole
``GenerationState`` snapshots instead of mutating fields, and stage
contexts are rebuilt from the recorded executions before every stage.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class StageKind(str, Enum):
    """The closed set of generation stages, declared in execution order."""

    PLANNER = "planner"
    THEMER = "themer"
    CODER = "coder"
    REVIEWER = "reviewer"

    @classmethod
    def ordered(cls) -> tuple["StageKind", ...]:
        return (cls.PLANNER, cls.THEMER, cls.CODER, cls.REVIEWER)

    @property
    def display_name(self) -> str:
        return _STAGE_DISPLAY_NAMES[self]

    @property
    def model_name(self) -> str:
        """Default logical model id; overridable per stage in settings."""
        return _STAGE_MODELS[self]

    @property
    def description(self) -> str:
        return _STAGE_DESCRIPTIONS[self]

    @property
    def phase(self) -> "PipelinePhase":
        return PipelinePhase(self.value)


_STAGE_DISPLAY_NAMES = {
    StageKind.PLANNER: "Planner/Spec",
    StageKind.THEMER: "Themer/UX Tokens",
    StageKind.CODER: "Coder",
    StageKind.REVIEWER: "Reviewer/Polisher",
}

_STAGE_MODELS = {
    StageKind.PLANNER: "gpt-oss-120b",
    StageKind.THEMER: "gpt-oss-120b",
    StageKind.CODER: "qwen-3-coder-480b",
    StageKind.REVIEWER: "gpt-oss-120b",
}

_STAGE_DESCRIPTIONS = {
    StageKind.PLANNER: "Creates feature list, macro flows, acceptance criteria and test checklist",
    StageKind.THEMER: "Generates design tokens and the visual direction of the app",
    StageKind.CODER: "Generates a self-contained App component from the plan and design tokens",
    StageKind.REVIEWER: "Fixes critical bugs and polishes the final application",
}


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def display_name(self) -> str:
        return {
            ExecutionStatus.IDLE: "Ready",
            ExecutionStatus.PREPARING: "Preparing...",
            ExecutionStatus.EXECUTING: "Working...",
            ExecutionStatus.COMPLETED: "Completed",
            ExecutionStatus.FAILED: "Failed",
        }[self]

    @property
    def is_final(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class PipelineMode(str, Enum):
    """SINGLE runs only the coder on the raw prompt; MULTI runs all four stages."""

    SINGLE = "single"
    MULTI = "multi"


class PipelinePhase(str, Enum):
    IDLE = "idle"
    PLANNER = "planner"
    THEMER = "themer"
    CODER = "coder"
    REVIEWER = "reviewer"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def progress(self) -> float:
        return _PHASE_PROGRESS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (PipelinePhase.COMPLETED, PipelinePhase.FAILED)

    @property
    def display_name(self) -> str:
        return _PHASE_DISPLAY_NAMES[self]


_PHASE_PROGRESS = {
    PipelinePhase.IDLE: 0.0,
    PipelinePhase.PLANNER: 0.25,
    PipelinePhase.THEMER: 0.5,
    PipelinePhase.CODER: 0.75,
    PipelinePhase.REVIEWER: 0.9,
    PipelinePhase.COMPLETED: 1.0,
    PipelinePhase.FAILED: 0.0,
}

_PHASE_DISPLAY_NAMES = {
    PipelinePhase.IDLE: "Ready to start",
    PipelinePhase.PLANNER: "Creating specification & plan...",
    PipelinePhase.THEMER: "Designing theme & tokens...",
    PipelinePhase.CODER: "Generating application code...",
    PipelinePhase.REVIEWER: "Reviewing & polishing...",
    PipelinePhase.COMPLETED: "Completed",
    PipelinePhase.FAILED: "Failed",
}


class GenerationStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not GenerationStatus.GENERATING


@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of exactly one stage attempt."""

    stage: StageKind
    status: ExecutionStatus
    content: str | None = None
    error: str | None = None
    duration_seconds: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.status.is_final:
            raise ValueError(f"Execution record must be completed or failed, got {self.status.value}")
        if self.duration_seconds < 0:
            raise ValueError("duration_seconds must be non-negative")

    @classmethod
    def completed(cls, stage: StageKind, content: str, duration_seconds: float) -> "ExecutionRecord":
        return cls(stage, ExecutionStatus.COMPLETED, content=content, duration_seconds=duration_seconds)

    @classmethod
    def failed(cls, stage: StageKind, error: str, duration_seconds: float) -> "ExecutionRecord":
        return cls(stage, ExecutionStatus.FAILED, error=error, duration_seconds=duration_seconds)

    @property
    def succeeded(self) -> bool:
        return self.status is ExecutionStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "content": self.content,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ContextAccumulator:
    """Snapshot of the prompt and every prior stage output, built for one stage."""

    original_prompt: str
    current_stage: StageKind
    planner_output: str | None = None
    themer_output: str | None = None
    coder_output: str | None = None
    extra_instructions: str | None = None

    @classmethod
    def from_records(
        cls,
        prompt: str,
        stage: StageKind,
        records: tuple[ExecutionRecord, ...] | list[ExecutionRecord] = (),
        extra_instructions: str | None = None,
    ) -> "ContextAccumulator":
        outputs: dict[StageKind, str] = {}
        for record in records:
            if record.succeeded and record.content:
                # Later attempts win, though a run only ever has one per stage
                outputs[record.stage] = record.content
        return cls(
            original_prompt=prompt,
            current_stage=stage,
            planner_output=outputs.get(StageKind.PLANNER),
            themer_output=outputs.get(StageKind.THEMER),
            coder_output=outputs.get(StageKind.CODER),
            extra_instructions=extra_instructions,
        )

    @property
    def previous_output(self) -> str | None:
        """The prior output a stage consumes directly."""
        if self.current_stage is StageKind.THEMER:
            return self.planner_output
        if self.current_stage is StageKind.CODER:
            parts = [p for p in (self.planner_output, self.themer_output) if p]
            return "\n\n".join(parts) or None
        if self.current_stage is StageKind.REVIEWER:
            return self.coder_output
        return None


@dataclass(frozen=True)
class GenerationState:
    """The whole observable state of one generation run."""

    status: GenerationStatus = GenerationStatus.IDLE
    mode: PipelineMode = PipelineMode.SINGLE
    prompt: str | None = None
    final_artifact: str | None = None
    error: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    active_phase: PipelinePhase | None = None
    current_stage: StageKind | None = None
    executions: tuple[ExecutionRecord, ...] = ()

    def evolve(self, **changes) -> "GenerationState":
        return replace(self, **changes)

    @property
    def total_execution_time(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.time()
        return max(0.0, end - self.start_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "mode": self.mode.value,
            "prompt": self.prompt,
            "final_artifact": self.final_artifact,
            "error": self.error,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "active_phase": self.active_phase.value if self.active_phase else None,
            "current_stage": self.current_stage.value if self.current_stage else None,
            "executions": [record.to_dict() for record in self.executions],
        }
