"""
State store: sole owner of the current ``GenerationState``.

Every transition builds a complete new snapshot and swaps it in with a
single assignment, so observers only ever read consistent states. Observers
are called synchronously after the swap and only when the snapshot actually
changed.
"""

import time
from collections.abc import Callable

from ..observability.logging import get_logger
from .models import (
    ExecutionRecord,
    ExecutionStatus,
    GenerationState,
    GenerationStatus,
    PipelineMode,
    PipelinePhase,
    StageKind,
)

logger = get_logger(__name__)

StateObserver = Callable[[GenerationState], None]

_SINGLE_DESCRIPTIONS = {
    GenerationStatus.IDLE: "Ready to generate",
    GenerationStatus.GENERATING: "Generating application...",
    GenerationStatus.SUCCESS: "Application ready!",
    GenerationStatus.ERROR: "Generation failed",
}

_MULTI_DESCRIPTIONS = {
    PipelinePhase.IDLE: "Ready to generate",
    PipelinePhase.PLANNER: "Planning specifications and features...",
    PipelinePhase.THEMER: "Designing theme and visual tokens...",
    PipelinePhase.CODER: "Generating application code...",
    PipelinePhase.REVIEWER: "Reviewing and polishing the final application...",
    PipelinePhase.COMPLETED: "Application ready!",
    PipelinePhase.FAILED: "Generation failed",
}

_SINGLE_PROGRESS = {
    GenerationStatus.IDLE: 0.0,
    GenerationStatus.GENERATING: 0.5,
    GenerationStatus.SUCCESS: 1.0,
    GenerationStatus.ERROR: 0.0,
}


def _status_for_phase(phase: PipelinePhase) -> GenerationStatus:
    if phase is PipelinePhase.IDLE:
        return GenerationStatus.IDLE
    return GenerationStatus.GENERATING


class StateStore:
    """
    Holds the pipeline state and publishes changes to observers.

    Only the transition methods below change the state. They are synchronous
    and never suspend, so a transition is atomic with respect to other
    asyncio tasks.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._state = GenerationState()
        self._observers: list[StateObserver] = []

    # Observation

    @property
    def state(self) -> GenerationState:
        return self._state

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _commit(self, new_state: GenerationState) -> None:
        if new_state == self._state:
            return
        self._state = new_state
        for observer in list(self._observers):
            try:
                observer(new_state)
            except Exception as e:
                logger.error(f"State observer failed: {e}", observer=getattr(observer, "__name__", repr(observer)))

    # Transitions

    def begin_generation(self, prompt: str, mode: PipelineMode) -> None:
        multi = mode is PipelineMode.MULTI
        self._commit(
            GenerationState(
                status=GenerationStatus.GENERATING,
                mode=mode,
                prompt=prompt,
                start_time=self._clock(),
                active_phase=PipelinePhase.PLANNER if multi else None,
                current_stage=StageKind.PLANNER if multi else None,
            )
        )

    def set_phase(self, phase: PipelinePhase, current_stage: StageKind | None = None) -> None:
        """
        Move a multi-stage run to a non-terminal phase.

        Completed and Failed are reached only through ``succeed`` and ``fail``,
        which set the artifact or error that goes with them.
        """
        if phase.is_terminal:
            raise ValueError(f"Use succeed() or fail() to enter the {phase.value} phase")
        if self._state.mode is not PipelineMode.MULTI:
            logger.warning("Ignoring phase change outside multi-stage mode", phase=phase.value)
            return

        self._commit(
            self._state.evolve(
                active_phase=phase,
                current_stage=current_stage,
                status=_status_for_phase(phase),
            )
        )

    def record_execution(self, record: ExecutionRecord) -> None:
        self._commit(self._state.evolve(executions=self._state.executions + (record,)))

    def succeed(self, artifact: str) -> None:
        changes = {
            "status": GenerationStatus.SUCCESS,
            "final_artifact": artifact,
            "error": None,
            "end_time": self._clock(),
        }
        if self._state.mode is PipelineMode.MULTI:
            changes.update(active_phase=PipelinePhase.COMPLETED, current_stage=None)
        self._commit(self._state.evolve(**changes))

    def fail(self, error: str) -> None:
        changes = {
            "status": GenerationStatus.ERROR,
            "final_artifact": None,
            "error": error,
            "end_time": self._clock(),
        }
        if self._state.mode is PipelineMode.MULTI:
            changes.update(active_phase=PipelinePhase.FAILED, current_stage=None)
        self._commit(self._state.evolve(**changes))

    def reset(self) -> None:
        self._commit(GenerationState())

    # Derived views

    @property
    def is_generating(self) -> bool:
        return self._state.status is GenerationStatus.GENERATING

    @property
    def has_error(self) -> bool:
        return self._state.status is GenerationStatus.ERROR

    @property
    def has_success(self) -> bool:
        return self._state.status is GenerationStatus.SUCCESS

    @property
    def is_multi_stage(self) -> bool:
        return self._state.mode is PipelineMode.MULTI

    @property
    def progress_fraction(self) -> float:
        state = self._state
        if state.mode is PipelineMode.SINGLE:
            return _SINGLE_PROGRESS[state.status]
        if state.active_phase is None:
            return 0.0
        return state.active_phase.progress

    @property
    def phase_description(self) -> str:
        state = self._state
        if state.mode is PipelineMode.SINGLE:
            return _SINGLE_DESCRIPTIONS[state.status]
        if state.active_phase is None:
            return "Ready to generate"
        return _MULTI_DESCRIPTIONS[state.active_phase]

    @property
    def total_execution_time(self) -> float:
        return self._state.total_execution_time

    @property
    def execution_summary(self) -> str:
        """Readable run summary for multi-stage runs; empty in single mode."""
        state = self._state
        if state.mode is not PipelineMode.MULTI:
            return ""

        lines = []
        if state.prompt:
            lines.append(f"Request: {state.prompt}")
        if state.active_phase:
            lines.append(f"Status: {state.active_phase.display_name}")

        if state.executions:
            lines.append("\nExecution Details:")
            for record in state.executions:
                mark = "OK" if record.status is ExecutionStatus.COMPLETED else "FAILED"
                lines.append(f"[{mark}] {record.stage.display_name} ({record.duration_seconds:.1f}s)")
                if record.error:
                    lines.append(f"   Error: {record.error}")

        total = state.total_execution_time
        if total > 0:
            lines.append(f"\nTotal Time: {total:.1f}s")

        return "\n".join(lines)
