"""
Pipeline orchestrator: runs the generation stages and decides the outcome.

Multi-stage runs go Planner -> Themer -> Coder -> Reviewer, each stage
seeing the outputs recorded before it. A failed Planner, Themer or Coder
aborts the run and restarts it in single-stage mode on the original
prompt. A failed or degenerate Reviewer result is tolerated: the Coder's
output becomes the artifact.

The orchestrator never retries a stage itself; retries belong to the stage
clients. Audit calls are best effort and can never fail a run.
"""

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Protocol

from ..agents.base import StageResult
from ..config.settings import Settings, get_settings
from ..observability.logging import clear_session_id, get_logger, set_session_id
from ..observability.metrics import get_metrics_collector
from ..observability.probe import clear_session_metrics, probe
from ..observability.tracing import add_span_attributes, trace_span
from .audit import AuditLogger, GenerationAuditLog, new_session_id
from .models import (
    ContextAccumulator,
    ExecutionRecord,
    GenerationState,
    PipelineMode,
    StageKind,
)
from .store import StateStore

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Generation cancelled"

_ABORT_PREFIXES = {
    StageKind.PLANNER: "Planning failed",
    StageKind.THEMER: "Theme design failed",
    StageKind.CODER: "Code generation failed",
}


class StageRunner(Protocol):
    async def run(self, context: ContextAccumulator) -> StageResult: ...


ModeProvider = Callable[[], PipelineMode]


class StageAbort(Exception):
    """A fatal stage failure that ends the multi-stage attempt."""

    def __init__(self, stage: StageKind, error: str, duration: float):
        self.stage = stage
        self.error = error
        self.duration = duration
        self.message = f"{_ABORT_PREFIXES.get(stage, stage.display_name + ' failed')}: {error}"
        super().__init__(self.message)


class GenerationCancelled(Exception):
    pass


class PipelineOrchestrator:
    """
    Drives one generation at a time against a ``StateStore``.

    Args:
        clients: one runner per ``StageKind``
        store: state store to report into (a fresh one by default)
        audit: lifecycle event receiver (a ``GenerationAuditLog`` by default)
        settings: application settings
        mode_provider: resolves the pipeline mode when ``generate`` is not
            given one; defaults to ``settings.pipeline.multi_stage``
    """

    def __init__(
        self,
        clients: Mapping[StageKind, StageRunner],
        store: StateStore | None = None,
        audit: AuditLogger | None = None,
        settings: Settings | None = None,
        mode_provider: ModeProvider | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        missing = [stage.value for stage in StageKind.ordered() if stage not in clients]
        if missing:
            raise ValueError(f"Missing stage clients: {', '.join(missing)}")

        self.settings = settings or get_settings()
        self.clients = dict(clients)
        self.store = store or StateStore()
        self.audit = audit if audit is not None else GenerationAuditLog(self.settings.observability.log_dir)
        self._mode_provider = mode_provider or (lambda: self.settings.pipeline.mode)
        self._clock = clock
        self._cancel_requested = False
        self.session_id: str | None = None

    # Public API

    def resolve_mode(self, mode: PipelineMode | None = None) -> PipelineMode:
        return mode if mode is not None else self._mode_provider()

    @trace_span("pipeline.generate")
    async def generate(
        self,
        prompt: str,
        mode: PipelineMode | None = None,
        extra_instructions: str | None = None,
    ) -> GenerationState:
        """Run one generation and return the final state snapshot."""
        resolved = self.resolve_mode(mode)
        extra = extra_instructions if extra_instructions is not None else self.settings.pipeline.extra_instructions
        self._cancel_requested = False
        started = self._clock()

        self.store.begin_generation(prompt, resolved)
        session_id = self._start_session(prompt, resolved)
        self.session_id = session_id
        set_session_id(session_id)
        add_span_attributes(session_id=session_id, mode=resolved.value)

        logger.info(
            f"Generating in {resolved.value}-stage mode: {prompt[:100]}",
            mode=resolved.value,
            prompt_length=len(prompt),
        )

        try:
            with probe("pipeline.generate", session_id, mode=resolved.value):
                if resolved is PipelineMode.MULTI:
                    await self._run_multi(session_id, prompt, extra)
                else:
                    await self._run_single(session_id, prompt, extra)
        except asyncio.CancelledError:
            self.store.fail(CANCELLED_MESSAGE)
            self._audit("session_complete", session_id, self.store.state)
            clear_session_metrics(session_id)
            clear_session_id()
            raise

        final = self.store.state
        get_metrics_collector().record_generation(final.mode.value, final.status.value, self._clock() - started)
        logger.info(
            f"Generation finished with status {final.status.value}",
            mode=final.mode.value,
            executions=len(final.executions),
        )
        self._audit("session_complete", session_id, final)
        clear_session_metrics(session_id)
        clear_session_id()
        return final

    def cancel(self) -> bool:
        """
        Ask the running generation to stop.

        The run ends in error with a cancellation message once the stage in
        flight returns, never with an artifact.
        """
        if not self.store.is_generating:
            return False
        self._cancel_requested = True
        logger.info("Cancellation requested")
        return True

    def reset(self) -> None:
        self._cancel_requested = False
        self.session_id = None
        self.store.reset()

    # Paths

    async def _run_single(self, session_id: str, prompt: str, extra: str | None) -> None:
        stage = StageKind.CODER
        context = ContextAccumulator.from_records(prompt, stage, (), extra)
        self._audit("stage_start", session_id, stage, context)
        result = await self._invoke(stage, context)

        if result.succeeded:
            self._record_success(session_id, stage, result)
        else:
            self._record_failure(session_id, stage, result.error, result.duration_seconds)

        if self._cancel_requested:
            self._finish_cancelled()
        elif result.succeeded:
            self.store.succeed(result.content)
        else:
            self.store.fail(result.error)

    async def _run_multi(self, session_id: str, prompt: str, extra: str | None) -> None:
        try:
            artifact = await self._run_stages(session_id, prompt, extra)
        except GenerationCancelled:
            self._finish_cancelled()
            return
        except StageAbort as abort:
            self._record_failure(session_id, abort.stage, abort.error, abort.duration)
            if self._cancel_requested:
                self._finish_cancelled()
                return
            await self._fall_back(session_id, prompt, extra, abort)
            return

        if self._cancel_requested:
            self._finish_cancelled()
            return
        self.store.succeed(artifact)

    def _finish_cancelled(self) -> None:
        # Records written so far are kept
        logger.info("Generation cancelled")
        self.store.fail(CANCELLED_MESSAGE)

    async def _run_stages(self, session_id: str, prompt: str, extra: str | None) -> str:
        coder_output: str | None = None

        for stage in StageKind.ordered():
            if self._cancel_requested:
                raise GenerationCancelled()

            self.store.set_phase(stage.phase, stage)
            context = ContextAccumulator.from_records(prompt, stage, self.store.state.executions, extra)
            self._audit("stage_start", session_id, stage, context)
            result = await self._invoke(stage, context)

            if stage is StageKind.REVIEWER:
                return self._review_outcome(session_id, result, coder_output)

            if not result.succeeded:
                raise StageAbort(stage, result.error, result.duration_seconds)

            self._record_success(session_id, stage, result)
            if stage is StageKind.CODER:
                coder_output = result.content

        # The loop always returns at the reviewer
        raise AssertionError("stage order must end with the reviewer")

    def _review_outcome(self, session_id: str, result: StageResult, coder_output: str) -> str:
        min_length = self.settings.pipeline.reviewer_min_length
        if result.succeeded:
            length = len(result.content.strip())
            if length >= min_length:
                self._record_success(session_id, StageKind.REVIEWER, result)
                return result.content
            reason = f"Reviewer output too short or invalid ({length} < {min_length} characters)"
        else:
            reason = result.error

        logger.warning(f"Keeping coder output: {reason}", stage=StageKind.REVIEWER.value)
        self._record_failure(session_id, StageKind.REVIEWER, reason, result.duration_seconds)
        return coder_output

    async def _fall_back(self, session_id: str, prompt: str, extra: str | None, abort: StageAbort) -> None:
        logger.warning(f"Multi-stage run aborted, falling back to single-stage: {abort.message}")
        self._audit("fallback", session_id, abort.message, StageKind.CODER)
        get_metrics_collector().record_fallback(abort.stage.value)

        self.store.begin_generation(prompt, PipelineMode.SINGLE)
        await self._run_single(session_id, prompt, extra)

    # Stage invocation and bookkeeping

    async def _invoke(self, stage: StageKind, context: ContextAccumulator) -> StageResult:
        start = self._clock()
        try:
            result = await self.clients[stage].run(context)
        except Exception as e:
            logger.exception(f"{stage.display_name} client raised: {e}", stage=stage.value)
            return StageResult.failed(f"{stage.display_name} error: {e}", self._clock() - start)

        duration = self._clock() - start
        if result.succeeded and not (result.content or "").strip():
            return StageResult.failed(f"{stage.display_name} returned no content", duration)
        if not result.succeeded and not result.error:
            return StageResult.failed(f"{stage.display_name} failed", duration)
        return replace(result, duration_seconds=duration)

    def _record_success(self, session_id: str, stage: StageKind, result: StageResult) -> None:
        record = ExecutionRecord.completed(stage, result.content, result.duration_seconds)
        self.store.record_execution(record)
        self._audit("stage_complete", session_id, record)

    def _record_failure(self, session_id: str, stage: StageKind, error: str, duration: float) -> None:
        self.store.record_execution(ExecutionRecord.failed(stage, error, duration))
        self._audit("stage_failed", session_id, stage, error, duration)

    # Audit

    def _start_session(self, prompt: str, mode: PipelineMode) -> str:
        session_id = self._audit("session_start", prompt, mode)
        if isinstance(session_id, str) and session_id:
            return session_id
        return new_session_id()

    def _audit(self, event: str, *args):
        if self.audit is None:
            return None
        try:
            return getattr(self.audit, event)(*args)
        except Exception as e:
            logger.warning(f"Audit logger failed on {event}: {e}")
            return None
