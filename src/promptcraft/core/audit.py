"""
Audit trail for generation sessions.

``AuditLogger`` is the lifecycle interface the orchestrator reports to.
``GenerationAuditLog`` implements it on the structured logger and, when a
log directory is configured, also keeps a markdown timeline per session and
a JSON trace snapshot written on completion.
"""

import json
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from ..observability.logging import get_logger
from ..observability.probe import clear_session_metrics, get_session_metrics
from .models import (
    ContextAccumulator,
    ExecutionRecord,
    GenerationState,
    GenerationStatus,
    PipelineMode,
    StageKind,
)

logger = get_logger(__name__)

_PREVIEW_CHARS = 100
_OUTPUT_CHARS = 500


@runtime_checkable
class AuditLogger(Protocol):
    """Receives lifecycle events of a generation session."""

    def session_start(self, prompt: str, mode: PipelineMode) -> str: ...

    def stage_start(self, session_id: str, stage: StageKind, context: ContextAccumulator) -> None: ...

    def stage_complete(self, session_id: str, record: ExecutionRecord) -> None: ...

    def stage_failed(self, session_id: str, stage: StageKind, error: str, duration: float) -> None: ...

    def fallback(self, session_id: str, original_error: str, fallback_stage: StageKind) -> None: ...

    def session_complete(self, session_id: str, final_state: GenerationState) -> None: ...


def new_session_id() -> str:
    return f"{datetime.now(UTC):%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:6]}"


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _now() -> str:
    return datetime.now(UTC).strftime("%H:%M:%S.%f")[:-3]


def create_trace_snapshot(session_id: str, state: GenerationState, fallback_stages: list[str]) -> dict[str, Any]:
    """Build the JSON-safe audit snapshot of a finished session."""
    timings = {
        op: {
            "duration_ms": data["duration_ms"],
            "success": data["success"],
            "error": data.get("error_type"),
        }
        for op, data in get_session_metrics(session_id).items()
    }
    return {
        "session_id": session_id,
        "success": state.status is GenerationStatus.SUCCESS,
        "fallbacks": fallback_stages,
        "state": state.to_dict(),
        "total_execution_time": state.total_execution_time,
        "timings_ms": timings,
        "metadata": {
            "total_operations": len(timings),
            "failed_operations": sum(1 for data in timings.values() if not data["success"]),
        },
    }


def save_trace_snapshot(snapshot: dict[str, Any], log_dir: Path | str) -> Path:
    """Write a session snapshot to ``log_dir`` and return its path."""
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    snapshot_file = path / f"generation_trace_{snapshot['session_id']}.json"
    try:
        snapshot_file.write_text(json.dumps(snapshot, indent=2))
        logger.info(f"Saved trace snapshot: {snapshot_file}")
        return snapshot_file
    except OSError as e:
        logger.error(f"Failed to save trace snapshot: {e}")
        raise


class GenerationAuditLog:
    """Structured-log audit trail with optional markdown and JSON files."""

    def __init__(self, log_dir: Path | str | None = None):
        self.log_dir = Path(log_dir) if log_dir else None
        self._fallbacks: dict[str, list[str]] = {}
        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    def _log_file(self, session_id: str) -> Path | None:
        if not self.log_dir:
            return None
        return self.log_dir / f"generation_log_{session_id}.md"

    def _append(self, session_id: str, text: str) -> None:
        path = self._log_file(session_id)
        if path is None:
            return
        with path.open("a", encoding="utf-8") as f:
            f.write(text)

    def session_start(self, prompt: str, mode: PipelineMode) -> str:
        session_id = new_session_id()
        self._fallbacks[session_id] = []
        logger.info("Generation session started", session_id=session_id, mode=mode.value, prompt_length=len(prompt))

        self._append(
            session_id,
            "# Generation Log\n\n"
            f"**Session ID:** `{session_id}`  \n"
            f"**Timestamp:** `{datetime.now(UTC).isoformat()}`  \n"
            f"**Mode:** `{mode.value.capitalize()}`\n\n"
            f"## User Prompt\n```\n{prompt}\n```\n\n"
            "## Stage Timeline\n\n",
        )
        return session_id

    def stage_start(self, session_id: str, stage: StageKind, context: ContextAccumulator) -> None:
        logger.info(f"{stage.display_name} started", session_id=session_id, stage=stage.value)

        lines = [
            f"### {stage.display_name} started\n",
            f"**Time:** `{_now()}`  ",
            f"**Model:** `{stage.model_name}`  ",
            f"**Description:** {stage.description}\n",
            "**Context:**",
            f"- Original Prompt: `{_preview(context.original_prompt, _PREVIEW_CHARS)}`",
        ]
        for label, value in (
            ("Planner Output", context.planner_output),
            ("Themer Output", context.themer_output),
            ("Coder Output", context.coder_output),
        ):
            if value:
                lines.append(f"- {label}: `{_preview(value, _PREVIEW_CHARS)}`")
        self._append(session_id, "\n".join(lines) + "\n\n")

    def stage_complete(self, session_id: str, record: ExecutionRecord) -> None:
        logger.info(
            f"{record.stage.display_name} completed",
            session_id=session_id,
            stage=record.stage.value,
            duration_s=round(record.duration_seconds, 3),
            output_chars=len(record.content or ""),
        )

        text = (
            f"### {record.stage.display_name} completed\n\n"
            f"**Time:** `{_now()}`  \n"
            f"**Execution Time:** `{record.duration_seconds:.2f}s`  \n"
            f"**Status:** `{record.status.display_name}`\n\n"
        )
        if record.content:
            text += (
                f"**Output:**\n```\n{_preview(record.content, _OUTPUT_CHARS)}\n```\n\n"
                f"**Full Output Length:** `{len(record.content)} characters`\n\n"
            )
        self._append(session_id, text)

    def stage_failed(self, session_id: str, stage: StageKind, error: str, duration: float) -> None:
        logger.warning(
            f"{stage.display_name} failed: {error}",
            session_id=session_id,
            stage=stage.value,
            duration_s=round(duration, 3),
        )
        self._append(
            session_id,
            f"### {stage.display_name} failed\n\n"
            f"**Time:** `{_now()}`  \n"
            f"**Execution Time:** `{duration:.2f}s`  \n"
            f"**Model:** `{stage.model_name}`\n\n"
            f"**Error:**\n```\n{error}\n```\n\n",
        )

    def fallback(self, session_id: str, original_error: str, fallback_stage: StageKind) -> None:
        self._fallbacks.setdefault(session_id, []).append(fallback_stage.value)
        logger.warning(
            f"Falling back to {fallback_stage.display_name}: {original_error}",
            session_id=session_id,
            fallback_stage=fallback_stage.value,
        )
        self._append(
            session_id,
            "### Fallback to single-stage mode\n\n"
            f"**Time:** `{_now()}`  \n"
            f"**Fallback Stage:** `{fallback_stage.display_name}`\n\n"
            f"**Original Error:**\n```\n{original_error}\n```\n\n",
        )

    def session_complete(self, session_id: str, final_state: GenerationState) -> None:
        success = final_state.status is GenerationStatus.SUCCESS
        fallbacks = self._fallbacks.pop(session_id, [])
        logger.info(
            "Generation session completed",
            session_id=session_id,
            status=final_state.status.value,
            mode=final_state.mode.value,
            executions=len(final_state.executions),
            fallbacks=len(fallbacks),
            total_s=round(final_state.total_execution_time, 3),
        )

        if not self.log_dir:
            clear_session_metrics(session_id)
            return

        text = (
            "---\n\n"
            f"## Generation Session {'SUCCESS' if success else 'FAILED'}\n\n"
            f"**Completion Time:** `{_now()}`  \n"
            f"**Total Execution Time:** `{final_state.total_execution_time:.2f}s`  \n"
            f"**Mode:** `{final_state.mode.value.capitalize()}`\n\n"
        )
        if final_state.mode is PipelineMode.MULTI and final_state.active_phase:
            text += (
                f"**Stage Executions:** `{len(final_state.executions)}`  \n"
                f"**Final Phase:** `{final_state.active_phase.display_name}`\n\n"
            )
        if success and final_state.final_artifact:
            text += f"**Artifact Length:** `{len(final_state.final_artifact)} characters`\n\n"
        if final_state.error:
            text += f"**Final Error:**\n```\n{final_state.error}\n```\n\n"
        if final_state.executions:
            text += "## Execution Summary\n\n| Stage | Status | Time | Output Size |\n|-------|--------|------|-------------|\n"
            for record in final_state.executions:
                text += (
                    f"| {record.stage.display_name} | {record.status.display_name} "
                    f"| {record.duration_seconds:.2f}s | {len(record.content or '')} chars |\n"
                )
        self._append(session_id, text)

        snapshot = create_trace_snapshot(session_id, final_state, fallbacks)
        save_trace_snapshot(snapshot, self.log_dir)
        clear_session_metrics(session_id)

    def list_log_files(self) -> list[Path]:
        """Markdown session logs, newest first."""
        if not self.log_dir or not self.log_dir.exists():
            return []
        return sorted(self.log_dir.glob("generation_log_*.md"), key=lambda p: p.stat().st_mtime, reverse=True)
