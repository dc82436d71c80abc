"""
Shared pytest fixtures: fake stage clients, a recording audit logger and
per-test isolation of module-level state.
"""

import logging
import os

import pytest

from promptcraft.agents.base import StageResult
from promptcraft.config.settings import Settings, get_settings
from promptcraft.core.models import ContextAccumulator, PipelineMode, StageKind
from promptcraft.core.orchestrator import PipelineOrchestrator
from promptcraft.core.store import StateStore
from promptcraft.observability.logging import clear_session_id
from promptcraft.observability.metrics import _reset_metrics_for_tests

PLAN_JSON = (
    '{"features": ["start", "stop", "reset"], "macroFlows": ["start timer"], '
    '"acceptanceCriteria": ["counts seconds"], "testChecklist": ["press start"], '
    '"architecture": "single App component", "userExperience": "one large display"}'
)
THEME_TEXT = "Mood: calm and focused. Background #F5F5F7, text #1D1D1F, accent #0A84FF, radius 12px."
CODER_CODE = (
    "function App() {\n"
    "  const [seconds, setSeconds] = React.useState(0);\n"
    "  return <div>{seconds}</div>;\n"
    "}"
)
REVIEWED_CODE = (
    "function App() {\n"
    "  const [seconds, setSeconds] = React.useState(0);\n"
    "  const [running, setRunning] = React.useState(false);\n"
    "  return <div onClick={() => setRunning(!running)}>{seconds}</div>;\n"
    "}"
)

DEFAULT_OUTPUTS = {
    StageKind.PLANNER: PLAN_JSON,
    StageKind.THEMER: THEME_TEXT,
    StageKind.CODER: CODER_CODE,
    StageKind.REVIEWER: REVIEWED_CODE,
}


class FakeStageClient:
    """Stage runner returning queued results and recording every context."""

    def __init__(self, stage: StageKind, *results, raises: Exception | None = None, on_run=None):
        self.stage = stage
        self._results = list(results) or [StageResult.completed(DEFAULT_OUTPUTS[stage], 0.01)]
        self.raises = raises
        self.on_run = on_run
        self.calls: list[ContextAccumulator] = []

    def respond_with(self, *results: StageResult) -> None:
        self._results = list(results)

    async def run(self, context: ContextAccumulator) -> StageResult:
        self.calls.append(context)
        if self.on_run:
            self.on_run()
        if self.raises:
            raise self.raises
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


class RecordingAuditLog:
    """Audit logger that records each lifecycle call as ``(event, args)``."""

    def __init__(self, session_id: str = "session-test", fail_on: set[str] | None = None):
        self.session_id = session_id
        self.fail_on = fail_on or set()
        self.events: list[tuple[str, tuple]] = []

    def _record(self, event: str, *args):
        self.events.append((event, args))
        if event in self.fail_on:
            raise RuntimeError(f"audit {event} unavailable")

    def session_start(self, prompt, mode):
        self._record("session_start", prompt, mode)
        return self.session_id

    def stage_start(self, session_id, stage, context):
        self._record("stage_start", session_id, stage, context)

    def stage_complete(self, session_id, record):
        self._record("stage_complete", session_id, record)

    def stage_failed(self, session_id, stage, error, duration):
        self._record("stage_failed", session_id, stage, error, duration)

    def fallback(self, session_id, original_error, fallback_stage):
        self._record("fallback", session_id, original_error, fallback_stage)

    def session_complete(self, session_id, final_state):
        self._record("session_complete", session_id, final_state)

    def names(self) -> list[str]:
        return [event for event, _ in self.events]

    def calls(self, event: str) -> list[tuple]:
        return [args for name, args in self.events if name == event]


@pytest.fixture(autouse=True)
def test_isolation(monkeypatch):
    """Keep environment, cached settings and module globals from leaking between tests."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    for key in list(os.environ):
        if key.startswith("CRAFT_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    _reset_metrics_for_tests()
    clear_session_id()

    from promptcraft.api.server import _reset_globals_for_tests

    _reset_globals_for_tests()
    yield
    get_settings.cache_clear()
    clear_session_id()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def settings() -> Settings:
    return Settings(inference={"api_key": "test-key", "retry_wait_min": 0, "retry_wait_max": 0})


@pytest.fixture
def clients() -> dict[StageKind, FakeStageClient]:
    return {stage: FakeStageClient(stage) for stage in StageKind.ordered()}


@pytest.fixture
def audit() -> RecordingAuditLog:
    return RecordingAuditLog()


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def make_orchestrator(settings, clients, audit, store):
    """Build an orchestrator over the fake clients; keyword overrides replace defaults."""

    def _make(mode: PipelineMode = PipelineMode.MULTI, **overrides) -> PipelineOrchestrator:
        stage_clients = dict(clients)
        stage_clients.update(overrides.pop("clients", {}))
        return PipelineOrchestrator(
            clients=stage_clients,
            store=overrides.pop("store", store),
            audit=overrides.pop("audit", audit),
            settings=overrides.pop("settings", settings),
            mode_provider=overrides.pop("mode_provider", lambda: mode),
        )

    return _make
