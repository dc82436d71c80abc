"""
Tests for the state store: transitions, change notification and derived views.
"""

import pytest

from promptcraft.core.models import (
    ExecutionRecord,
    GenerationState,
    GenerationStatus,
    PipelineMode,
    PipelinePhase,
    StageKind,
)
from promptcraft.core.store import StateStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _multi_store(clock=None) -> StateStore:
    store = StateStore(clock=clock or FakeClock())
    store.begin_generation("Build a timer", PipelineMode.MULTI)
    return store


class TestTransitions:
    def test_begin_multi_generation(self):
        store = _multi_store()
        state = store.state

        assert state.status is GenerationStatus.GENERATING
        assert state.mode is PipelineMode.MULTI
        assert state.prompt == "Build a timer"
        assert state.active_phase is PipelinePhase.PLANNER
        assert state.current_stage is StageKind.PLANNER
        assert state.start_time == 1000.0
        assert state.end_time is None

    def test_begin_single_generation_has_no_phase(self):
        store = StateStore()
        store.begin_generation("Build a timer", PipelineMode.SINGLE)

        assert store.state.active_phase is None
        assert store.state.current_stage is None
        assert not store.is_multi_stage

    def test_begin_discards_previous_run(self):
        store = _multi_store()
        store.record_execution(ExecutionRecord.completed(StageKind.PLANNER, "plan", 0.1))
        store.fail("boom")

        store.begin_generation("Build a clock", PipelineMode.SINGLE)

        assert store.state.executions == ()
        assert store.state.error is None
        assert store.state.prompt == "Build a clock"

    def test_set_phase_moves_stage(self):
        store = _multi_store()

        store.set_phase(PipelinePhase.CODER, StageKind.CODER)

        assert store.state.active_phase is PipelinePhase.CODER
        assert store.state.current_stage is StageKind.CODER
        assert store.state.status is GenerationStatus.GENERATING

    @pytest.mark.parametrize("phase", [PipelinePhase.COMPLETED, PipelinePhase.FAILED])
    def test_terminal_phase_rejected(self, phase):
        store = _multi_store()
        before = store.state

        with pytest.raises(ValueError, match="succeed"):
            store.set_phase(phase)

        assert store.state is before
        assert store.state.final_artifact is None
        assert store.state.status is GenerationStatus.GENERATING

    def test_set_phase_ignored_outside_multi(self):
        store = StateStore()
        store.begin_generation("Build a timer", PipelineMode.SINGLE)
        before = store.state

        store.set_phase(PipelinePhase.CODER, StageKind.CODER)

        assert store.state is before

    def test_record_execution_appends(self):
        store = _multi_store()
        first = ExecutionRecord.completed(StageKind.PLANNER, "plan", 0.1)
        second = ExecutionRecord.completed(StageKind.THEMER, "theme", 0.1)

        store.record_execution(first)
        store.record_execution(second)

        assert store.state.executions == (first, second)

    def test_succeed_multi(self):
        clock = FakeClock()
        store = _multi_store(clock)
        clock.now = 1030.0

        store.succeed("function App() {}")

        state = store.state
        assert state.status is GenerationStatus.SUCCESS
        assert state.final_artifact == "function App() {}"
        assert state.error is None
        assert state.active_phase is PipelinePhase.COMPLETED
        assert state.current_stage is None
        assert state.end_time == 1030.0
        assert store.has_success

    def test_fail_multi(self):
        store = _multi_store()

        store.fail("rate limited")

        state = store.state
        assert state.status is GenerationStatus.ERROR
        assert state.error == "rate limited"
        assert state.final_artifact is None
        assert state.active_phase is PipelinePhase.FAILED
        assert store.has_error

    def test_succeed_single_leaves_phase_empty(self):
        store = StateStore()
        store.begin_generation("Build a timer", PipelineMode.SINGLE)

        store.succeed("function App() {}")

        assert store.state.active_phase is None
        assert store.has_success

    def test_reset_is_idempotent(self):
        store = _multi_store()
        store.succeed("function App() {}")

        store.reset()
        first = store.state
        store.reset()

        assert store.state == first == GenerationState()


class TestObservers:
    def test_observer_sees_every_change(self):
        store = StateStore()
        seen = []
        store.subscribe(seen.append)

        store.begin_generation("Build a timer", PipelineMode.MULTI)
        store.set_phase(PipelinePhase.THEMER, StageKind.THEMER)
        store.succeed("function App() {}")

        assert [s.status for s in seen] == [
            GenerationStatus.GENERATING,
            GenerationStatus.GENERATING,
            GenerationStatus.SUCCESS,
        ]
        assert seen[-1] is store.state

    def test_unchanged_state_not_republished(self):
        store = _multi_store()
        seen = []
        store.subscribe(seen.append)

        store.set_phase(PipelinePhase.PLANNER, StageKind.PLANNER)
        store.set_phase(PipelinePhase.PLANNER, StageKind.PLANNER)

        assert seen == []

    def test_reset_from_idle_does_not_notify(self):
        store = StateStore()
        seen = []
        store.subscribe(seen.append)

        store.reset()

        assert seen == []

    def test_unsubscribe(self):
        store = StateStore()
        seen = []
        unsubscribe = store.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        store.begin_generation("Build a timer", PipelineMode.MULTI)

        assert seen == []

    def test_failing_observer_does_not_block_others(self):
        store = StateStore()
        seen = []

        def broken(state):
            raise RuntimeError("ui gone")

        store.subscribe(broken)
        store.subscribe(seen.append)

        store.begin_generation("Build a timer", PipelineMode.MULTI)

        assert len(seen) == 1
        assert store.is_generating


class TestDerivedViews:
    def test_multi_progress_follows_phase(self):
        store = _multi_store()
        assert store.progress_fraction == 0.25

        store.set_phase(PipelinePhase.REVIEWER, StageKind.REVIEWER)
        assert store.progress_fraction == 0.9

        store.succeed("function App() {}")
        assert store.progress_fraction == 1.0

    def test_failed_multi_progress_is_zero(self):
        store = _multi_store()
        store.fail("boom")
        assert store.progress_fraction == 0.0

    def test_single_progress(self):
        store = StateStore()
        assert store.progress_fraction == 0.0

        store.begin_generation("Build a timer", PipelineMode.SINGLE)
        assert store.progress_fraction == 0.5

        store.succeed("function App() {}")
        assert store.progress_fraction == 1.0

    def test_phase_descriptions(self):
        store = StateStore()
        assert store.phase_description == "Ready to generate"

        store.begin_generation("Build a timer", PipelineMode.SINGLE)
        assert store.phase_description == "Generating application..."

        store.begin_generation("Build a timer", PipelineMode.MULTI)
        assert store.phase_description == "Planning specifications and features..."

        store.set_phase(PipelinePhase.THEMER, StageKind.THEMER)
        assert store.phase_description == "Designing theme and visual tokens..."

        store.fail("boom")
        assert store.phase_description == "Generation failed"

    def test_total_execution_time(self):
        clock = FakeClock()
        store = _multi_store(clock)
        clock.now = 1007.5
        store.succeed("function App() {}")

        assert store.total_execution_time == 7.5


class TestExecutionSummary:
    def test_empty_in_single_mode(self):
        store = StateStore()
        store.begin_generation("Build a timer", PipelineMode.SINGLE)
        store.succeed("function App() {}")

        assert store.execution_summary == ""

    def test_lists_each_stage(self):
        clock = FakeClock()
        store = _multi_store(clock)
        store.record_execution(ExecutionRecord.completed(StageKind.PLANNER, "plan", 1.24))
        store.record_execution(ExecutionRecord.completed(StageKind.THEMER, "theme", 2.0))
        store.record_execution(ExecutionRecord.completed(StageKind.CODER, "code", 3.0))
        store.record_execution(ExecutionRecord.failed(StageKind.REVIEWER, "timeout", 0.5))
        clock.now = 1010.0
        store.succeed("code")

        summary = store.execution_summary

        assert summary.startswith("Request: Build a timer\nStatus: Completed")
        assert "[OK] Planner/Spec (1.2s)" in summary
        assert "[OK] Coder (3.0s)" in summary
        assert "[FAILED] Reviewer/Polisher (0.5s)" in summary
        assert "   Error: timeout" in summary
        assert summary.endswith("Total Time: 10.0s")
