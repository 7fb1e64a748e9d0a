"""Tests for run persistence."""

import pytest

from conftest import make_event
from conveyor_controller.src.models.run import Run, RunState, StepResult
from conveyor_controller.src.services.run_recorder import RunRecorder

@pytest.fixture
def recorder(tmp_path):
    return RunRecorder(database_url=f"sqlite:///{tmp_path / 'runs.db'}")

def finished_run(pipeline: str, state: RunState, exit_codes=(0,)) -> Run:
    run = Run.for_event(pipeline, make_event())
    run.start()
    for position, code in enumerate(exit_codes):
        run.record(StepResult(name=f"step-{position + 1}", position=position, exit_code=code, output="log"))
    run.finish(state)
    return run

def test_only_terminal_runs_are_recorded(recorder):
    run = Run.for_event("Lint", make_event())
    recorder(run)
    run.start()
    recorder(run)

    assert recorder.recent_runs() == []

    run.record(StepResult(name="step-1", position=0, exit_code=0))
    run.finish(RunState.SUCCEEDED)
    recorder(run)

    recorded = recorder.recent_runs()
    assert len(recorded) == 1
    assert recorded[0]["id"] == run.id
    assert recorded[0]["status"] == "succeeded"
    assert recorded[0]["steps"] == [
        {"order": 0, "name": "step-1", "exit_code": 0, "error": None, "duration": 0.0}
    ]

def test_recording_twice_replaces_steps(recorder):
    run = finished_run("Tests", RunState.FAILED, exit_codes=(0, 1))

    recorder.record(run)
    recorder.record(run)

    recorded = recorder.recent_runs()
    assert len(recorded) == 1
    assert [s["exit_code"] for s in recorded[0]["steps"]] == [0, 1]

def test_filter_and_stats(recorder):
    recorder.record(finished_run("Tests", RunState.SUCCEEDED))
    recorder.record(finished_run("Lint", RunState.FAILED, exit_codes=(1,)))
    recorder.record(finished_run("Lint", RunState.SUCCEEDED))

    assert {r["pipeline"] for r in recorder.recent_runs(pipeline="Lint")} == {"Lint"}
    assert len(recorder.recent_runs(limit=1)) == 1
    assert recorder.stats() == {"runs": {"succeeded": 2, "failed": 1}, "total_runs": 3}
    assert recorder.ping()
