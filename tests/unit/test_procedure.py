"""Tests for the step driver and persisted progress."""

import json

import pytest

from kubeadm_bootstrap.exceptions import CommandError, ConfigurationError
from kubeadm_bootstrap.models.state import ProcedureState
from kubeadm_bootstrap.procedure import Procedure, StateStore, Step


def recording_steps(calls, fail_on=None, error=None):
    def make(name):
        def action(ctx):
            calls.append(name)
            if name == fail_on:
                raise error or CommandError(f"{name} exploded")

        return Step(name, action, f"the {name} step")

    return [make(n) for n in ("first", "second", "third")]


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "state")


def test_steps_run_in_order(ctx):
    calls = []
    result = Procedure("demo", recording_steps(calls)).run(ctx)

    assert calls == ["first", "second", "third"]
    assert result.success
    assert result.state == "completed"
    assert result.failed_step is None
    assert result.error is None


def test_failure_stops_remaining_steps(ctx):
    calls = []
    result = Procedure("demo", recording_steps(calls, fail_on="second")).run(ctx)

    assert calls == ["first", "second"]
    assert result.state == "failed"
    assert result.failed_step == "second"
    assert result.error.step == "second"
    assert result.error.message == "Step 'second' failed: second exploded"


def test_unexpected_exception_propagates_and_is_recorded(ctx, store):
    calls = []
    procedure = Procedure("demo", recording_steps(calls, fail_on="first", error=RuntimeError("bug")))

    with pytest.raises(RuntimeError):
        procedure.run(ctx, store=store)

    saved = store.load("demo")
    assert saved.failed_step == "first"
    assert saved.error == "bug"


def test_duplicate_step_names_rejected():
    step = Step("same", lambda ctx: None)

    with pytest.raises(ValueError):
        Procedure("demo", [step, step])


def test_unknown_start_step(ctx):
    procedure = Procedure("demo", recording_steps([]))

    with pytest.raises(ConfigurationError) as exc_info:
        procedure.run(ctx, start_at="fourth")

    assert "fourth" in exc_info.value.message
    assert "first, second, third" in exc_info.value.details


def test_start_at_skips_earlier_steps(ctx):
    calls = []
    result = Procedure("demo", recording_steps(calls)).run(ctx, start_at="second")

    assert calls == ["second", "third"]
    assert [r.name for r in result.results] == ["second", "third"]


def test_preflight_runs_before_any_step(ctx):
    calls = []

    def preflight(ctx):
        raise ConfigurationError("bad setting")

    procedure = Procedure("demo", recording_steps(calls), preflight=preflight)

    with pytest.raises(ConfigurationError):
        procedure.run(ctx)

    assert calls == []


def test_state_saved_after_each_step(ctx, store):
    Procedure("demo", recording_steps([], fail_on="third")).run(ctx, store=store)

    saved = json.loads(store.path_for("demo").read_text())
    assert saved["state"] == "failed"
    assert saved["completed"] == ["first", "second"]
    assert saved["failed_step"] == "third"
    assert saved["error"] == "third exploded"
    assert [s["name"] for s in saved["steps"]] == ["first", "second", "third"]


def test_completed_state(ctx, store):
    procedure = Procedure("demo", recording_steps([]))
    procedure.run(ctx, store=store)

    saved = store.load("demo")
    assert saved.finished
    assert store.next_step(procedure) is None


def test_resume_continues_at_failed_step(ctx, store):
    calls = []
    failing = Procedure("demo", recording_steps(calls, fail_on="second"))
    failing.run(ctx, store=store)

    fixed = Procedure("demo", recording_steps(calls))
    start_at = store.next_step(fixed)
    result = fixed.run(ctx, start_at=start_at, store=store)

    assert start_at == "second"
    assert calls == ["first", "second", "second", "third"]
    assert result.success
    saved = store.load("demo")
    assert saved.finished
    assert saved.completed == ["first", "second", "third"]
    assert saved.failed_step is None


def test_next_step_for_interrupted_run(store):
    procedure = Procedure("demo", recording_steps([]))
    assert store.load("demo") is None
    assert store.next_step(procedure) is None

    # Killed after the first step, before any failure was recorded
    store.save(ProcedureState(procedure="demo", state="first", completed=["first"]))

    assert store.next_step(procedure) == "second"


def test_fresh_run_ignores_previous_state(ctx, store):
    Procedure("demo", recording_steps([], fail_on="first")).run(ctx, store=store)
    Procedure("demo", recording_steps([])).run(ctx, store=store)

    saved = store.load("demo")
    assert saved.finished
    assert [s.name for s in saved.steps] == ["first", "second", "third"]


def test_corrupt_state_file(store):
    store.path_for("demo").parent.mkdir(parents=True)
    store.path_for("demo").write_text("{not json")

    with pytest.raises(ConfigurationError) as exc_info:
        store.load("demo")

    assert "demo.json" in exc_info.value.message


def test_unwritable_state_does_not_fail_procedure(ctx, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    store = StateStore(blocker / "state")

    result = Procedure("demo", recording_steps([])).run(ctx, store=store)

    assert result.success


def test_step_header_printed(ctx):
    Procedure("demo", recording_steps([])).run(ctx)

    output = ctx.runner.console.file.getvalue()
    assert "==> [1/3] first" in output
    assert "==> [3/3] third" in output
