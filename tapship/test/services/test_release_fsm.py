from __future__ import annotations

from dataclasses import dataclass, replace

from tapship.core.result import Err, Ok, Result
from tapship.services.release.errors import ReleaseError
from tapship.services.release.fsm import StepOutcome, advance, finish, run_state_machine


@dataclass(frozen=True, slots=True)
class _State:
    step: str
    counter: int


def test_run_state_machine_advances_and_saves() -> None:
    saved: list[_State] = []

    def save_state(s: _State) -> Result[_State, ReleaseError]:
        saved.append(s)
        return Ok(s)

    def step_a(s: _State) -> Result[StepOutcome[_State], ReleaseError]:
        return Ok(advance(replace(s, step="b", counter=s.counter + 1)))

    def step_b(s: _State) -> Result[StepOutcome[_State], ReleaseError]:
        return Ok(finish(replace(s, step="done", counter=s.counter + 1)))

    result = run_state_machine(
        initial_state=_State(step="a", counter=0),
        get_step=lambda s: s.step,
        handlers={"a": step_a, "b": step_b},
        save_state=save_state,
    )

    assert result == Ok(_State(step="done", counter=2))
    assert saved == [_State(step="b", counter=1), _State(step="done", counter=2)]


def test_run_state_machine_unknown_step_fails() -> None:
    result = run_state_machine(
        initial_state=_State(step="missing", counter=0),
        get_step=lambda s: s.step,
        handlers={},
        save_state=lambda s: Ok(s),
    )

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_input"


def test_run_state_machine_stamps_handler_error_with_step() -> None:
    saved: list[_State] = []

    def ok_step(s: _State) -> Result[StepOutcome[_State], ReleaseError]:
        return Ok(advance(replace(s, step="b")))

    def bad_step(_: _State) -> Result[StepOutcome[_State], ReleaseError]:
        return Err(ReleaseError(kind="build_failed", message="boom"))

    def save_state(s: _State) -> Result[_State, ReleaseError]:
        saved.append(s)
        return Ok(s)

    result = run_state_machine(
        initial_state=_State(step="a", counter=0),
        get_step=lambda s: s.step,
        handlers={"a": ok_step, "b": bad_step},
        save_state=save_state,
    )

    assert isinstance(result, Err)
    assert result.error.kind == "build_failed"
    assert result.error.step == "b"
    # The failing step is not saved as completed.
    assert saved == [_State(step="b", counter=0)]


def test_run_state_machine_keeps_existing_step_on_error() -> None:
    def bad_step(_: _State) -> Result[StepOutcome[_State], ReleaseError]:
        return Err(ReleaseError(kind="tag_exists", message="taken", step="tag"))

    result = run_state_machine(
        initial_state=_State(step="a", counter=0),
        get_step=lambda s: s.step,
        handlers={"a": bad_step},
        save_state=lambda s: Ok(s),
    )

    assert isinstance(result, Err)
    assert result.error.step == "tag"


def test_run_state_machine_save_failure_stops() -> None:
    calls: list[str] = []

    def step_a(s: _State) -> Result[StepOutcome[_State], ReleaseError]:
        calls.append("a")
        return Ok(advance(replace(s, step="b")))

    def step_b(s: _State) -> Result[StepOutcome[_State], ReleaseError]:
        calls.append("b")
        return Ok(finish(s))

    def save_state(_: _State) -> Result[_State, ReleaseError]:
        return Err(ReleaseError(kind="invalid_input", message="disk full"))

    result = run_state_machine(
        initial_state=_State(step="a", counter=0),
        get_step=lambda s: s.step,
        handlers={"a": step_a, "b": step_b},
        save_state=save_state,
    )

    assert isinstance(result, Err)
    assert result.error.step == "a"
    assert calls == ["a"]
