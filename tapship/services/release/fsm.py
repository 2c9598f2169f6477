from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

from tapship.core.result import Err, Ok, Result
from tapship.services.release.errors import ReleaseError

S = TypeVar("S")


@dataclass(frozen=True, slots=True)
class StepAdvance[S]:
    state: S


@dataclass(frozen=True, slots=True)
class StepFinish[S]:
    state: S


StepOutcome = StepAdvance[S] | StepFinish[S]
StepHandler = Callable[[S], Result[StepOutcome[S], ReleaseError]]
SaveState = Callable[[S], Result[S, ReleaseError]]
GetStep = Callable[[S], str]


def advance[S](state: S) -> StepAdvance[S]:
    return StepAdvance(state=state)


def finish[S](state: S) -> StepFinish[S]:
    return StepFinish(state=state)


def run_state_machine(
    *,
    initial_state: S,
    get_step: GetStep[S],
    handlers: Mapping[str, StepHandler[S]],
    save_state: SaveState[S],
) -> Result[S, ReleaseError]:
    """Run handlers until one finishes, persisting state after every advance.

    Errors are stamped with the step that produced them. The state saved
    before a failure is left as-is so the run can be resumed.
    """
    current = initial_state

    while True:
        step = get_step(current)
        handler = handlers.get(step)
        if handler is None:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"unknown release step: {step}",
                )
            )

        outcome = handler(current)
        if isinstance(outcome, Err):
            return Err(outcome.error.at_step(step))

        saved = save_state(outcome.value.state)
        if isinstance(saved, Err):
            return Err(saved.error.at_step(step))
        current = saved.value

        if isinstance(outcome.value, StepFinish):
            return Ok(current)
