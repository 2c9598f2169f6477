from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, cast
from uuid import uuid4

from tapship.core.result import Err, Ok, Result
from tapship.core.structured import as_obj_list, as_str_dict, get_str
from tapship.platform.files import atomic_write_text
from tapship.services.release.errors import ReleaseError
from tapship.services.release.model import CATEGORIES, STEPS, Artifact, Category, StepName

StatePhase = StepName | Literal["done"]

_STATE_FILE = "release-state.json"


@dataclass(frozen=True, slots=True)
class ReleaseState:
    """Progress of the in-flight release.

    ``step`` is the next step to run; ``completed`` lists steps already
    satisfied, in order. ``wrote`` records whether any step changed
    something (a run that wrote nothing is reported as already published).
    """

    schema: Literal[1]
    release_id: str
    created_at: str
    updated_at: str
    version: str
    previous: str
    message: str
    category: Category
    date: str
    step: StatePhase
    completed: tuple[StepName, ...]
    wrote: bool
    tag_commit: str | None
    artifact_url: str | None
    artifact_sha256: str | None

    @property
    def artifact(self) -> Artifact | None:
        if self.artifact_url is None or self.artifact_sha256 is None:
            return None
        return Artifact(url=self.artifact_url, sha256=self.artifact_sha256)

    def complete(self, step: StepName, *, wrote: bool, next_step: StatePhase) -> ReleaseState:
        completed = self.completed if step in self.completed else (*self.completed, step)
        return replace(
            self,
            completed=completed,
            wrote=self.wrote or wrote,
            step=next_step,
            updated_at=_now(),
        )


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


def state_path(*, state_dir: Path) -> Path:
    return state_dir / _STATE_FILE


def new_state(
    *,
    version: str,
    previous: str,
    message: str,
    category: Category,
    date: str,
) -> ReleaseState:
    now = _now()
    return ReleaseState(
        schema=1,
        release_id=f"release-{uuid4().hex[:12]}",
        created_at=now,
        updated_at=now,
        version=version,
        previous=previous,
        message=message,
        category=category,
        date=date,
        step=STEPS[0],
        completed=(),
        wrote=False,
        tag_commit=None,
        artifact_url=None,
        artifact_sha256=None,
    )


def save_state(*, state_dir: Path, state: ReleaseState) -> Result[ReleaseState, ReleaseError]:
    path = state_path(state_dir=state_dir)
    payload: dict[str, object] = {
        "schema": 1,
        "release_id": state.release_id,
        "created_at": state.created_at,
        "updated_at": state.updated_at,
        "version": state.version,
        "previous": state.previous,
        "message": state.message,
        "category": state.category,
        "date": state.date,
        "step": state.step,
        "completed": list(state.completed),
        "wrote": state.wrote,
        "tag_commit": state.tag_commit,
        "artifact_url": state.artifact_url,
        "artifact_sha256": state.artifact_sha256,
    }

    try:
        # Keep the state directory out of `git status` (the gate checks it).
        gitignore = state_dir / ".gitignore"
        if not gitignore.exists():
            atomic_write_text(gitignore, "*\n", encoding="utf-8")
        atomic_write_text(path, json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"failed to write release state: {e}",
                hint=str(path),
            )
        )
    return Ok(state)


def load_state(*, state_dir: Path) -> Result[ReleaseState | None, ReleaseError]:
    path = state_path(state_dir=state_dir)
    if not path.exists():
        return Ok(None)

    def invalid(message: str) -> Err[ReleaseError]:
        return Err(
            ReleaseError(
                kind="state_conflict",
                message=message,
                hint=f"inspect or remove {path} (tapship abandon)",
            )
        )

    try:
        obj: object = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return invalid(f"failed to load release state: {e}")

    d = as_str_dict(obj)
    if d is None:
        return invalid("invalid release state format")

    schema = d.get("schema")
    if schema != 1:
        return invalid(f"unsupported release state schema: {schema}")

    release_id = get_str(d, "release_id")
    created_at = get_str(d, "created_at")
    version = get_str(d, "version")
    previous = get_str(d, "previous")
    message = get_str(d, "message")
    category = get_str(d, "category")
    date = get_str(d, "date")
    step = get_str(d, "step")
    completed_raw = as_obj_list(d.get("completed"))

    if (
        release_id is None
        or created_at is None
        or version is None
        or previous is None
        or message is None
        or category not in CATEGORIES
        or date is None
        or (step not in STEPS and step != "done")
        or completed_raw is None
        or not all(s in STEPS for s in completed_raw)
    ):
        return invalid("release state missing required fields")

    return Ok(
        ReleaseState(
            schema=1,
            release_id=release_id,
            created_at=created_at,
            updated_at=get_str(d, "updated_at") or created_at,
            version=version,
            previous=previous,
            message=message,
            category=cast(Category, category),
            date=date,
            step=cast(StatePhase, step),
            completed=tuple(cast(StepName, s) for s in completed_raw),
            wrote=bool(d.get("wrote", False)),
            tag_commit=get_str(d, "tag_commit"),
            artifact_url=get_str(d, "artifact_url"),
            artifact_sha256=get_str(d, "artifact_sha256"),
        )
    )


def clear_state(*, state_dir: Path) -> Result[bool, ReleaseError]:
    """Delete the persisted state; Ok(False) when there was none."""
    path = state_path(state_dir=state_dir)
    if not path.exists():
        return Ok(False)
    try:
        path.unlink()
    except OSError as e:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"failed to delete release state: {e}",
                hint=str(path),
            )
        )
    return Ok(True)
