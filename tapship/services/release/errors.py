from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

ReleaseErrorKind = Literal[
    # precondition
    "wrong_branch",
    "dirty_tree",
    "stale_remote",
    # conflict
    "version_conflict",
    "tag_exists",
    "state_conflict",
    # transient
    "download_unavailable",
    # integrity
    "checksum_unstable",
    "ledger_corrupt",
    # best effort
    "verify_failed",
    # other
    "invalid_version_format",
    "invalid_input",
    "config_invalid",
    "build_failed",
    "git_failed",
    "publish_failed",
    "aborted",
]


@dataclass(frozen=True, slots=True)
class ReleaseError:
    """Canonical release error payload.

    ``step`` is filled in by the pipeline when the error surfaces from one
    of its steps, so the operator always sees where the run stopped.
    """

    kind: ReleaseErrorKind
    message: str
    hint: str | None = None
    step: str | None = None

    def at_step(self, step: str) -> ReleaseError:
        if self.step is not None:
            return self
        return replace(self, step=step)

    def pretty(self) -> str:
        prefix = f"[{self.step}] " if self.step else ""
        if self.hint:
            return f"{prefix}{self.message} (hint: {self.hint})"
        return f"{prefix}{self.message}"
