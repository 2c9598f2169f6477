from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from tapship.services.release.errors import ReleaseError
from tapship.services.release.model import TagResolution
from tapship.services.release.tags import TagInfo

_TAG_CHOICES: dict[str, TagResolution] = {
    "r": "retry",
    "retry": "retry",
    "f": "force",
    "force": "force",
    "a": "adopt",
    "adopt": "adopt",
    "x": "abort",
    "abort": "abort",
}


class DecisionProvider(Protocol):
    """Operator decisions the pipeline cannot make on its own."""

    def resolve_tag_conflict(self, info: TagInfo, *, expected: str | None) -> TagResolution: ...

    def accept_failed_verification(self, error: ReleaseError) -> bool: ...

    def continue_after_build_failure(self, error: ReleaseError) -> bool: ...


class UnattendedDecisions:
    """Never guesses: aborts on conflict, declines every override."""

    def resolve_tag_conflict(self, info: TagInfo, *, expected: str | None) -> TagResolution:
        del info, expected
        return "abort"

    def accept_failed_verification(self, error: ReleaseError) -> bool:
        del error
        return False

    def continue_after_build_failure(self, error: ReleaseError) -> bool:
        del error
        return False


class PromptDecisions:
    """Asks the operator through injected prompt callables (typer in the CLI)."""

    def __init__(
        self,
        *,
        confirm: Callable[[str], bool],
        prompt: Callable[[str], str],
    ) -> None:
        self._confirm = confirm
        self._prompt = prompt

    def resolve_tag_conflict(self, info: TagInfo, *, expected: str | None) -> TagResolution:
        remote = info.remote_commit[:12] if info.remote_commit else "?"
        ours = f" (this release is {expected[:12]})" if expected else ""
        question = (
            f"{info.name} already exists on the remote at {remote}{ours}.\n"
            "[r]etry with a new version, [f]orce-replace the tag, [a]dopt the existing tag, "
            "or abor[x]t"
        )
        while True:
            answer = self._prompt(question).strip().lower()
            choice = _TAG_CHOICES.get(answer)
            if choice is not None:
                return choice

    def accept_failed_verification(self, error: ReleaseError) -> bool:
        return self._confirm(
            f"Installation check failed: {error.message}. The formula is already published. "
            "Accept the release anyway?"
        )

    def continue_after_build_failure(self, error: ReleaseError) -> bool:
        return self._confirm(f"Build failed: {error.message}. Continue the release anyway?")
