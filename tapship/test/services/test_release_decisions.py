from __future__ import annotations

from tapship.services.release.decisions import PromptDecisions, UnattendedDecisions
from tapship.services.release.errors import ReleaseError
from tapship.services.release.tags import TagInfo

INFO = TagInfo(name="v0.13.5", local_commit=None, remote_commit="a" * 40)
ERROR = ReleaseError(kind="verify_failed", message="brew install failed")


def test_unattended_never_overrides() -> None:
    decisions = UnattendedDecisions()

    assert decisions.resolve_tag_conflict(INFO, expected="b" * 40) == "abort"
    assert decisions.accept_failed_verification(ERROR) is False
    assert decisions.continue_after_build_failure(ERROR) is False


def test_prompt_reprompts_until_valid_choice() -> None:
    answers = iter(["", "maybe", " F "])
    questions: list[str] = []

    def prompt(question: str) -> str:
        questions.append(question)
        return next(answers)

    decisions = PromptDecisions(confirm=lambda _: True, prompt=prompt)

    assert decisions.resolve_tag_conflict(INFO, expected="b" * 40) == "force"
    assert len(questions) == 3
    assert "a" * 12 in questions[0]
    assert "b" * 12 in questions[0]


def test_prompt_accepts_long_and_short_forms() -> None:
    for answer, expected in [("r", "retry"), ("adopt", "adopt"), ("x", "abort"), ("abort", "abort")]:
        decisions = PromptDecisions(confirm=lambda _: True, prompt=lambda _, a=answer: a)
        assert decisions.resolve_tag_conflict(INFO, expected=None) == expected


def test_prompt_confirmations_are_forwarded() -> None:
    asked: list[str] = []

    def confirm(question: str) -> bool:
        asked.append(question)
        return len(asked) == 1

    decisions = PromptDecisions(confirm=confirm, prompt=lambda _: "x")

    assert decisions.accept_failed_verification(ERROR) is True
    assert decisions.continue_after_build_failure(ERROR) is False
    assert "brew install failed" in asked[0]
    assert asked[1].startswith("Build failed")
