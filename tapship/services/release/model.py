from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


BumpKind = Literal["major", "minor", "patch"]
Category = Literal["fixed", "added", "changed", "deprecated", "removed", "security"]
TagResolution = Literal["retry", "force", "adopt", "abort"]

BUMP_KINDS: tuple[BumpKind, ...] = ("patch", "minor", "major")
CATEGORIES: tuple[Category, ...] = (
    "fixed",
    "added",
    "changed",
    "deprecated",
    "removed",
    "security",
)

StepName = Literal[
    "gate-check",
    "version-bump",
    "changelog-update",
    "build-verify",
    "tag",
    "artifact-resolve",
    "manifest-publish",
    "install-verify",
]

STEPS: tuple[StepName, ...] = (
    "gate-check",
    "version-bump",
    "changelog-update",
    "build-verify",
    "tag",
    "artifact-resolve",
    "manifest-publish",
    "install-verify",
)


def category_heading(category: Category) -> str:
    return category.capitalize()


@dataclass(frozen=True, slots=True)
class Artifact:
    """A released source archive.

    ``url`` is what the formula references; ``sha256`` is the digest of a
    fresh download from the hosting service.
    """

    url: str
    sha256: str


@dataclass(frozen=True, slots=True)
class ReleaseOptions:
    skip_build: bool = False
    skip_verify: bool = False
    force_tag: bool = False
