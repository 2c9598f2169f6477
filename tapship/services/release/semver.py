from __future__ import annotations

import re
from dataclasses import dataclass

from tapship.services.release.model import BumpKind


_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


@dataclass(frozen=True, slots=True, order=True)
class SemVer:
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def to_tag(self) -> str:
        return f"v{self}"

    def bump(self, kind: BumpKind) -> "SemVer":
        match kind:
            case "major":
                return SemVer(self.major + 1, 0, 0)
            case "minor":
                return SemVer(self.major, self.minor + 1, 0)
            case "patch":
                return SemVer(self.major, self.minor, self.patch + 1)
            case _:
                raise AssertionError(f"unexpected bump kind: {kind}")


def parse_version(text: str) -> SemVer | None:
    """Parse ``X.Y.Z`` (surrounding whitespace and a leading ``v`` tolerated).

    Leading zeros are accepted and normalized ("01.2.3" -> 1.2.3).
    """
    s = text.strip()
    if s.startswith("v"):
        s = s[1:]
    m = _VERSION_RE.match(s)
    if m is None:
        return None
    return SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3)))
