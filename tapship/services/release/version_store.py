from __future__ import annotations

import re
from pathlib import Path

from tapship.core.result import Err, Ok, Result
from tapship.platform.files import atomic_write_text
from tapship.services.release.errors import ReleaseError
from tapship.services.release.model import BumpKind
from tapship.services.release.semver import SemVer, parse_version

_VERSION_LINE_RE = re.compile(r'(?m)^version\s*=\s*"([^"]*)"\s*$')
_TABLE_RE = re.compile(r"(?m)^\[[^\]]+\]\s*$")


class VersionStore:
    """Authoritative project version, read from a ``version = "X.Y.Z"`` line.

    In a ``Cargo.toml`` the declaration inside ``[package]`` is used; in any
    other file the first top-level ``version = "..."`` line.
    """

    def __init__(self, path: Path, *, lock_files: tuple[str, ...] = ()) -> None:
        self.path = path
        self._lock_files = lock_files

    @property
    def metadata_paths(self) -> tuple[Path, ...]:
        """Files a version bump touches (lock files only if they exist)."""
        base = self.path.parent
        locks = tuple(base / name for name in self._lock_files if (base / name).is_file())
        return (self.path, *locks)

    def current_version(self) -> Result[SemVer, ReleaseError]:
        located = self._locate()
        if isinstance(located, Err):
            return located
        _, match = located.value

        version = parse_version(match.group(1))
        if version is None:
            return Err(
                ReleaseError(
                    kind="invalid_version_format",
                    message=f"invalid version in {self.path.name}: {match.group(1)!r}",
                    hint="Expected X.Y.Z",
                )
            )
        return Ok(version)

    def propose_next(
        self,
        bump: BumpKind | None,
        *,
        explicit: str | None = None,
        allow_same: bool = False,
    ) -> Result[SemVer, ReleaseError]:
        """Compute the next version.

        Either ``bump`` or ``explicit`` must be given. An explicit version
        must be greater than the current one; equal is accepted only with
        ``allow_same`` (republishing / resuming the same version).
        """
        current = self.current_version()
        if isinstance(current, Err):
            return current

        if explicit is None:
            if bump is None:
                return Err(
                    ReleaseError(kind="invalid_input", message="bump kind or version required")
                )
            return Ok(current.value.bump(bump))

        target = parse_version(explicit)
        if target is None:
            return Err(
                ReleaseError(
                    kind="invalid_version_format",
                    message=f"invalid version: {explicit!r}",
                    hint="Expected three non-negative integers: X.Y.Z",
                )
            )

        if target < current.value or (target == current.value and not allow_same):
            return Err(
                ReleaseError(
                    kind="version_conflict",
                    message=f"version {target} is not greater than current {current.value}",
                    hint=f"Next patch would be {current.value.bump('patch')}",
                )
            )
        return Ok(target)

    def commit(self, version: SemVer) -> Result[bool, ReleaseError]:
        """Write ``version`` into the metadata file.

        Returns Ok(False) when the file already holds that version. Does not
        touch git.
        """
        located = self._locate()
        if isinstance(located, Err):
            return located
        text, match = located.value

        if match.group(1) == str(version):
            return Ok(False)

        out = text[: match.start()] + f'version = "{version}"' + text[match.end() :]
        try:
            atomic_write_text(self.path, out, encoding="utf-8")
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"failed to write {self.path.name}: {e}",
                    hint=str(self.path),
                )
            )
        return Ok(True)

    def _locate(self) -> Result[tuple[str, re.Match[str]], ReleaseError]:
        """Read the file and find the authoritative version declaration.

        Match offsets are relative to the whole file text.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"failed to read {self.path.name}: {e}",
                    hint=str(self.path),
                )
            )

        pkg_idx = text.find("[package]")
        if pkg_idx >= 0:
            start = pkg_idx + len("[package]")
            next_table = _TABLE_RE.search(text, start)
            end = next_table.start() if next_table else len(text)
        else:
            # Top-level keys only: stop at the first table header.
            start = 0
            first_table = _TABLE_RE.search(text)
            end = first_table.start() if first_table else len(text)

        m = _VERSION_LINE_RE.search(text, start, end)
        if m is None:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"missing version declaration in {self.path.name}",
                    hint='Expected a line: version = "X.Y.Z"',
                )
            )
        return Ok((text, m))
