"""Homebrew formula model, renderer and publisher.

The formula is regenerated wholesale from a typed ``Formula`` on every
release; the previous file is never patched. Rendering is deterministic,
so publishing identical inputs twice produces an identical file and no
second commit.

Install and smoke arguments may reference Homebrew path helpers with
``{prefix}``, ``{bin}``, ``{libexec}``, ``{etc}``, ``{share}`` or
``{lib}``. A bare placeholder renders as the Ruby method (``prefix``);
inside a longer string it becomes interpolation (``"#{bin}/tool"``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from tapship.core.config import Config
from tapship.core.result import Err, Ok, Result
from tapship.git.repository import GitError, Repository
from tapship.output.console import ConsoleProtocol, Style
from tapship.platform.files import atomic_write_text
from tapship.services.release.errors import ReleaseError
from tapship.services.release.model import Artifact
from tapship.services.release.semver import SemVer

_PATH_HELPERS = ("prefix", "bin", "libexec", "etc", "share", "lib")
_PLACEHOLDER_RE = re.compile(r"(?<!#)\{(" + "|".join(_PATH_HELPERS) + r")\}")
_VERSION_RE = re.compile(r'^\s*version\s+"([^"]+)"\s*$', re.MULTILINE)
_SHA256_RE = re.compile(r'^\s*sha256\s+"([0-9a-fA-F]{64})"\s*$', re.MULTILINE)


@dataclass(frozen=True, slots=True)
class Dependency:
    name: str
    kind: str | None = None  # "build", "test", ... ; None for runtime

    @classmethod
    def parse(cls, spec: str) -> Dependency:
        """``"rust:build"`` -> Dependency("rust", "build")."""
        name, sep, kind = spec.partition(":")
        return cls(name=name.strip(), kind=(kind.strip() or None) if sep else None)


@dataclass(frozen=True, slots=True)
class Formula:
    name: str
    desc: str
    homepage: str
    url: str
    version: str
    sha256: str
    license: str
    depends_on: tuple[Dependency, ...]
    install: tuple[tuple[str, ...], ...]
    version_args: tuple[str, ...]
    smoke: tuple[str, ...]
    binary: str

    @property
    def class_name(self) -> str:
        """Homebrew class name: ``my-tool`` -> ``MyTool``, ``foo@2`` -> ``FooAT2``."""
        name = self.name.replace("@", "AT").replace("+", "x")
        parts = re.split(r"[-_.]", name)
        return "".join(p[:1].upper() + p[1:] for p in parts if p)


@dataclass(frozen=True, slots=True)
class FormulaInfo:
    version: str | None
    sha256: str | None


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    path: Path
    written: bool
    committed: bool
    pushed: bool

    @property
    def changed(self) -> bool:
        return self.written or self.committed or self.pushed


def build_formula(config: Config, version: SemVer, artifact: Artifact) -> Formula:
    f = config.formula
    return Formula(
        name=config.project.name,
        desc=f.desc,
        homepage=f.homepage or config.project.homepage,
        url=artifact.url,
        version=str(version),
        sha256=artifact.sha256,
        license=f.license,
        depends_on=tuple(Dependency.parse(d) for d in f.depends_on),
        install=f.install,
        version_args=f.version_args,
        smoke=f.smoke,
        binary=config.binary,
    )


def ruby_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("#{", "\\#{")
    return f'"{escaped}"'


def ruby_arg(value: str) -> str:
    m = _PLACEHOLDER_RE.fullmatch(value)
    if m is not None:
        return m.group(1)
    return _PLACEHOLDER_RE.sub(r"#{\1}", ruby_string(value))


def render_formula(formula: Formula) -> str:
    lines = [
        f"class {formula.class_name} < Formula",
        f"  desc {ruby_string(formula.desc)}",
        f"  homepage {ruby_string(formula.homepage)}",
        f"  url {ruby_string(formula.url)}",
        f"  version {ruby_string(formula.version)}",
        f"  sha256 {ruby_string(formula.sha256)}",
        f"  license {ruby_string(formula.license)}",
    ]

    if formula.depends_on:
        lines.append("")
        for dep in formula.depends_on:
            suffix = f" => :{dep.kind}" if dep.kind else ""
            lines.append(f"  depends_on {ruby_string(dep.name)}{suffix}")

    lines.append("")
    lines.append("  def install")
    for argv in formula.install:
        lines.append("    system " + ", ".join(ruby_arg(a) for a in argv))
    lines.append("  end")

    lines.append("")
    lines.append("  test do")
    version_cmd = " ".join(["{bin}/" + formula.binary, *formula.version_args])
    lines.append(f"    assert_match version.to_s, shell_output({ruby_arg(version_cmd)})")
    if formula.smoke:
        smoke = ["{bin}/" + formula.binary, *formula.smoke]
        lines.append("    system " + ", ".join(ruby_arg(a) for a in smoke))
    lines.append("  end")
    lines.append("end")
    return "\n".join(lines) + "\n"


def parse_formula_info(text: str) -> FormulaInfo:
    version = _VERSION_RE.search(text)
    sha = _SHA256_RE.search(text)
    return FormulaInfo(
        version=version.group(1) if version else None,
        sha256=sha.group(1).lower() if sha else None,
    )


def _publish_failed(e: GitError, *, what: str) -> ReleaseError:
    return ReleaseError(kind="publish_failed", message=f"{what} failed", hint=e.message or None)


class ManifestPublisher:
    def __init__(self, config: Config, tap: Repository, *, console: ConsoleProtocol) -> None:
        self._config = config
        self.tap = tap
        self._console = console

    @property
    def path(self) -> Path:
        return self.tap.path / self._config.formula_rel_path

    def current(self) -> Result[FormulaInfo | None, ReleaseError]:
        if not self.path.exists():
            return Ok(None)
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return Err(
                ReleaseError(
                    kind="publish_failed",
                    message=f"failed to read formula: {e}",
                    hint=str(self.path),
                )
            )
        return Ok(parse_formula_info(text))

    def publish(self, version: SemVer, artifact: Artifact) -> Result[PublishOutcome, ReleaseError]:
        """Regenerate the formula; commit and push only when it changed."""
        rel = self._config.formula_rel_path
        rendered = render_formula(build_formula(self._config, version, artifact))

        written = False
        try:
            existing = self.path.read_text(encoding="utf-8") if self.path.exists() else None
            if existing != rendered:
                atomic_write_text(self.path, rendered, encoding="utf-8")
                written = True
        except (OSError, UnicodeDecodeError) as e:
            return Err(
                ReleaseError(
                    kind="publish_failed",
                    message=f"failed to write formula: {e}",
                    hint=str(self.path),
                )
            )

        diff = self.tap.changed_paths([rel])
        if isinstance(diff, Err):
            return Err(_publish_failed(diff.error, what="git status"))

        committed = False
        if diff.value:
            message = f"Update {self._config.project.name} formula to version {version}"
            self._console.print(f"git add {rel}", Style.DIM)
            added = self.tap.add([rel])
            if isinstance(added, Err):
                return Err(_publish_failed(added.error, what=f"git add {rel}"))
            self._console.print(f'git commit -m "{message}"', Style.DIM)
            commit = self.tap.commit(message)
            if isinstance(commit, Err):
                return Err(_publish_failed(commit.error, what="git commit"))
            committed = True

        pushed = self._push_if_ahead()
        if isinstance(pushed, Err):
            return pushed

        return Ok(
            PublishOutcome(path=self.path, written=written, committed=committed, pushed=pushed.value)
        )

    def _push_if_ahead(self) -> Result[bool, ReleaseError]:
        """Push the tap branch when it holds commits the remote lacks."""
        f = self._config.formula
        head = self.tap.head_sha()
        if isinstance(head, Err):
            return Err(_publish_failed(head.error, what="git rev-parse HEAD"))
        remote = self.tap.remote_branch_sha(f.remote, f.branch)
        if isinstance(remote, Err):
            return Err(_publish_failed(remote.error, what=f"ls-remote {f.remote} {f.branch}"))

        if remote.value == head.value:
            return Ok(False)
        if remote.value is not None and not self.tap.is_ancestor(remote.value, head.value):
            return Err(
                ReleaseError(
                    kind="publish_failed",
                    message=f"tap {f.remote}/{f.branch} moved; refusing to push",
                    hint=f"git -C {self.tap.path} pull --rebase {f.remote} {f.branch}, then resume",
                )
            )

        self._console.print(f"git push {f.remote} HEAD:{f.branch}", Style.DIM)
        pushed = self.tap.push_branch(f.remote, f.branch)
        if isinstance(pushed, Err):
            return Err(_publish_failed(pushed.error, what=f"git push {f.remote} {f.branch}"))
        return Ok(True)
