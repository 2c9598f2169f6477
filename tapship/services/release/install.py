"""Post-publish installation check through Homebrew.

Best effort: it reflects this machine's brew state, not necessarily what
a new user gets. Failures are reported to the operator, who decides
whether to accept the release anyway.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol

from tapship.core.config import Config
from tapship.core.result import Err, Ok, Result
from tapship.output.console import ConsoleProtocol, Style
from tapship.platform.process import run as run_process
from tapship.platform.process import run_silent
from tapship.services.release.errors import ReleaseError
from tapship.services.release.semver import SemVer
from tapship.services.release.timeouts import (
    BREW_INSTALL_TIMEOUT_SECONDS,
    BREW_TIMEOUT_SECONDS,
    BREW_UPDATE_TIMEOUT_SECONDS,
    SMOKE_TIMEOUT_SECONDS,
)


class Installer(Protocol):
    def verify(self, version: SemVer) -> Result[None, ReleaseError]: ...


def _verify_failed(message: str, hint: str | None = None) -> Err[ReleaseError]:
    return Err(ReleaseError(kind="verify_failed", message=message, hint=hint))


def _reports_version(output: str, version: SemVer) -> bool:
    """True when ``output`` names exactly ``version`` (0.13.50 is not 0.13.5)."""
    pattern = rf"(?<![\d.]){re.escape(str(version))}(?![\d.]*\d)"
    return re.search(pattern, output) is not None


class BrewInstaller:
    def __init__(self, config: Config, *, console: ConsoleProtocol) -> None:
        self._config = config
        self._console = console
        self._cwd = config.project.root

    @property
    def formula_ref(self) -> str:
        tap = self._config.formula.tap or self._config.project.repo
        return f"{tap}/{self._config.project.name}"

    def verify(self, version: SemVer) -> Result[None, ReleaseError]:
        """Clean install from the tap, then check ``--version`` and the smoke command."""
        ref = self.formula_ref
        name = self._config.project.name

        self._console.print(f"brew uninstall --force {name}", Style.DIM)
        # Not installed yet is fine; install below reports real problems.
        run_process(
            ["brew", "uninstall", "--force", name], cwd=self._cwd, timeout=BREW_TIMEOUT_SECONDS
        )

        # The local tap checkout still holds the previous formula until updated.
        self._console.print("brew update", Style.DIM)
        updated = run_silent(
            ["brew", "update"], cwd=self._cwd, timeout=BREW_UPDATE_TIMEOUT_SECONDS
        )
        if isinstance(updated, Err):
            return _verify_failed("brew update failed", updated.error.detail())

        self._console.print(f"brew install --build-from-source {ref}", Style.DIM)
        installed = run_silent(
            ["brew", "install", "--build-from-source", ref],
            cwd=self._cwd,
            timeout=BREW_INSTALL_TIMEOUT_SECONDS,
        )
        if isinstance(installed, Err):
            return _verify_failed(f"brew install {ref} failed", installed.error.detail())

        if self._config.verify.audit:
            self._audit(ref)

        binary = self._binary_path(name)
        version_cmd = [binary, *self._config.formula.version_args]
        self._console.print(" ".join(version_cmd), Style.DIM)
        reported = run_process(version_cmd, cwd=self._cwd, timeout=SMOKE_TIMEOUT_SECONDS)
        if isinstance(reported, Err):
            return _verify_failed(f"{' '.join(version_cmd)} failed", reported.error.detail())
        if not _reports_version(reported.value, version):
            return _verify_failed(
                f"installed {name} reports {reported.value.strip()!r}, expected {version}",
                "brew may have served a cached build; try `brew cleanup` and resume",
            )

        if self._config.formula.smoke:
            smoke = [binary, *self._config.formula.smoke]
            self._console.print(" ".join(smoke), Style.DIM)
            ran = run_silent(smoke, cwd=self._cwd, timeout=SMOKE_TIMEOUT_SECONDS)
            if isinstance(ran, Err):
                return _verify_failed(f"smoke command failed: {' '.join(smoke)}", ran.error.detail())

        return Ok(None)

    def _audit(self, ref: str) -> None:
        self._console.print(f"brew audit --strict {ref}", Style.DIM)
        audit = run_process(
            ["brew", "audit", "--strict", ref], cwd=self._cwd, timeout=BREW_TIMEOUT_SECONDS
        )
        if isinstance(audit, Err):
            self._console.warning(f"brew audit reported issues: {audit.error.detail() or ref}")

    def _binary_path(self, name: str) -> str:
        prefix = run_process(["brew", "--prefix", name], cwd=self._cwd, timeout=BREW_TIMEOUT_SECONDS)
        if isinstance(prefix, Ok) and prefix.value.strip():
            candidate = Path(prefix.value.strip()) / "bin" / self._config.binary
            if candidate.exists():
                return str(candidate)
        return self._config.binary
