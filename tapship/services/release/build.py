from __future__ import annotations

import shlex
from pathlib import Path
from typing import Protocol

from tapship.core.result import Err, Ok, Result
from tapship.output.console import ConsoleProtocol, Style
from tapship.platform.process import run_silent
from tapship.services.release.errors import ReleaseError
from tapship.services.release.timeouts import BUILD_TIMEOUT_SECONDS


class BuildRunner(Protocol):
    def run(self) -> Result[None, ReleaseError]: ...


class CommandBuildRunner:
    """Runs the project's configured build/test commands in order.

    Output streams to the terminal; the first failing command stops the run.
    """

    def __init__(
        self,
        commands: tuple[tuple[str, ...], ...],
        *,
        cwd: Path,
        console: ConsoleProtocol,
        timeout: float = BUILD_TIMEOUT_SECONDS,
    ) -> None:
        self.commands = commands
        self.cwd = cwd
        self._console = console
        self._timeout = timeout

    def run(self) -> Result[None, ReleaseError]:
        if not self.commands:
            self._console.print("no build commands configured", Style.DIM)
            return Ok(None)

        for argv in self.commands:
            shown = shlex.join(argv)
            self._console.print(shown, Style.DIM)
            result = run_silent(list(argv), cwd=self.cwd, timeout=self._timeout)
            if isinstance(result, Err):
                e = result.error
                reason = "timed out" if e.timed_out else f"exit {e.returncode}"
                return Err(
                    ReleaseError(
                        kind="build_failed",
                        message=f"{shown} failed ({reason})",
                        hint=e.detail(),
                    )
                )
        return Ok(None)
