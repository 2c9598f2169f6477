from __future__ import annotations

from pathlib import Path

import pytest

from tapship.core.result import Err, Ok, Result
from tapship.output.console import MockConsole
from tapship.platform.process import ProcessError
from tapship.services.release import build as build_mod
from tapship.services.release.build import CommandBuildRunner


def test_build_runs_commands_in_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[list[str]] = []

    def fake_run_silent(
        cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[None, ProcessError]:
        del timeout
        assert cwd == tmp_path
        seen.append(cmd)
        return Ok(None)

    monkeypatch.setattr(build_mod, "run_silent", fake_run_silent)
    console = MockConsole()
    runner = CommandBuildRunner(
        (("cargo", "build", "--release"), ("cargo", "test", "--release")),
        cwd=tmp_path,
        console=console,
    )

    assert runner.run() == Ok(None)
    assert seen == [["cargo", "build", "--release"], ["cargo", "test", "--release"]]
    assert console.find("cargo test --release")


def test_build_stops_at_first_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[list[str]] = []

    def fake_run_silent(
        cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[None, ProcessError]:
        del cwd, timeout
        seen.append(cmd)
        return Err(ProcessError(command=tuple(cmd), returncode=101, stdout="", stderr="error[E0308]"))

    monkeypatch.setattr(build_mod, "run_silent", fake_run_silent)
    runner = CommandBuildRunner(
        (("cargo", "build"), ("cargo", "test")),
        cwd=tmp_path,
        console=MockConsole(),
    )

    result = runner.run()

    assert isinstance(result, Err)
    assert result.error.kind == "build_failed"
    assert "exit 101" in result.error.message
    assert result.error.hint == "error[E0308]"
    assert seen == [["cargo", "build"]]


def test_build_timeout_is_reported(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run_silent(
        cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[None, ProcessError]:
        del cwd
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
            )
        )

    monkeypatch.setattr(build_mod, "run_silent", fake_run_silent)
    result = CommandBuildRunner((("make",),), cwd=tmp_path, console=MockConsole(), timeout=5).run()

    assert isinstance(result, Err)
    assert "timed out" in result.error.message


def test_no_build_commands(tmp_path: Path) -> None:
    console = MockConsole()

    assert CommandBuildRunner((), cwd=tmp_path, console=console).run() == Ok(None)
    assert console.find("no build commands configured")
