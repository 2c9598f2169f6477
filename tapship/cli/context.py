from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from tapship.core.config import CONFIG_FILENAME, Config, find_config, load_config
from tapship.core.errors import ErrorCode
from tapship.core.result import Err
from tapship.output.console import ConsoleProtocol, RichConsole

CONFIG_ENV = "TAPSHIP_CONFIG"


@dataclass(frozen=True, slots=True)
class CLIContext:
    config: Config
    console: ConsoleProtocol


def _config_path() -> Path | None:
    explicit = os.environ.get(CONFIG_ENV)
    if explicit:
        return Path(explicit)
    return find_config(Path.cwd())


def build_context() -> CLIContext:
    path = _config_path()
    if path is None:
        typer.echo(f"error: no {CONFIG_FILENAME} found in this directory or its parents", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    config_result = load_config(path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    return CLIContext(config=config_result.value, console=RichConsole())
