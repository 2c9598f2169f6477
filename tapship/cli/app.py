from __future__ import annotations

import os
from pathlib import Path

import typer

from tapship import __version__
from tapship.cli.commands.changelog_cmd import changelog_app
from tapship.cli.commands.release_cmd import abandon, release, resume, status, version
from tapship.cli.context import CONFIG_ENV
from tapship.core.errors import ErrorCode


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command()(release)
app.command()(resume)
app.command()(status)
app.command()(abandon)
app.command()(version)

# Sub-apps
app.add_typer(changelog_app, name="changelog", help="Inspect and repair CHANGELOG.md.")


def _show_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit(code=0)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    show_version: bool = typer.Option(
        False,
        "--version",
        callback=_show_version,
        is_eager=True,
        help="Show version and exit.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to tapship.toml (default: search upwards from the current directory)",
    ),
) -> None:
    del show_version
    if config is not None:
        try:
            path = config.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --config: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        if not path.is_file():
            typer.echo(f"error: --config '{path}' does not exist", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        os.environ[CONFIG_ENV] = str(path)


def main() -> None:
    app()
