from __future__ import annotations

import typer

from tapship.cli.commands._helpers import exit_on_error, exit_with_code
from tapship.cli.context import CLIContext, build_context
from tapship.core.errors import ErrorCode
from tapship.output.console import Style
from tapship.services.release.changelog import ChangelogLedger
from tapship.services.release.semver import parse_version

changelog_app = typer.Typer(add_completion=False, no_args_is_help=True)


def _ledger(ctx: CLIContext) -> ChangelogLedger:
    config = ctx.config
    return ChangelogLedger(
        config.changelog_path,
        repo=config.project.repo if config.changelog.links else None,
    )


@changelog_app.command("repair")
def repair() -> None:
    """Merge duplicate version sections and restore newest-first order."""
    ctx = build_context()
    report = exit_on_error(_ledger(ctx).repair(), ctx)

    if not report.changed:
        ctx.console.success("changelog already clean")
        return

    for label in report.merged:
        ctx.console.print(f"merged duplicate sections for [{label}]")
    if report.reordered:
        ctx.console.print("sections reordered newest first")
    if report.added_unreleased:
        ctx.console.print("added [Unreleased] section")
    if report.backup is not None:
        ctx.console.print(f"backup: {report.backup}", Style.DIM)
    ctx.console.success(f"repaired {ctx.config.changelog_path.name}")


@changelog_app.command("count")
def count(version: str = typer.Argument(..., help="Version X.Y.Z")) -> None:
    """Print how many sections the changelog has for a version."""
    ctx = build_context()
    parsed = parse_version(version)
    if parsed is None:
        ctx.console.error(f"invalid version: {version!r}")
        exit_with_code(int(ErrorCode.USER_ERROR))

    n = exit_on_error(_ledger(ctx).count_entries_for(parsed), ctx)
    ctx.console.print(str(n))
    if n > 1:
        ctx.console.warning(f"{n} sections for {parsed}; run `tapship changelog repair`")
