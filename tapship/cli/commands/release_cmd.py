from __future__ import annotations

from typing import cast

import typer

from tapship.cli.commands._helpers import exit_on_error, exit_with_code
from tapship.cli.context import CLIContext, build_context
from tapship.core.errors import ErrorCode
from tapship.output.console import Style
from tapship.services.release.decisions import (
    DecisionProvider,
    PromptDecisions,
    UnattendedDecisions,
)
from tapship.services.release.model import BUMP_KINDS, CATEGORIES, BumpKind, Category, ReleaseOptions
from tapship.services.release.pipeline import ReleasePipeline, ReleaseReport, ReleaseRequest
from tapship.services.release.version_store import VersionStore


def _decisions(*, non_interactive: bool) -> DecisionProvider:
    if non_interactive:
        return UnattendedDecisions()
    return PromptDecisions(
        confirm=lambda msg: typer.confirm(msg, default=False),
        prompt=lambda msg: typer.prompt(msg, default="x"),
    )


def _pipeline(ctx: CLIContext, *, non_interactive: bool) -> ReleasePipeline:
    return ReleasePipeline(
        ctx.config,
        console=ctx.console,
        decisions=_decisions(non_interactive=non_interactive),
    )


def _report(ctx: CLIContext, report: ReleaseReport) -> None:
    if report.already_published:
        ctx.console.success(f"{report.version} already published")
        return

    ctx.console.newline()
    ctx.console.success(f"released {report.version}")
    if report.tag_commit:
        ctx.console.print(f"tag:     {report.version.to_tag()} -> {report.tag_commit[:12]}", Style.DIM)
    if report.artifact is not None:
        ctx.console.print(f"url:     {report.artifact.url}", Style.DIM)
        ctx.console.print(f"sha256:  {report.artifact.sha256}", Style.DIM)
    if not report.verified:
        ctx.console.warning("installation was not verified")


def release(
    version: str = typer.Argument(..., help="Version X.Y.Z, or patch / minor / major."),
    message: str = typer.Argument(..., help="Changelog entry for this release."),
    category: str = typer.Option(
        "fixed",
        "--category",
        help="Changelog category: fixed, added, changed, deprecated, removed, security.",
    ),
    skip_build: bool = typer.Option(False, "--skip-build", help="Do not run build/tests."),
    skip_verify: bool = typer.Option(False, "--skip-verify", help="Do not brew-install afterwards."),
    force_tag: bool = typer.Option(
        False, "--force-tag", help="Replace a remote tag that points elsewhere."
    ),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Never prompt: abort on conflicts, decline overrides."
    ),
) -> None:
    """Release a new version: bump, changelog, tag, formula, verify."""
    ctx = build_context()

    if category not in CATEGORIES:
        ctx.console.error(f"unknown category: {category}")
        ctx.console.print(f"expected one of: {', '.join(CATEGORIES)}", Style.DIM)
        exit_with_code(int(ErrorCode.USER_ERROR))

    request = ReleaseRequest(
        version=version.strip(),
        message=message,
        category=cast(Category, category),
    )
    options = ReleaseOptions(skip_build=skip_build, skip_verify=skip_verify, force_tag=force_tag)

    report = exit_on_error(
        _pipeline(ctx, non_interactive=non_interactive).release(request, options), ctx
    )
    _report(ctx, report)


def resume(
    skip_build: bool = typer.Option(False, "--skip-build", help="Do not run build/tests."),
    skip_verify: bool = typer.Option(False, "--skip-verify", help="Do not brew-install afterwards."),
    force_tag: bool = typer.Option(
        False, "--force-tag", help="Replace a remote tag that points elsewhere."
    ),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Never prompt: abort on conflicts, decline overrides."
    ),
) -> None:
    """Continue the interrupted release."""
    ctx = build_context()
    options = ReleaseOptions(skip_build=skip_build, skip_verify=skip_verify, force_tag=force_tag)
    report = exit_on_error(_pipeline(ctx, non_interactive=non_interactive).resume(options), ctx)
    _report(ctx, report)


def status() -> None:
    """Show the release in progress, if any."""
    ctx = build_context()
    pipeline = _pipeline(ctx, non_interactive=True)
    state = exit_on_error(pipeline.status(), ctx)
    if state is None:
        ctx.console.print("no release in progress")
        return

    ctx.console.header(f"Release {state.version} (from {state.previous})")
    ctx.console.print(f"message:  {state.message} [{state.category}]")
    ctx.console.print(f"started:  {state.created_at}", Style.DIM)
    ctx.console.print(f"updated:  {state.updated_at}", Style.DIM)
    for step in state.completed:
        ctx.console.success(step)
    if state.step != "done":
        ctx.console.print(f"next:     {state.step}", Style.INFO)
    if state.tag_commit:
        ctx.console.print(f"tag:      {state.tag_commit[:12]}", Style.DIM)
    if state.artifact_sha256:
        ctx.console.print(f"sha256:   {state.artifact_sha256}", Style.DIM)


def abandon(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Discard the persisted release state (already pushed tags/commits stay)."""
    ctx = build_context()
    pipeline = _pipeline(ctx, non_interactive=True)
    state = exit_on_error(pipeline.status(), ctx)
    if state is None:
        ctx.console.print("no release in progress")
        return

    if not yes and not typer.confirm(f"Discard release {state.version} state?", default=False):
        exit_with_code(int(ErrorCode.USER_ERROR))

    exit_on_error(pipeline.abandon(), ctx)
    ctx.console.success(f"release {state.version} state discarded")


def version(
    bump: str = typer.Option("patch", "--bump", help="Bump kind to preview: patch, minor, major."),
) -> None:
    """Show the current project version and the proposed next one."""
    ctx = build_context()
    if bump not in BUMP_KINDS:
        ctx.console.error(f"unknown bump kind: {bump}")
        exit_with_code(int(ErrorCode.USER_ERROR))

    store = VersionStore(ctx.config.version_path, lock_files=ctx.config.project.lock_files)
    current = exit_on_error(store.current_version(), ctx)
    proposed = exit_on_error(store.propose_next(cast(BumpKind, bump)), ctx)
    ctx.console.print(f"current: {current}")
    ctx.console.print(f"next ({bump}): {proposed}")
