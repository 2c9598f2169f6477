"""Release pipeline.

Sequences the release steps through ``run_state_machine``:

    gate-check -> version-bump -> changelog-update -> build-verify -> tag
        -> artifact-resolve -> manifest-publish -> install-verify

State is persisted after every step. Every invocation starts again at
gate-check; steps that are already satisfied (version already bumped,
changelog section present, tag published at the release commit, formula
already carrying the digest) are skipped, so re-running a release
converges instead of duplicating side effects.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date
from typing import cast

from tapship.core.config import Config
from tapship.core.result import Err, Ok, Result
from tapship.git.repository import GitError, Repository
from tapship.output.console import ConsoleProtocol, Style
from tapship.services.release.artifact import ArtifactResolver
from tapship.services.release.build import BuildRunner, CommandBuildRunner
from tapship.services.release.changelog import ChangelogEntry, ChangelogLedger
from tapship.services.release.decisions import DecisionProvider
from tapship.services.release.errors import ReleaseError
from tapship.services.release.formula import ManifestPublisher
from tapship.services.release.fsm import (
    StepHandler,
    StepOutcome,
    advance,
    finish,
    run_state_machine,
)
from tapship.services.release.gate import VcsGate
from tapship.services.release.install import BrewInstaller, Installer
from tapship.services.release.model import (
    BUMP_KINDS,
    STEPS,
    Artifact,
    BumpKind,
    Category,
    ReleaseOptions,
    StepName,
    TagResolution,
)
from tapship.services.release.semver import SemVer, parse_version
from tapship.services.release.state import (
    ReleaseState,
    StatePhase,
    clear_state,
    load_state,
    new_state,
    save_state,
)
from tapship.services.release.tags import TagInfo, TagManager
from tapship.services.release.version_store import VersionStore
from tapship.tools.download import Downloader
from tapship.tools.http import HttpClient, RealHttpClient


@dataclass(frozen=True, slots=True)
class ReleaseRequest:
    """``version`` is an explicit ``X.Y.Z`` or a bump kind."""

    version: str
    message: str
    category: Category = "fixed"


@dataclass(frozen=True, slots=True)
class ReleaseReport:
    version: SemVer
    already_published: bool
    tag_commit: str | None
    artifact: Artifact | None
    verified: bool
    completed: tuple[StepName, ...]


def _next_step(step: StepName) -> StatePhase:
    idx = STEPS.index(step)
    return STEPS[idx + 1] if idx + 1 < len(STEPS) else "done"


def _git_failed(e: GitError, *, what: str) -> ReleaseError:
    return ReleaseError(kind="git_failed", message=f"{what} failed", hint=e.message or None)


class ReleasePipeline:
    def __init__(
        self,
        config: Config,
        *,
        console: ConsoleProtocol,
        decisions: DecisionProvider,
        http: HttpClient | None = None,
        builder: BuildRunner | None = None,
        installer: Installer | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config = config
        self._console = console
        self._decisions = decisions
        self._today = today

        root = config.project.root
        self.project = Repository(root)
        self.tap = Repository(config.formula.tap_root)

        self.versions = VersionStore(config.version_path, lock_files=config.project.lock_files)
        self.ledger = ChangelogLedger(
            config.changelog_path,
            repo=config.project.repo if config.changelog.links else None,
        )
        self.project_gate = VcsGate(
            self.project, branch=config.project.branch, remote=config.project.remote
        )
        self.tap_gate = VcsGate(
            self.tap, branch=config.formula.branch, remote=config.formula.remote
        )
        self.tags = TagManager(self.project, remote=config.project.remote, console=console)
        self.resolver = ArtifactResolver(
            repo=config.project.repo,
            name=config.project.name,
            downloader=Downloader(
                http or RealHttpClient(timeout=config.artifact.timeout_seconds),
                config.state_dir / "cache" / "downloads",
            ),
            settings=config.artifact,
            console=console,
            workdir=root,
            local_repo=self.project,
        )
        self.publisher = ManifestPublisher(config, self.tap, console=console)
        self.builder = builder or CommandBuildRunner(
            config.project.build, cwd=root, console=console
        )
        self.installer = installer or BrewInstaller(config, console=console)

        # Per-invocation; never persisted.
        self._options = ReleaseOptions()
        self._resumed = False
        self._tag_resolution: TagResolution | None = None
        self._verified = True

    # -- public operations ----------------------------------------------------

    def release(
        self, request: ReleaseRequest, options: ReleaseOptions = ReleaseOptions()
    ) -> Result[ReleaseReport, ReleaseError]:
        message = " ".join(request.message.split())
        if not message:
            return Err(ReleaseError(kind="invalid_input", message="release message is empty"))

        persisted = load_state(state_dir=self.config.state_dir)
        if isinstance(persisted, Err):
            return persisted

        current = self.versions.current_version()
        if isinstance(current, Err):
            return current

        bump: BumpKind | None = None
        if request.version in BUMP_KINDS:
            bump = cast(BumpKind, request.version)

        state = persisted.value
        if state is not None:
            wanted = self._wanted_for_persisted(state, bump=bump, explicit=request.version)
            if isinstance(wanted, Err):
                return wanted
            if state.message != message:
                self._console.warning(
                    f"resuming {state.version} with its original message: {state.message!r}"
                )
            return self._run(state, options=options, resumed=True)

        target = self._target(current.value, bump=bump, explicit=request.version, message=message)
        if isinstance(target, Err):
            return target

        fresh = new_state(
            version=str(target.value),
            previous=str(current.value),
            message=message,
            category=request.category,
            date=self._today().isoformat(),
        )
        return self._run(fresh, options=options, resumed=False)

    def resume(
        self, options: ReleaseOptions = ReleaseOptions()
    ) -> Result[ReleaseReport, ReleaseError]:
        persisted = load_state(state_dir=self.config.state_dir)
        if isinstance(persisted, Err):
            return persisted
        if persisted.value is None:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message="no release in progress",
                    hint="start one with: tapship release <version> <message>",
                )
            )
        return self._run(persisted.value, options=options, resumed=True)

    def status(self) -> Result[ReleaseState | None, ReleaseError]:
        return load_state(state_dir=self.config.state_dir)

    def abandon(self) -> Result[bool, ReleaseError]:
        return clear_state(state_dir=self.config.state_dir)

    # -- target selection -----------------------------------------------------

    def _wanted_for_persisted(
        self, state: ReleaseState, *, bump: BumpKind | None, explicit: str
    ) -> Result[None, ReleaseError]:
        in_flight = parse_version(state.version)
        previous = parse_version(state.previous)
        if bump is not None and previous is not None:
            wanted = previous.bump(bump)
        else:
            wanted = parse_version(explicit)

        if wanted is None or in_flight is None or wanted != in_flight:
            return Err(
                ReleaseError(
                    kind="state_conflict",
                    message=f"release {state.version} is already in progress",
                    hint="tapship resume to finish it, or tapship abandon to discard it",
                )
            )
        return Ok(None)

    def _target(
        self, current: SemVer, *, bump: BumpKind | None, explicit: str, message: str
    ) -> Result[SemVer, ReleaseError]:
        if bump is None:
            return self.versions.propose_next(None, explicit=explicit, allow_same=True)

        # Re-running "release patch <msg>" after it succeeded must not cut
        # another release: the current version already carries this message.
        section = self.ledger.section_text(current)
        if isinstance(section, Err):
            return section
        if section.value is not None and f"- {message}" in section.value.splitlines():
            tag = self.tags.inspect(current)
            if isinstance(tag, Err):
                return tag
            if tag.value.remote_commit is not None:
                return Ok(current)

        return self.versions.propose_next(bump)

    # -- state machine ------------------------------------------------------------

    def _run(
        self, state: ReleaseState, *, options: ReleaseOptions, resumed: bool
    ) -> Result[ReleaseReport, ReleaseError]:
        self._options = options
        self._resumed = resumed
        self._tag_resolution = "force" if options.force_tag else None
        self._verified = True

        self._console.header(f"Release {state.version}")
        start = replace(state, step=STEPS[0])

        handlers: dict[str, StepHandler[ReleaseState]] = {
            "gate-check": self._step_gate,
            "version-bump": self._step_version,
            "changelog-update": self._step_changelog,
            "build-verify": self._step_build,
            "tag": self._step_tag,
            "artifact-resolve": self._step_artifact,
            "manifest-publish": self._step_manifest,
            "install-verify": self._step_install,
        }

        result = run_state_machine(
            initial_state=start,
            get_step=self._announce,
            handlers=handlers,
            save_state=lambda s: save_state(state_dir=self.config.state_dir, state=s),
        )
        if isinstance(result, Err):
            return result

        final = result.value
        cleared = clear_state(state_dir=self.config.state_dir)
        if isinstance(cleared, Err):
            return cleared

        version = parse_version(final.version)
        assert version is not None
        return Ok(
            ReleaseReport(
                version=version,
                already_published=not final.wrote,
                tag_commit=final.tag_commit,
                artifact=final.artifact,
                verified=self._verified,
                completed=final.completed,
            )
        )

    def _announce(self, state: ReleaseState) -> str:
        if state.step != "done":
            self._console.step(STEPS.index(state.step) + 1, len(STEPS), state.step)
        return state.step

    def _done(
        self, state: ReleaseState, step: StepName, *, wrote: bool
    ) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        nxt = _next_step(step)
        updated = state.complete(step, wrote=wrote, next_step=nxt)
        if nxt == "done":
            return Ok(finish(updated))
        return Ok(advance(updated))

    def _skip(
        self, state: ReleaseState, step: StepName, reason: str
    ) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        self._console.print(f"{reason}, skipping", Style.DIM)
        return self._done(state, step, wrote=False)

    def _target_of(self, state: ReleaseState) -> SemVer:
        version = parse_version(state.version)
        assert version is not None
        return version

    def _release_paths(self) -> list[str]:
        """Project files a release rewrites, relative to the project root."""
        root = self.config.project.root
        paths = [*self.versions.metadata_paths, self.config.changelog_path]
        return [p.relative_to(root).as_posix() for p in paths]

    # -- steps ----------------------------------------------------------------------

    def _step_gate(self, state: ReleaseState) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        # A resumed run may find files it already rewrote itself.
        checked = self._check_gates(written=self._resumed)
        if isinstance(checked, Err):
            return checked

        target = self._target_of(state)
        current = self.versions.current_version()
        if isinstance(current, Err):
            return current

        if current.value > target:
            return Err(
                ReleaseError(
                    kind="version_conflict",
                    message=f"project is already at {current.value}, newer than {target}",
                )
            )

        # Check the remote tag before anything is mutated.
        if current.value < target:
            info = self.tags.inspect(target)
            if isinstance(info, Err):
                return info
            if info.value.remote_commit is not None:
                settled = self._settle_tag_conflict(
                    info.value, target=target, expected=None, written=False
                )
                if isinstance(settled, Err):
                    return settled

        return self._done(state, "gate-check", wrote=False)

    def _step_version(self, state: ReleaseState) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        target = self._target_of(state)
        written = self.versions.commit(target)
        if isinstance(written, Err):
            return written
        if not written.value:
            name = self.versions.path.name
            return self._skip(state, "version-bump", f"{name} already at {target}")
        self._console.success(f"{self.versions.path.name}: {state.previous} -> {target}")
        return self._done(state, "version-bump", wrote=True)

    def _step_changelog(
        self, state: ReleaseState
    ) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        target = self._target_of(state)
        count = self.ledger.count_entries_for(target)
        if isinstance(count, Err):
            return count
        if count.value > 0:
            if count.value > 1:
                self._console.warning(
                    f"{count.value} sections for {target}; run `tapship changelog repair`"
                )
            return self._skip(state, "changelog-update", f"changelog already has {target}")

        written = self.ledger.prepend(
            ChangelogEntry(
                version=target,
                date=state.date,
                category=state.category,
                message=state.message,
            )
        )
        if isinstance(written, Err):
            return written
        self._console.success(f"changelog: added [{target}] - {state.date}")
        return self._done(state, "changelog-update", wrote=written.value)

    def _step_build(self, state: ReleaseState) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        if self._options.skip_build:
            return self._skip(state, "build-verify", "--skip-build")
        if "build-verify" in state.completed:
            return self._skip(state, "build-verify", "build already verified for this release")
        if self._tag_resolution == "adopt":
            return self._skip(state, "build-verify", "adopting the published tag")
        if not state.wrote and not self._resumed:
            info = self.tags.inspect(self._target_of(state))
            if isinstance(info, Err):
                return info
            if info.value.remote_commit is not None:
                return self._skip(state, "build-verify", f"{info.value.name} already published")

        built = self.builder.run()
        if isinstance(built, Err):
            if not self._decisions.continue_after_build_failure(built.error):
                return built
            self._console.warning("continuing despite build failure")
        else:
            self._console.success("build and tests passed")
        return self._done(state, "build-verify", wrote=False)

    def _step_tag(self, state: ReleaseState) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        target = self._target_of(state)
        p = self.config.project

        pending = self.project.changed_paths(self._release_paths())
        if isinstance(pending, Err):
            return Err(_git_failed(pending.error, what="git status"))
        head = self.project.head_sha()
        if isinstance(head, Err):
            return Err(_git_failed(head.error, what="git rev-parse HEAD"))

        # Look up the tag before committing so a conflict leaves no release commit.
        info = self.tags.inspect(target)
        if isinstance(info, Err):
            return info
        remote = info.value.remote_commit
        if remote is not None:
            ours = info.value.local_commit == remote or self.project.is_ancestor(
                remote, head.value
            )
            if ours and not pending.value:
                # Published by an earlier run; later commits do not move it.
                pushed = self._push_branch_if_ahead(self.project, remote=p.remote, branch=p.branch)
                if isinstance(pushed, Err):
                    return pushed
                return self._finish_tag(state, remote, wrote=pushed.value)
            if self._tag_resolution is None:
                settled = self._settle_tag_conflict(
                    info.value, target=target, expected=head.value, written=True
                )
                if isinstance(settled, Err):
                    return settled

        committed = self._commit_release(state, target, list(pending.value))
        if isinstance(committed, Err):
            return committed

        # The branch goes first: a tag must never point at a commit the branch lacks.
        pushed = self._push_branch_if_ahead(self.project, remote=p.remote, branch=p.branch)
        if isinstance(pushed, Err):
            return pushed
        wrote = committed.value or pushed.value

        release_head = self.project.head_sha()
        if isinstance(release_head, Err):
            return Err(_git_failed(release_head.error, what="git rev-parse HEAD"))

        outcome = self.tags.ensure_published(
            target,
            commit=release_head.value,
            message=f"Release {target}: {state.message}",
            resolution=self._tag_resolution,
        )
        if isinstance(outcome, Err):
            return outcome

        tag = outcome.value
        if tag.adopted:
            self._console.print(f"git fetch {p.remote} {tag.name}", Style.DIM)
            fetched = self.project.fetch_tag(p.remote, tag.name)
            if isinstance(fetched, Err):
                return Err(_git_failed(fetched.error, what=f"git fetch {p.remote} {tag.name}"))
        elif tag.changed:
            self._console.success(f"tag {tag.name} -> {tag.commit[:12]} pushed")
        return self._finish_tag(state, tag.commit, wrote=wrote or tag.changed)

    def _finish_tag(
        self, state: ReleaseState, commit: str, *, wrote: bool
    ) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        if not wrote:
            self._console.print("tag already published at the release commit", Style.DIM)
        return self._done(replace(state, tag_commit=commit), "tag", wrote=wrote)

    def _step_artifact(
        self, state: ReleaseState
    ) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        target = self._target_of(state)
        artifact = self.resolver.resolve(target)
        if isinstance(artifact, Err):
            return artifact
        self._console.success(f"sha256 {artifact.value.sha256}")
        resolved = replace(
            state, artifact_url=artifact.value.url, artifact_sha256=artifact.value.sha256
        )
        return self._done(resolved, "artifact-resolve", wrote=False)

    def _step_manifest(
        self, state: ReleaseState
    ) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        target = self._target_of(state)
        artifact = state.artifact
        if artifact is None:
            return Err(
                ReleaseError(kind="invalid_input", message="no resolved artifact to publish")
            )

        before = self.publisher.current()
        if isinstance(before, Err):
            return before

        outcome = self.publisher.publish(target, artifact)
        if isinstance(outcome, Err):
            return outcome
        if not outcome.value.changed:
            return self._skip(state, "manifest-publish", f"formula already at {target}")
        previous = before.value.version if before.value is not None else None
        self._console.success(
            f"formula {self.config.formula_rel_path}: {previous or 'new'} -> {target}"
        )
        return self._done(state, "manifest-publish", wrote=True)

    def _step_install(self, state: ReleaseState) -> Result[StepOutcome[ReleaseState], ReleaseError]:
        if self._options.skip_verify:
            self._verified = False
            return self._skip(state, "install-verify", "--skip-verify")
        if not self.config.verify.enabled:
            self._verified = False
            return self._skip(state, "install-verify", "verification disabled in config")
        if not state.wrote and not self._resumed:
            return self._skip(state, "install-verify", "nothing changed")

        checked = self.installer.verify(self._target_of(state))
        if isinstance(checked, Err):
            self._console.error(checked.error.pretty())
            if not self._decisions.accept_failed_verification(checked.error):
                return Err(
                    ReleaseError(
                        kind="verify_failed",
                        message=checked.error.message,
                        hint="the formula is published; fix the install and run `tapship resume`",
                    )
                )
            self._verified = False
            self._console.warning("release accepted without a passing install check")
        else:
            self._console.success(f"{self.config.binary} {state.version} installs and runs")
        return self._done(state, "install-verify", wrote=False)

    # -- helpers --------------------------------------------------------------------

    def _commit_release(
        self, state: ReleaseState, target: SemVer, changed: list[str]
    ) -> Result[bool, ReleaseError]:
        if not changed:
            return Ok(False)

        message = f"Bump version to {target}: {state.message}"
        self._console.print(f"git add {' '.join(changed)}", Style.DIM)
        added = self.project.add(changed)
        if isinstance(added, Err):
            return Err(_git_failed(added.error, what="git add"))
        self._console.print(f'git commit -m "{message}"', Style.DIM)
        commit = self.project.commit(message)
        if isinstance(commit, Err):
            return Err(_git_failed(commit.error, what="git commit"))
        return Ok(True)

    def _push_branch_if_ahead(
        self, repo: Repository, *, remote: str, branch: str
    ) -> Result[bool, ReleaseError]:
        head = repo.head_sha()
        if isinstance(head, Err):
            return Err(_git_failed(head.error, what="git rev-parse HEAD"))
        remote_head = repo.remote_branch_sha(remote, branch)
        if isinstance(remote_head, Err):
            return Err(_git_failed(remote_head.error, what=f"git ls-remote {remote} {branch}"))
        if remote_head.value == head.value:
            return Ok(False)
        if remote_head.value is not None and not repo.is_ancestor(remote_head.value, head.value):
            return Err(
                ReleaseError(
                    kind="stale_remote",
                    message=f"{remote}/{branch} moved during the release",
                    hint=f"git -C {repo.path} pull --rebase {remote} {branch}, then tapship resume",
                )
            )
        self._console.print(f"git push {remote} HEAD:{branch}", Style.DIM)
        pushed = repo.push_branch(remote, branch)
        if isinstance(pushed, Err):
            return Err(_git_failed(pushed.error, what=f"git push {remote} {branch}"))
        return Ok(True)

    def _check_gates(self, *, written: bool) -> Result[None, ReleaseError]:
        """Run both gates; ``written`` tolerates the files this release rewrites."""
        allowed_project = self._release_paths() if written else []
        allowed_tap = [self.config.formula_rel_path] if self._resumed else []
        for gate, allowed in (
            (self.project_gate, allowed_project),
            (self.tap_gate, allowed_tap),
        ):
            checked = gate.check_preconditions(allowed_paths=allowed)
            if isinstance(checked, Err):
                return Err(checked.error)
        return Ok(None)

    def _settle_tag_conflict(
        self, info: TagInfo, *, target: SemVer, expected: str | None, written: bool
    ) -> Result[None, ReleaseError]:
        """Ask how to treat a remote tag that is not ours, then re-check both gates.

        ``retry`` undoes this release's uncommitted edits and drops the state,
        so the next attempt starts from the previous version.
        """
        resolution = self._tag_resolution or self._decisions.resolve_tag_conflict(
            info, expected=expected
        )
        match resolution:
            case "retry":
                if written:
                    discarded = self.project.discard(self._release_paths())
                    if isinstance(discarded, Err):
                        return Err(_git_failed(discarded.error, what="git checkout HEAD"))
                self._drop_state()
                return Err(
                    ReleaseError(
                        kind="version_conflict",
                        message=f"{info.name} already exists on {self.config.project.remote}",
                        hint=f"release a new version, e.g. {target.bump('patch')}",
                        step="tag",
                    )
                )
            case "abort":
                if not written:
                    self._drop_state()
                return Err(self.tags.conflict(info, expected=expected).at_step("tag"))
            case _:
                self._tag_resolution = resolution

        # The remotes may have moved while the operator was deciding.
        return self._check_gates(written=written)

    def _drop_state(self) -> None:
        cleared = clear_state(state_dir=self.config.state_dir)
        if isinstance(cleared, Err):
            self._console.warning(cleared.error.message)
