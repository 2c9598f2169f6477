from __future__ import annotations

from dataclasses import dataclass

from tapship.core.result import Err, Ok, Result
from tapship.git.repository import GitError, Repository
from tapship.output.console import ConsoleProtocol, Style
from tapship.services.release.errors import ReleaseError
from tapship.services.release.model import TagResolution
from tapship.services.release.semver import SemVer


@dataclass(frozen=True, slots=True)
class TagInfo:
    """Where a release tag points, locally and on the remote (peeled commits)."""

    name: str
    local_commit: str | None
    remote_commit: str | None


@dataclass(frozen=True, slots=True)
class TagOutcome:
    name: str
    commit: str
    changed: bool
    adopted: bool = False


def _git_failed(e: GitError, *, what: str) -> ReleaseError:
    return ReleaseError(kind="git_failed", message=f"{what} failed", hint=e.message or None)


class TagManager:
    """Absent -> create -> local-only -> push -> published.

    A remote tag already pointing at another commit is a conflict that is
    only resolved by an explicit ``TagResolution``.
    """

    def __init__(self, repo: Repository, *, remote: str, console: ConsoleProtocol) -> None:
        self.repo = repo
        self.remote = remote
        self._console = console

    def inspect(self, version: SemVer) -> Result[TagInfo, ReleaseError]:
        name = version.to_tag()
        remote = self.repo.remote_tag_commit(self.remote, name)
        if isinstance(remote, Err):
            return Err(_git_failed(remote.error, what=f"ls-remote {self.remote} {name}"))
        return Ok(
            TagInfo(
                name=name,
                local_commit=self.repo.local_tag_commit(name),
                remote_commit=remote.value,
            )
        )

    def conflict(self, info: TagInfo, *, expected: str | None) -> ReleaseError:
        where = info.remote_commit[:12] if info.remote_commit else "?"
        detail = f", expected {expected[:12]}" if expected else ""
        return ReleaseError(
            kind="tag_exists",
            message=f"remote tag {info.name} already exists at {where}{detail}",
            hint=(
                "choose a resolution: retry (new version), "
                "force (replace tag) or adopt (use remote tag)"
            ),
        )

    def ensure_published(
        self,
        version: SemVer,
        *,
        commit: str,
        message: str,
        resolution: TagResolution | None = None,
    ) -> Result[TagOutcome, ReleaseError]:
        """Make ``v{version}`` exist on the remote, pointing at ``commit``."""
        info = self.inspect(version)
        if isinstance(info, Err):
            return info
        tag = info.value

        if tag.remote_commit is not None:
            if tag.remote_commit == commit:
                return Ok(TagOutcome(name=tag.name, commit=commit, changed=False))
            return self._resolve_conflict(tag, commit=commit, message=message, resolution=resolution)

        if tag.local_commit is not None and tag.local_commit != commit:
            # Local leftover from an aborted attempt; never pushed.
            self._console.print(f"git tag -d {tag.name}", Style.DIM)
            deleted = self.repo.delete_tag(tag.name)
            if isinstance(deleted, Err):
                return Err(_git_failed(deleted.error, what=f"git tag -d {tag.name}"))
            tag = TagInfo(name=tag.name, local_commit=None, remote_commit=None)

        if tag.local_commit is None:
            created = self._create(tag.name, commit=commit, message=message)
            if isinstance(created, Err):
                return created

        pushed = self._push(tag.name)
        if isinstance(pushed, Err):
            return pushed
        return Ok(TagOutcome(name=tag.name, commit=commit, changed=True))

    def _resolve_conflict(
        self,
        tag: TagInfo,
        *,
        commit: str,
        message: str,
        resolution: TagResolution | None,
    ) -> Result[TagOutcome, ReleaseError]:
        assert tag.remote_commit is not None
        match resolution:
            case None:
                return Err(self.conflict(tag, expected=commit))
            case "abort":
                return Err(
                    ReleaseError(kind="aborted", message=f"aborted on existing tag {tag.name}")
                )
            case "retry":
                return Err(
                    ReleaseError(
                        kind="version_conflict",
                        message=f"{tag.name} is taken on {self.remote}; release a new version",
                        hint="re-run with the next version number",
                    )
                )
            case "adopt":
                self._console.warning(
                    f"adopting existing {tag.name} at {tag.remote_commit[:12]}"
                )
                return Ok(
                    TagOutcome(name=tag.name, commit=tag.remote_commit, changed=False, adopted=True)
                )
            case "force":
                self._console.warning(f"replacing remote tag {tag.name}")
                self._console.print(f"git push {self.remote} :refs/tags/{tag.name}", Style.DIM)
                deleted = self.repo.delete_remote_tag(self.remote, tag.name)
                if isinstance(deleted, Err):
                    return Err(_git_failed(deleted.error, what=f"delete remote tag {tag.name}"))
                if tag.local_commit is not None:
                    local = self.repo.delete_tag(tag.name)
                    if isinstance(local, Err):
                        return Err(_git_failed(local.error, what=f"git tag -d {tag.name}"))
                created = self._create(tag.name, commit=commit, message=message)
                if isinstance(created, Err):
                    return created
                pushed = self._push(tag.name)
                if isinstance(pushed, Err):
                    return pushed
                return Ok(TagOutcome(name=tag.name, commit=commit, changed=True))
            case _:
                raise AssertionError(f"unexpected tag resolution: {resolution}")

    def _create(self, name: str, *, commit: str, message: str) -> Result[None, ReleaseError]:
        self._console.print(f"git tag -a {name} {commit[:12]}", Style.DIM)
        created = self.repo.create_tag(name, commit, message)
        if isinstance(created, Err):
            return Err(_git_failed(created.error, what=f"git tag {name}"))
        return Ok(None)

    def _push(self, name: str) -> Result[None, ReleaseError]:
        self._console.print(f"git push {self.remote} {name}", Style.DIM)
        pushed = self.repo.push_tag(self.remote, name)
        if isinstance(pushed, Err):
            # Lost a race: someone published the tag between inspect and push.
            after = self.repo.remote_tag_commit(self.remote, name)
            if isinstance(after, Ok) and after.value is not None:
                return Err(
                    ReleaseError(
                        kind="tag_exists",
                        message=f"remote rejected {name}: tag already exists at {after.value[:12]}",
                        hint="re-run to choose a resolution",
                    )
                )
            return Err(_git_failed(pushed.error, what=f"git push {self.remote} {name}"))
        return Ok(None)
