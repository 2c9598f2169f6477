from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from tapship.core.result import Err, Ok, Result
from tapship.git.repository import GitError, Repository
from tapship.services.release.errors import ReleaseError


@dataclass(frozen=True, slots=True)
class GateReport:
    branch: str
    head: str
    remote_head: str | None


def _git_failed(repo: Repository, e: GitError) -> ReleaseError:
    return ReleaseError(
        kind="git_failed",
        message=f"git {e.command} failed in {repo.path}",
        hint=e.message or None,
    )


class VcsGate:
    """Refuses to release from a checkout that could publish the wrong thing.

    Checks run in order and the first failure wins:
    branch, then working tree, then remote staleness. The remote is queried
    with ``ls-remote``; nothing is fetched.
    """

    def __init__(self, repo: Repository, *, branch: str, remote: str = "origin") -> None:
        self.repo = repo
        self.branch = branch
        self.remote = remote

    def check_preconditions(
        self, *, allowed_paths: Iterable[str] = ()
    ) -> Result[GateReport, ReleaseError]:
        """Verify branch, cleanliness and freshness.

        ``allowed_paths`` are repository-relative paths whose modifications
        are tolerated (files an interrupted run of this release already
        rewrote).
        """
        if not self.repo.exists():
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"not a git repository: {self.repo.path}",
                )
            )

        branch = self.repo.current_branch()
        if branch != self.branch:
            return Err(
                ReleaseError(
                    kind="wrong_branch",
                    message=(
                        f"on branch {branch or '(detached HEAD)'}, "
                        f"releases are cut from {self.branch}"
                    ),
                    hint=f"git -C {self.repo.path} checkout {self.branch}",
                )
            )

        status = self.repo.status()
        if isinstance(status, Err):
            return Err(_git_failed(self.repo, status.error))

        allowed = {p.replace("\\", "/") for p in allowed_paths}
        dirty = [p for p in status.value.paths if p not in allowed]
        if dirty:
            shown = ", ".join(dirty[:5]) + (" ..." if len(dirty) > 5 else "")
            return Err(
                ReleaseError(
                    kind="dirty_tree",
                    message=f"uncommitted changes in {self.repo.path}: {shown}",
                    hint="Commit or stash them, then retry.",
                )
            )

        head = self.repo.head_sha()
        if isinstance(head, Err):
            return Err(_git_failed(self.repo, head.error))

        remote_head = self.repo.remote_branch_sha(self.remote, self.branch)
        if isinstance(remote_head, Err):
            return Err(_git_failed(self.repo, remote_head.error))

        # A remote head we cannot reach from HEAD means new upstream commits.
        remote_sha = remote_head.value
        if remote_sha is not None and remote_sha != head.value:
            if not self.repo.is_ancestor(remote_sha, head.value):
                return Err(
                    ReleaseError(
                        kind="stale_remote",
                        message=f"{self.remote}/{self.branch} has commits not in the local branch",
                        hint=f"git -C {self.repo.path} pull --ff-only {self.remote} {self.branch}",
                    )
                )

        return Ok(GateReport(branch=self.branch, head=head.value, remote_head=remote_sha))
