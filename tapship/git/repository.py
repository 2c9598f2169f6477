"""Git repository abstraction.

``Repository`` wraps the git CLI for one checkout. Every operation that can
fail returns a Result; queries whose failure is meaningful (tag missing,
no upstream) return ``None`` inside ``Ok`` instead.

    repo = Repository(Path("~/src/ducktape").expanduser())
    match repo.remote_tag_commit("origin", "v0.13.5"):
        case Ok(None):
            print("tag not published yet")
        case Ok(sha):
            print(f"remote tag -> {sha}")
        case Err(e):
            print(f"ls-remote failed: {e.message}")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from tapship.core.result import Err, Ok, Result
from tapship.platform.process import ProcessError
from tapship.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = frozenset({"fetch", "pull", "push", "clone", "ls-remote"})

__all__ = [
    "GitError",
    "GitStatus",
    "Repository",
    "StatusEntry",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git subcommand that failed
        message: Error message (stderr when available)
        returncode: Process return code
    """

    command: str
    message: str
    returncode: int = 1


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """A single entry in git status.

    Attributes:
        xy: Two-character status code (e.g., "M ", " M", "??")
        path: File path relative to the repository root
    """

    xy: str
    path: str

    @property
    def is_untracked(self) -> bool:
        return self.xy == "??"


@dataclass(frozen=True, slots=True)
class GitStatus:
    """Parsed ``git status --porcelain=v1 -b``.

    Attributes:
        branch: Current branch name
        upstream: Upstream branch (e.g., "origin/main"), None if not set
        ahead: Number of commits ahead of upstream
        behind: Number of commits behind upstream
        entries: All status entries (staged, unstaged, untracked)
    """

    branch: str
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    entries: tuple[StatusEntry, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return len(self.entries) == 0

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(e.path for e in self.entries)


class Repository:
    """Git operations on a single checkout.

    Attributes:
        path: Path to the repository root
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        """Check if this is a valid git repository (.git dir or worktree file)."""
        return (self.path / ".git").exists()

    # -- queries ----------------------------------------------------------

    def status(self) -> Result[GitStatus, GitError]:
        """Get repository status (branch line plus entries)."""
        result = self._run(["status", "--porcelain=v1", "-b", "--untracked-files=all"])
        match result:
            case Err(e):
                return Err(self._error("status", e))
            case Ok(stdout):
                return Ok(self._parse_status(stdout))

    def current_branch(self) -> str | None:
        """Get current branch name; None if detached HEAD or error."""
        result = self._run(["rev-parse", "--abbrev-ref", "HEAD"])
        match result:
            case Ok(stdout):
                branch = stdout.strip()
                return None if branch in ("", "HEAD") else branch
            case Err(_):
                return None

    def head_sha(self) -> Result[str, GitError]:
        result = self._run(["rev-parse", "HEAD"])
        match result:
            case Err(e):
                return Err(self._error("rev-parse", e))
            case Ok(stdout):
                return Ok(stdout.strip())

    def remote_branch_sha(self, remote: str, branch: str) -> Result[str | None, GitError]:
        """Head commit of ``branch`` on ``remote`` without fetching."""
        return self._ls_remote(remote, f"refs/heads/{branch}")

    def remote_tag_commit(self, remote: str, tag: str) -> Result[str | None, GitError]:
        """Commit a remote tag points to (annotated tags are peeled)."""
        return self._ls_remote(remote, f"refs/tags/{tag}")

    def local_tag_commit(self, tag: str) -> str | None:
        result = self._run(["rev-parse", "-q", "--verify", f"refs/tags/{tag}^{{commit}}"])
        match result:
            case Ok(stdout):
                return stdout.strip() or None
            case Err(_):
                return None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """True if ``ancestor`` is reachable from ``descendant``.

        False when either commit is unknown locally (e.g. not fetched).
        """
        result = self._run(["merge-base", "--is-ancestor", ancestor, descendant])
        return isinstance(result, Ok)

    def changed_paths(self, paths: list[str]) -> Result[tuple[str, ...], GitError]:
        """Paths among ``paths`` that differ from HEAD (staged, unstaged or untracked)."""
        result = self._run(["status", "--porcelain=v1", "--untracked-files=all", "--", *paths])
        match result:
            case Err(e):
                return Err(self._error("status", e))
            case Ok(stdout):
                entries = [self._parse_entry(ln) for ln in stdout.splitlines() if ln.strip()]
                return Ok(tuple(e.path for e in entries if e is not None))

    # -- mutations ----------------------------------------------------------

    def add(self, paths: list[str]) -> Result[None, GitError]:
        return self._simple("add", ["add", "--", *paths])

    def commit(self, message: str) -> Result[None, GitError]:
        return self._simple("commit", ["commit", "-m", message])

    def push_branch(self, remote: str, branch: str) -> Result[None, GitError]:
        return self._simple("push", ["push", remote, f"HEAD:refs/heads/{branch}"])

    def create_tag(self, tag: str, commit: str, message: str) -> Result[None, GitError]:
        """Create an annotated tag at ``commit``."""
        return self._simple("tag", ["tag", "-a", tag, commit, "-m", message])

    def delete_tag(self, tag: str) -> Result[None, GitError]:
        return self._simple("tag", ["tag", "-d", tag])

    def push_tag(self, remote: str, tag: str) -> Result[None, GitError]:
        return self._simple("push", ["push", remote, f"refs/tags/{tag}"])

    def delete_remote_tag(self, remote: str, tag: str) -> Result[None, GitError]:
        return self._simple("push", ["push", remote, f":refs/tags/{tag}"])

    def fetch_tag(self, remote: str, tag: str) -> Result[None, GitError]:
        """Copy a remote tag into the local repository, replacing a local one."""
        ref = f"refs/tags/{tag}"
        return self._simple("fetch", ["fetch", "--force", remote, f"{ref}:{ref}"])

    def discard(self, paths: list[str]) -> Result[None, GitError]:
        """Drop uncommitted changes to ``paths``; untracked ones are deleted."""
        entries = self._run(["status", "--porcelain=v1", "--untracked-files=all", "--", *paths])
        if isinstance(entries, Err):
            return Err(self._error("status", entries.error))
        parsed = [self._parse_entry(ln) for ln in entries.value.splitlines() if ln.strip()]
        tracked = [e.path for e in parsed if e is not None and not e.is_untracked]
        untracked = [e.path for e in parsed if e is not None and e.is_untracked]
        if tracked:
            restored = self._simple("checkout", ["checkout", "HEAD", "--", *tracked])
            if isinstance(restored, Err):
                return restored
        if untracked:
            return self._simple("clean", ["clean", "-f", "--", *untracked])
        return Ok(None)

    def archive(self, ref: str, *, prefix: str, dest: Path) -> Result[Path, GitError]:
        """Write ``git archive --format=tar.gz`` of ``ref`` to ``dest``."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        result = self._run(
            ["archive", "--format=tar.gz", f"--prefix={prefix}", "-o", str(dest), ref]
        )
        match result:
            case Err(e):
                return Err(self._error("archive", e))
            case Ok(_):
                return Ok(dest)

    # -- internals ----------------------------------------------------------

    def _ls_remote(self, remote: str, ref: str) -> Result[str | None, GitError]:
        result = self._run(["ls-remote", remote, ref, f"{ref}^{{}}"])
        match result:
            case Err(e):
                return Err(self._error("ls-remote", e))
            case Ok(stdout):
                return Ok(self._parse_ls_remote(stdout, ref))

    def _parse_ls_remote(self, output: str, ref: str) -> str | None:
        direct: str | None = None
        for line in output.splitlines():
            parts = line.split()
            if len(parts) != 2:
                continue
            sha, name = parts
            # Peeled entry of an annotated tag wins over the tag object.
            if name == f"{ref}^{{}}":
                return sha
            if name == ref:
                direct = sha
        return direct

    def _simple(self, command: str, args: list[str]) -> Result[None, GitError]:
        result = self._run(args)
        match result:
            case Err(e):
                return Err(self._error(command, e))
            case Ok(_):
                return Ok(None)

    def _error(self, command: str, e: ProcessError) -> GitError:
        return GitError(
            command=command,
            message=e.stderr.strip() or e.stdout.strip() or f"git {command} failed",
            returncode=e.returncode,
        )

    def _run(self, args: list[str]) -> Result[str, ProcessError]:
        """Run a git command in this repository."""
        command = args[0] if args else ""
        timeout = (
            _GIT_NETWORK_TIMEOUT_SECONDS if command in _NETWORK_COMMANDS else _GIT_TIMEOUT_SECONDS
        )
        return run_process(["git", "-C", str(self.path), *args], cwd=self.path, timeout=timeout)

    def _parse_status(self, output: str) -> GitStatus:
        """Parse git status --porcelain=v1 -b output."""
        lines = [ln for ln in output.splitlines() if ln.strip()]

        if not lines:
            return GitStatus(branch="")

        # First line is branch info: ## branch...upstream [ahead N, behind M]
        branch_line = lines[0]
        branch, upstream = self._parse_branch_line(branch_line)
        ahead, behind = self._parse_ahead_behind(branch_line)

        entries: list[StatusEntry] = []
        for line in lines[1:]:
            entry = self._parse_entry(line)
            if entry:
                entries.append(entry)

        return GitStatus(
            branch=branch,
            upstream=upstream,
            ahead=ahead,
            behind=behind,
            entries=tuple(entries),
        )

    def _parse_branch_line(self, line: str) -> tuple[str, str | None]:
        """Parse branch line: ## branch...upstream [info]"""
        s = line.strip()
        if s.startswith("##"):
            s = s[2:].lstrip()

        s = s.split(" [", 1)[0].strip()

        if "..." in s:
            left, right = s.split("...", 1)
            return (left.strip(), right.strip())

        return (s, None)

    def _parse_ahead_behind(self, line: str) -> tuple[int, int]:
        match = re.search(r"\[([^\]]+)\]", line)
        if not match:
            return (0, 0)

        inside = match.group(1)
        ahead_match = re.search(r"ahead\s+(\d+)", inside)
        behind_match = re.search(r"behind\s+(\d+)", inside)
        ahead = int(ahead_match.group(1)) if ahead_match else 0
        behind = int(behind_match.group(1)) if behind_match else 0
        return (ahead, behind)

    def _parse_entry(self, line: str) -> StatusEntry | None:
        """Parse a single status entry line: ``XY path`` or ``R  old -> new``."""
        if len(line) < 4:
            return None

        xy = line[:2]
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        return StatusEntry(xy=xy, path=path.strip('"'))
