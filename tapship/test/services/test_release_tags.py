from __future__ import annotations

from pathlib import Path

from tapship.core.result import Err, Ok
from tapship.git.repository import Repository
from tapship.output.console import MockConsole
from tapship.services.release.semver import SemVer
from tapship.services.release.tags import TagInfo, TagManager
from tapship.test._repos import (
    clone,
    commit_file,
    git,
    head,
    init_remote_repo,
    remote_tag_commit,
    requires_git,
)

V = SemVer(0, 13, 5)


def _manager(checkout: Path) -> TagManager:
    return TagManager(Repository(checkout), remote="origin", console=MockConsole())


def _publish_elsewhere(remote: Path, tmp_path: Path) -> str:
    """Someone else publishes v0.13.5 at a commit we do not have."""
    other = clone(remote, tmp_path / "other")
    sha = commit_file(other, "OTHER.md", "x\n", "other work")
    git(other, "tag", "-a", "v0.13.5", "-m", "theirs")
    git(other, "push", "origin", "v0.13.5")
    return sha


@requires_git
def test_absent_tag_is_created_and_pushed(tmp_path: Path) -> None:
    remote, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    sha = head(checkout)
    tags = _manager(checkout)

    result = tags.ensure_published(V, commit=sha, message="Release 0.13.5: fix note parsing")

    assert isinstance(result, Ok)
    assert result.value.changed is True
    assert result.value.commit == sha
    assert remote_tag_commit(remote, "v0.13.5") == sha
    assert git(checkout, "tag", "-l", "--format=%(contents:subject)", "v0.13.5") == (
        "Release 0.13.5: fix note parsing"
    )

    info = tags.inspect(V)
    assert isinstance(info, Ok)
    assert info.value.remote_commit == sha
    assert info.value.local_commit == sha


@requires_git
def test_published_at_same_commit_is_noop(tmp_path: Path) -> None:
    _, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    sha = head(checkout)
    tags = _manager(checkout)
    tags.ensure_published(V, commit=sha, message="Release")

    result = tags.ensure_published(V, commit=sha, message="Release")

    assert isinstance(result, Ok)
    assert result.value.changed is False


@requires_git
def test_local_only_tag_is_pushed(tmp_path: Path) -> None:
    remote, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    sha = head(checkout)
    git(checkout, "tag", "-a", "v0.13.5", "-m", "Release")

    result = _manager(checkout).ensure_published(V, commit=sha, message="Release")

    assert isinstance(result, Ok)
    assert result.value.changed is True
    assert remote_tag_commit(remote, "v0.13.5") == sha


@requires_git
def test_stale_local_tag_is_recreated(tmp_path: Path) -> None:
    remote, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    old = head(checkout)
    git(checkout, "tag", "-a", "v0.13.5", "-m", "aborted attempt")
    new = commit_file(checkout, "README.md", "two\n", "release commit")

    result = _manager(checkout).ensure_published(V, commit=new, message="Release")

    assert isinstance(result, Ok)
    assert old != new
    assert remote_tag_commit(remote, "v0.13.5") == new
    assert git(checkout, "rev-parse", "v0.13.5^{commit}") == new


@requires_git
def test_remote_conflict_without_resolution(tmp_path: Path) -> None:
    remote, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    theirs = _publish_elsewhere(remote, tmp_path)
    ours = head(checkout)

    result = _manager(checkout).ensure_published(V, commit=ours, message="Release")

    assert isinstance(result, Err)
    assert result.error.kind == "tag_exists"
    assert theirs[:12] in result.error.message
    assert remote_tag_commit(remote, "v0.13.5") == theirs


@requires_git
def test_remote_conflict_retry_and_abort(tmp_path: Path) -> None:
    remote, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    theirs = _publish_elsewhere(remote, tmp_path)
    tags = _manager(checkout)

    retry = tags.ensure_published(V, commit=head(checkout), message="R", resolution="retry")
    abort = tags.ensure_published(V, commit=head(checkout), message="R", resolution="abort")

    assert isinstance(retry, Err)
    assert retry.error.kind == "version_conflict"
    assert isinstance(abort, Err)
    assert abort.error.kind == "aborted"
    assert remote_tag_commit(remote, "v0.13.5") == theirs


@requires_git
def test_remote_conflict_adopt(tmp_path: Path) -> None:
    remote, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    theirs = _publish_elsewhere(remote, tmp_path)

    result = _manager(checkout).ensure_published(
        V, commit=head(checkout), message="R", resolution="adopt"
    )

    assert isinstance(result, Ok)
    assert result.value.adopted is True
    assert result.value.commit == theirs
    assert remote_tag_commit(remote, "v0.13.5") == theirs


@requires_git
def test_remote_conflict_force(tmp_path: Path) -> None:
    remote, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    _publish_elsewhere(remote, tmp_path)
    ours = head(checkout)

    result = _manager(checkout).ensure_published(V, commit=ours, message="R", resolution="force")

    assert isinstance(result, Ok)
    assert result.value.changed is True
    assert remote_tag_commit(remote, "v0.13.5") == ours


@requires_git
def test_conflict_error_names_both_commits(tmp_path: Path) -> None:
    _, checkout = init_remote_repo(tmp_path, "proj", {"README.md": "hi\n"})
    tags = _manager(checkout)
    info = TagInfo(name="v0.13.5", local_commit=None, remote_commit="a" * 40)

    error = tags.conflict(info, expected="b" * 40)

    assert error.kind == "tag_exists"
    assert "a" * 12 in error.message
    assert "b" * 12 in error.message
    assert "retry" in (error.hint or "")
